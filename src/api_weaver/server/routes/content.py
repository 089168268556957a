"""File, command and project-structure endpoints."""

import logging

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from ...errors import ValidationError
from ...files import DEFAULT_TREE_DEPTH
from ..models import ExecuteRequest, FileWriteRequest
from ..state import AppState, get_state

logger = logging.getLogger(__name__)

router = APIRouter(tags=["content"])


@router.post("/files")
async def write_file(body: FileWriteRequest, state: AppState = Depends(get_state)):
    """Create or overwrite a file."""
    if body.content is None:
        raise ValidationError("Content is required")
    entry = await run_in_threadpool(state.require_file_store().write, body.path, body.content)
    return entry.to_dict()


@router.get("/files")
async def list_root(state: AppState = Depends(get_state)):
    entries = await run_in_threadpool(state.require_file_store().list, ".")
    return [entry.to_dict() for entry in entries]


@router.get("/files/{file_path:path}")
async def read_file(file_path: str, state: AppState = Depends(get_state)):
    """Read a file; an empty path lists the project root."""
    store = state.require_file_store()
    if not file_path:
        entries = await run_in_threadpool(store.list, ".")
        return [entry.to_dict() for entry in entries]
    entry = await run_in_threadpool(store.read, file_path)
    return entry.to_dict()


@router.delete("/files/{file_path:path}")
async def delete_file(file_path: str, state: AppState = Depends(get_state)):
    await run_in_threadpool(state.require_file_store().delete, file_path)
    return {"success": True, "message": f"Deleted {file_path}"}


@router.post("/execute")
async def execute_command(body: ExecuteRequest, state: AppState = Depends(get_state)):
    """Run a whitelisted command inside the project root."""
    result = await state.require_command_runner().run(body.command, body.timeout, body.cwd)
    return result.to_dict()


@router.get("/project")
async def project_structure(
    depth: int = Query(DEFAULT_TREE_DEPTH, ge=0, le=10),
    path: str = Query("."),
    state: AppState = Depends(get_state),
):
    node = await run_in_threadpool(state.require_file_store().tree, path, depth)
    return node.to_dict()
