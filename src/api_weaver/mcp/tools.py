"""
Tool registries and backends for the two MCP services.

CONTENT_TOOLS operate on the project tree through FileStore and
CommandRunner. INTEGRATION_TOOLS are thin mappings onto remote API calls.
Each backend keeps a name -> handler table built at construction; names
outside the table raise UnknownToolError.
"""

import logging
from typing import Any, Awaitable, Callable, Dict
from urllib.parse import quote

from starlette.concurrency import run_in_threadpool

from ..commands import CommandRunner
from ..files import DEFAULT_TREE_DEPTH, FileStore
from ..remote import RemoteClientRegistry
from .protocol import McpTool

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class UnknownToolError(Exception):
    """Raised when a backend has no handler for a tool name."""


def _segment(value: Any) -> str:
    """Quote a caller-supplied value for use as one URL path segment."""
    return quote(str(value), safe="")


def _schema(properties: Dict[str, Any], required: tuple[str, ...] = ()) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = list(required)
    return schema


CONTENT_TOOLS = (
    McpTool(
        "read_file",
        "Read the contents of a file",
        _schema({"path": {"type": "string", "description": "The path to the file to read"}}, ("path",)),
    ),
    McpTool(
        "write_file",
        "Create or overwrite a file with the given content",
        _schema(
            {
                "path": {"type": "string", "description": "The path to the file to write"},
                "content": {"type": "string", "description": "The content to write to the file"},
            },
            ("path", "content"),
        ),
    ),
    McpTool(
        "list_files",
        "List files in a directory",
        _schema(
            {
                "path": {
                    "type": "string",
                    "description": "The directory path to list (default: current directory)",
                }
            }
        ),
    ),
    McpTool(
        "delete_file",
        "Delete a file or directory",
        _schema({"path": {"type": "string", "description": "The path to delete"}}, ("path",)),
    ),
    McpTool(
        "execute_command",
        "Execute a safe shell command",
        _schema(
            {
                "command": {"type": "string", "description": "The command to execute"},
                "timeout": {
                    "type": "number",
                    "description": "Timeout in milliseconds (default: 10000, max: 30000)",
                },
            },
            ("command",),
        ),
    ),
    McpTool(
        "get_project_structure",
        "Get the project file structure as a tree",
        _schema(
            {
                "path": {"type": "string", "description": "The root path (default: current directory)"},
                "depth": {"type": "number", "description": "Maximum depth to traverse (default: 3)"},
            }
        ),
    ),
    McpTool(
        "create_directory",
        "Create a new directory",
        _schema({"path": {"type": "string", "description": "The directory path to create"}}, ("path",)),
    ),
)

INTEGRATION_TOOLS = (
    McpTool("github_list_repos", "List GitHub repositories", _schema({})),
    McpTool(
        "github_get_repo",
        "Get a GitHub repository",
        _schema(
            {
                "owner": {"type": "string", "description": "Repository owner"},
                "repo": {"type": "string", "description": "Repository name"},
            },
            ("owner", "repo"),
        ),
    ),
    McpTool("vercel_list_projects", "List Vercel projects", _schema({})),
    McpTool(
        "vercel_list_deployments",
        "List Vercel deployments",
        _schema(
            {
                "projectId": {"type": "string", "description": "Project ID (optional)"},
                "limit": {"type": "number", "description": "Limit (default: 20)"},
            }
        ),
    ),
    McpTool(
        "supabase_query",
        "Query Supabase table",
        _schema(
            {
                "table": {"type": "string", "description": "Table name"},
                "select": {"type": "string", "description": "Select columns (default: *)"},
                "filter": {"type": "object", "description": "Filter conditions"},
            },
            ("table",),
        ),
    ),
    McpTool("n8n_list_workflows", "List n8n workflows", _schema({})),
    McpTool(
        "n8n_execute_workflow",
        "Execute an n8n workflow",
        _schema(
            {
                "workflowId": {"type": "string", "description": "Workflow ID"},
                "data": {"type": "object", "description": "Input data"},
            },
            ("workflowId",),
        ),
    ),
    McpTool(
        "gcloud_list_instances",
        "List Google Cloud compute instances",
        _schema({"zone": {"type": "string", "description": "Zone (default: us-central1-a)"}}),
    ),
)


class _HandlerTable:
    handlers: Dict[str, ToolHandler]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        handler = self.handlers.get(name)
        if handler is None:
            raise UnknownToolError(f"Unknown tool: {name}")
        return await handler(arguments)


class ContentToolBackend(_HandlerTable):
    """File and command tools scoped to the project root."""

    def __init__(self, file_store: FileStore, command_runner: CommandRunner):
        self.file_store = file_store
        self.command_runner = command_runner
        self.handlers = {
            "read_file": self._read_file,
            "write_file": self._write_file,
            "list_files": self._list_files,
            "delete_file": self._delete_file,
            "execute_command": self._execute_command,
            "get_project_structure": self._get_project_structure,
            "create_directory": self._create_directory,
        }

    async def _read_file(self, args: Dict[str, Any]) -> Any:
        entry = await run_in_threadpool(self.file_store.read, args["path"])
        return entry.to_dict()

    async def _write_file(self, args: Dict[str, Any]) -> Any:
        entry = await run_in_threadpool(self.file_store.write, args["path"], args["content"])
        return entry.to_dict()

    async def _list_files(self, args: Dict[str, Any]) -> Any:
        entries = await run_in_threadpool(self.file_store.list, args.get("path") or ".")
        return [entry.to_dict() for entry in entries]

    async def _delete_file(self, args: Dict[str, Any]) -> Any:
        await run_in_threadpool(self.file_store.delete, args["path"])
        return {"success": True, "message": f"Deleted {args['path']}"}

    async def _execute_command(self, args: Dict[str, Any]) -> Any:
        timeout = args.get("timeout")
        result = await self.command_runner.run(
            args["command"], int(timeout) if timeout is not None else None
        )
        return result.to_dict()

    async def _get_project_structure(self, args: Dict[str, Any]) -> Any:
        depth = args.get("depth")
        node = await run_in_threadpool(
            self.file_store.tree,
            args.get("path") or ".",
            int(depth) if depth is not None else DEFAULT_TREE_DEPTH,
        )
        return node.to_dict()

    async def _create_directory(self, args: Dict[str, Any]) -> Any:
        path = await run_in_threadpool(self.file_store.make_directory, args["path"])
        return {"success": True, "message": f"Created directory {path}"}


class IntegrationToolBackend(_HandlerTable):
    """Tools that forward to third-party APIs through RemoteServiceClient."""

    def __init__(self, clients: RemoteClientRegistry):
        self.clients = clients
        self.handlers = {
            "github_list_repos": self._github_list_repos,
            "github_get_repo": self._github_get_repo,
            "vercel_list_projects": self._vercel_list_projects,
            "vercel_list_deployments": self._vercel_list_deployments,
            "supabase_query": self._supabase_query,
            "n8n_list_workflows": self._n8n_list_workflows,
            "n8n_execute_workflow": self._n8n_execute_workflow,
            "gcloud_list_instances": self._gcloud_list_instances,
        }

    async def _github_list_repos(self, args: Dict[str, Any]) -> Any:
        return await self.clients.get("github").call("GET", "/user/repos", params={"per_page": 100})

    async def _github_get_repo(self, args: Dict[str, Any]) -> Any:
        path = f"/repos/{_segment(args['owner'])}/{_segment(args['repo'])}"
        return await self.clients.get("github").call("GET", path)

    async def _vercel_list_projects(self, args: Dict[str, Any]) -> Any:
        return await self.clients.get("vercel").call("GET", "/v9/projects")

    async def _vercel_list_deployments(self, args: Dict[str, Any]) -> Any:
        params: Dict[str, Any] = {"limit": int(args.get("limit") or 20)}
        if args.get("projectId"):
            params["projectId"] = args["projectId"]
        return await self.clients.get("vercel").call("GET", "/v6/deployments", params=params)

    async def _supabase_query(self, args: Dict[str, Any]) -> Any:
        params = {"select": args.get("select") or "*"}
        for key, value in (args.get("filter") or {}).items():
            params[key] = f"eq.{value}"
        return await self.clients.get("supabase").call(
            "GET", f"/{_segment(args['table'])}", params=params
        )

    async def _n8n_list_workflows(self, args: Dict[str, Any]) -> Any:
        return await self.clients.get("n8n").call("GET", "/workflows")

    async def _n8n_execute_workflow(self, args: Dict[str, Any]) -> Any:
        return await self.clients.get("n8n").call(
            "POST", f"/workflows/{_segment(args['workflowId'])}/execute", json=args.get("data") or {}
        )

    async def _gcloud_list_instances(self, args: Dict[str, Any]) -> Any:
        zone = args.get("zone") or "us-central1-a"
        return await self.clients.get("gcloud").call("GET", f"/zones/{_segment(zone)}/instances")
