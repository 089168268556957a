"""Request statistics, request logs and notification management."""

from fastapi import APIRouter, Depends, Query

from ..models import NotificationConfigUpdate
from ..state import AppState, get_state

router = APIRouter(prefix="/api", tags=["admin"])


@router.get("/stats")
async def get_stats(state: AppState = Depends(get_state)):
    return state.log_store.get_stats()


@router.get("/logs")
async def get_logs(limit: int = Query(100, ge=1, le=1000), state: AppState = Depends(get_state)):
    return [record.to_dict() for record in state.log_store.get_logs(limit)]


@router.get("/notifications")
async def get_notifications(limit: int = Query(100, ge=1, le=1000), state: AppState = Depends(get_state)):
    return [event.to_dict() for event in state.notifier.get_history(limit)]


@router.delete("/notifications")
async def clear_notifications(state: AppState = Depends(get_state)):
    state.notifier.clear_history()
    return {"message": "Notification history cleared"}


@router.get("/notifications/config")
async def get_notification_config(state: AppState = Depends(get_state)):
    return state.notifier.get_config()


@router.put("/notifications/config")
async def update_notification_config(body: NotificationConfigUpdate, state: AppState = Depends(get_state)):
    return state.notifier.update_config(body.model_dump(exclude_none=True))
