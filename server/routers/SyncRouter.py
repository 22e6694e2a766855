from fastapi import APIRouter, BackgroundTasks, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.responses import SyncTriggerResponse
from shared.models.sync import SyncStatus

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/trigger", status_code=202)
async def trigger_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    _: None = Depends(verify_api_key),
) -> SyncTriggerResponse:
    """Start a full sync of all tenants' connectors in the background.

    Args:
        request (Request): FastAPI request (provides app.state.sync_scheduler).
        background_tasks (BackgroundTasks): FastAPI background task queue.
        _ (None): Auth dependency result (unused).

    Returns:
        SyncTriggerResponse: Acknowledgement payload.
    """
    sync_scheduler = request.app.state.sync_scheduler
    background_tasks.add_task(sync_scheduler.trigger_manual_sync)
    return SyncTriggerResponse(status="accepted", message="Full sync started in the background")


@router.get("/status")
async def sync_status(request: Request, _: None = Depends(verify_api_key)) -> SyncStatus:
    """Report scheduler state, the last poll of every connector and persistent item failures."""
    sync_scheduler = request.app.state.sync_scheduler
    return sync_scheduler.get_status()
