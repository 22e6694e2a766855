from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from server.models.responses import WebhookHealthResponse, WebhookResponse

router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.post("/{engine}")
async def webhook_source(request: Request, engine: str) -> JSONResponse:
    """Accept a signed webhook delivery from a source system and reconcile the affected item.

    The raw body is read unparsed because the signature covers the exact bytes.
    Verification challenges are echoed back. Processing is synchronous so the
    response reports the outcome; a failed reconciliation answers 500 so the
    source retries the delivery.

    Args:
        request (Request): FastAPI request (provides app.state.sync_service).
        engine (str): Source engine name, e.g. "notion".

    Returns:
        JSONResponse: WebhookResponse payload.
    """
    sync_service = request.app.state.sync_service
    raw_body = await request.body()
    result = await sync_service.do_handle_webhook(engine, raw_body, dict(request.headers))
    body = WebhookResponse(**result.model_dump())
    return JSONResponse(status_code=200 if result.success else 500, content=body.model_dump(mode="json"))


@router.get("/{engine}/health")
async def webhook_health(request: Request, engine: str) -> WebhookHealthResponse:
    """Report whether the webhook secret and source credentials are configured. Never returns values."""
    sync_service = request.app.state.sync_service
    return WebhookHealthResponse(**sync_service.get_health(engine))
