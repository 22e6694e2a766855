from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.models.errors import BridgeError


async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    """Map a BridgeError to its HTTP status code and a uniform error body."""
    logging = getattr(request.app.state, "logging", None)
    if logging is not None:
        log = logging.error if exc.status_code >= 500 else logging.warning
        log("%s %s -> %d %s: %s", request.method, request.url.path, exc.status_code, exc.kind.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BridgeError, bridge_error_handler)
