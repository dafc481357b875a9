"""Global exception handling."""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from src.shared.errors import FraudOpsError

logger = structlog.get_logger()


def _body(error: str, exc: Exception, request_id: str) -> dict:
    content = {"error": error, "message": str(exc), "request_id": request_id}
    if isinstance(exc, FraudOpsError) and exc.details:
        content["details"] = exc.details
    return content


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, ValueError):
        logger.warning("bad_request", request_id=request_id, error=str(exc))
        return JSONResponse(status_code=400, content=_body("bad_request", exc, request_id))

    if isinstance(exc, PermissionError):
        logger.warning("forbidden", request_id=request_id, error=str(exc))
        return JSONResponse(status_code=403, content=_body("forbidden", exc, request_id))

    if isinstance(exc, LookupError):
        logger.warning("not_found", request_id=request_id, error=str(exc))
        return JSONResponse(status_code=404, content=_body("not_found", exc, request_id))

    logger.exception("unhandled_exception", request_id=request_id, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "request_id": request_id,
        },
    )


HANDLED_EXCEPTIONS: tuple[type[Exception], ...] = (
    ValueError,
    PermissionError,
    LookupError,
    Exception,
)
