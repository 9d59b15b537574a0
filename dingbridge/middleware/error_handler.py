import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from dingbridge.errors import ConfigurationError, TransportError

logger = structlog.get_logger()


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.warning("configuration_error", path=request.url.path, detail=str(exc))
    return JSONResponse(
        status_code=400,
        content={"error": "Configuration error", "detail": str(exc)},
    )


async def transport_error_handler(request: Request, exc: TransportError) -> JSONResponse:
    logger.error(
        "transport_error",
        path=request.url.path,
        detail=str(exc),
        upstream_status=exc.status_code,
    )
    return JSONResponse(
        status_code=502,
        content={"error": "Upstream error", "detail": str(exc), "upstream_status": exc.status_code},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)},
    )
