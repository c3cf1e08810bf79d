"""FastAPI application main module.

This module defines the FastAPI application instance, wires structured
logging, request logging and error rendering, and exposes the health check
and metrics endpoints.
"""

import logging
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from affinityrec import __version__
from affinityrec.api.logging_config import RequestLoggingMiddleware, setup_logging
from affinityrec.api.metrics import metrics_service
from affinityrec.api.routes import recommend
from affinityrec.config import get_settings
from affinityrec.exceptions import AffinityRecError

setup_logging(get_settings().LOG_LEVEL)

# Configure module logger
logger = logging.getLogger(__name__)

# Create FastAPI application instance
app = FastAPI(
    title="AffinityRec API",
    description="Personalized multi-strategy recommendation service",
    version=__version__,
)

app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(recommend.router)


@app.exception_handler(AffinityRecError)
async def affinityrec_error_handler(request: Request, exc: AffinityRecError) -> JSONResponse:
    """Render service errors as ``{"error", "message", "details"}``."""
    logger.warning(
        f"{type(exc).__name__}: {exc.message}",
        extra={"path": str(request.url.path), "status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "details": exc.details,
        },
    )


@app.get("/ping")
def ping() -> Dict[str, str]:
    """Health check endpoint.

    Returns:
        Dictionary with status key set to "ok".

    Example:
        >>> response = client.get("/ping")
        >>> assert response.json() == {"status": "ok"}
    """
    return {"status": "ok"}


@app.get("/metrics")
def get_metrics() -> Dict:
    """Request counters, latency statistics and strategy failures."""
    return metrics_service.get_metrics()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "affinityrec.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
