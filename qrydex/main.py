"""
Qrydex - Trigger API
Health check, queue stats and the bearer-protected maintenance trigger used by
external schedulers.

Start with:
    uvicorn qrydex.main:app --host 0.0.0.0 --port 8000
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from qrydex import __version__
from qrydex.config import settings
from qrydex.logs import configure_logging
from qrydex.security import require_cron_secret
from qrydex.services import Services, build_services

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("api_starting", version=__version__)
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = build_services(settings)

    yield

    if owned:
        await app.state.services.aclose()
        app.state.services = None
    logger.info("api_stopped")


app = FastAPI(
    title="Qrydex - Enrichment Pipeline",
    description="Maintenance trigger and queue status for the business enrichment pipeline.",
    version=__version__,
    lifespan=lifespan,
)


def get_services(request: Request) -> Services:
    return request.app.state.services


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = str(uuid.uuid4())[:8]
    start = time.time()
    request.state.request_id = request_id
    response = await call_next(request)
    duration_ms = round((time.time() - start) * 1000, 2)
    response.headers["X-Request-Id"] = request_id
    if request.url.path != "/health":
        logger.info("request",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=duration_ms,
                    request_id=request_id)
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception",
                 path=request.url.path,
                 error=str(exc),
                 type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "Something went wrong.",
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    )


@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


@app.post("/v1/cron/maintenance", dependencies=[Depends(require_cron_secret)])
async def trigger_maintenance(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    """Run one maintenance pass synchronously and return its report."""
    report = await services.maintenance.run(limit or services.settings.MAINTENANCE_BATCH)
    return {"success": True, **report.to_dict()}


@app.post("/v1/cron/reset-analysis", dependencies=[Depends(require_cron_secret)])
async def trigger_reset_analysis(
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    reset = await services.maintenance.reset_failed_analysis(limit)
    return {"success": True, "reset": reset}


@app.get("/v1/queue/stats", dependencies=[Depends(require_cron_secret)])
async def queue_stats(services: Services = Depends(get_services)):
    return services.queue.stats()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("qrydex.main:app", host=settings.QRYDEX_HOST, port=settings.QRYDEX_PORT)
