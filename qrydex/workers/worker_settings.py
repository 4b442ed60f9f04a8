"""
Qrydex - Worker Settings

arq worker configuration. Job functions:
    drain_queue       claim and run a batch of crawl jobs
    run_maintenance   re-verify stale businesses
    reset_ai_status   clear unavailable AI analyses and queue rescrapes
    recover_stale     return abandoned in_progress jobs to the queue
    seed_queue        enqueue default discover / industry jobs

Run:
    arq qrydex.workers.worker_settings.WorkerSettings
"""
import socket
import uuid
from dataclasses import asdict

import structlog
from arq import cron
from arq.connections import RedisSettings

from qrydex.config import settings
from qrydex.logs import configure_logging
from qrydex.services import build_services
from qrydex.workers.seed import seed_default_jobs

logger = structlog.get_logger()

REDIS_SETTINGS = RedisSettings.from_dsn(settings.REDIS_URL)


async def startup(ctx):
    configure_logging()
    ctx["services"] = build_services(settings)
    ctx["worker_id"] = f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"
    logger.info("worker_started", worker_id=ctx["worker_id"])


async def shutdown(ctx):
    services = ctx.get("services")
    if services is not None:
        await services.aclose()
    logger.info("worker_stopped", worker_id=ctx.get("worker_id"))


async def drain_queue(ctx, batches: int = 5):
    services = ctx["services"]
    report = await services.dispatcher.drain(
        ctx["worker_id"], batch_size=settings.WORKER_BATCH, max_batches=batches
    )
    return asdict(report)


async def run_maintenance(ctx, limit: int = None):
    services = ctx["services"]
    report = await services.maintenance.run(limit or settings.MAINTENANCE_BATCH)
    return report.to_dict()


async def reset_ai_status(ctx, limit: int = 100):
    services = ctx["services"]
    return {"reset": await services.maintenance.reset_failed_analysis(limit)}


async def recover_stale(ctx):
    services = ctx["services"]
    return {"recovered": services.queue.recover_stale(settings.LEASE_TIMEOUT)}


async def seed_queue(ctx):
    services = ctx["services"]
    jobs = seed_default_jobs(services.queue, settings.SEED_URLS, settings.SEED_NACE_CODES)
    return {"jobs": len(jobs)}


class WorkerSettings:
    """arq worker configuration."""

    functions = [
        drain_queue,
        run_maintenance,
        reset_ai_status,
        recover_stale,
        seed_queue,
    ]

    cron_jobs = [
        # Queue drain - every 5 minutes
        cron(drain_queue, minute=set(range(0, 60, 5)), unique=True),
        # Abandoned job recovery - every 15 minutes
        cron(recover_stale, minute={7, 22, 37, 52}, unique=True),
        # Maintenance - daily
        cron(run_maintenance, hour={3}, minute={0}, unique=True),
        # Reseed - daily
        cron(seed_queue, hour={2}, minute={30}, unique=True),
    ]

    on_startup = startup
    on_shutdown = shutdown
    redis_settings = REDIS_SETTINGS
    max_jobs = 10
    job_timeout = 900
