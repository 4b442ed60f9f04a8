"""
Qrydex - Command line

Usage:
    python -m qrydex.cli seed
    python -m qrydex.cli drain [max_batches]
    python -m qrydex.cli maintenance [limit]
    python -m qrydex.cli reset-ai [limit]
    python -m qrydex.cli recover
    python -m qrydex.cli stats
"""
import asyncio
import json
import socket
import sys

from qrydex.config import settings
from qrydex.logs import configure_logging
from qrydex.services import build_services
from qrydex.workers.seed import seed_default_jobs

COMMANDS = ("seed", "drain", "maintenance", "reset-ai", "recover", "stats")


def _int_arg(args, default):
    return int(args[0]) if args else default


async def run(cmd: str, args, services) -> dict:
    if cmd == "seed":
        jobs = seed_default_jobs(services.queue, settings.SEED_URLS, settings.SEED_NACE_CODES)
        return {"jobs": len(jobs)}
    if cmd == "drain":
        report = await services.dispatcher.drain(
            f"cli-{socket.gethostname()}",
            batch_size=settings.WORKER_BATCH,
            max_batches=_int_arg(args, None),
        )
        return vars(report)
    if cmd == "maintenance":
        report = await services.maintenance.run(_int_arg(args, settings.MAINTENANCE_BATCH))
        return report.to_dict()
    if cmd == "reset-ai":
        return {"reset": await services.maintenance.reset_failed_analysis(_int_arg(args, 100))}
    if cmd == "recover":
        return {"recovered": services.queue.recover_stale(settings.LEASE_TIMEOUT)}
    if cmd == "stats":
        return services.queue.stats()
    raise ValueError(f"Unknown command: {cmd}")


async def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] not in COMMANDS:
        print(f"Usage: python -m qrydex.cli [{'|'.join(COMMANDS)}]")
        sys.exit(1)

    configure_logging()
    services = build_services(settings)
    try:
        result = await run(argv[0], argv[1:], services)
    finally:
        await services.aclose()
    print(json.dumps(result, indent=2))


def entrypoint():
    asyncio.run(main())


if __name__ == "__main__":
    entrypoint()
