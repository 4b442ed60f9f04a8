"""
Qrydex - Queue seeding

Primes an empty or drained queue:
    discover jobs for news / listing pages       priority 80
    registry industry jobs per NACE code (NO)    priority 60
"""
from typing import Iterable, List, Optional

import structlog

from qrydex.models import CrawlJob, JobType

logger = structlog.get_logger()

PRIORITY_DISCOVER = 80
PRIORITY_INDUSTRY = 60


def seed_default_jobs(
    queue,
    seed_urls: Iterable[str],
    nace_codes: Iterable[str],
    industry_limit: Optional[int] = None,
) -> List[CrawlJob]:
    jobs = []
    for url in seed_urls:
        jobs.append(queue.enqueue(CrawlJob(
            job_type=JobType.DISCOVER,
            target=url,
            details={"source": "seed"},
            priority=PRIORITY_DISCOVER,
        )))

    for code in nace_codes:
        details = {"country": "NO", "naceCode": str(code)}
        if industry_limit:
            details["limit"] = industry_limit
        jobs.append(queue.enqueue(CrawlJob(
            job_type=JobType.REGISTRY,
            target=f"nace-{code}",
            details=details,
            priority=PRIORITY_INDUSTRY,
        )))

    logger.info("queue_seeded", jobs=len(jobs))
    return jobs
