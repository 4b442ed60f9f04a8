"""
Qrydex - Maintenance Scheduler

Keeps verified businesses fresh. Runs as an arq cron job (daily) or through
the bearer-protected trigger endpoint.

Each run:
    1. Selects up to `limit` businesses never verified or verified more than
       STALE_AFTER_DAYS ago (never-verified first, then oldest)
    2. Re-verifies them one at a time, spaced by a fixed-interval limiter
    3. Recomputes the trust score from fresh registry data plus the website
       and news signals already on the record
    4. Queues a deduplicated rescan when website data is missing or stale

One record failing never aborts the run.
"""
from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog

from qrydex.clock import SystemClock, to_iso
from qrydex.errors import ErrorKind, QrydexError
from qrydex.models import BUSINESS_KEY, BUSINESSES, AnalysisStatus, BusinessRecord, CrawlJob, JobType
from qrydex.rate_limit import RateLimiter
from qrydex.store.base import AnyOf, Cond, Op
from qrydex.workers.dispatcher import PRIORITY_SCRAPE, apply_registry, mark_not_found, rescore

logger = structlog.get_logger()

PRIORITY_RESCAN = 40


@dataclass
class MaintenanceReport:
    selected: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    rescans: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MaintenanceScheduler:
    def __init__(
        self,
        store,
        registries,
        queue,
        clock=None,
        limiter: Optional[RateLimiter] = None,
        interval: float = 2.0,
        stale_after_days: int = 30,
        rescan_after_days: int = 30,
        lease=None,
        lease_ttl: int = 600,
    ):
        self.store = store
        self.registries = registries
        self.queue = queue
        self.clock = clock or SystemClock()
        self.limiter = limiter or RateLimiter(interval, name="maintenance", clock=self.clock)
        self.stale_after_days = stale_after_days
        self.rescan_after_days = rescan_after_days
        self.lease = lease
        self.lease_ttl = lease_ttl

    def select_stale(self, limit: int) -> List[BusinessRecord]:
        cutoff = to_iso(self.clock.now() - timedelta(days=self.stale_after_days))
        rows = self.store.select(
            BUSINESSES,
            [AnyOf([Cond("last_verified_at", Op.IS_NULL), Cond("last_verified_at", Op.LT, cutoff)])],
            limit=limit,
            order_by=[("last_verified_at", "asc")],
        )
        return [BusinessRecord.from_record(r) for r in rows]

    def _save(self, record: BusinessRecord) -> None:
        record.updated_at = to_iso(self.clock.now())
        self.store.upsert(BUSINESSES, record.to_record(), BUSINESS_KEY)

    def _website_stale(self, record: BusinessRecord) -> bool:
        if not record.website_last_crawled or record.quality_analysis is None:
            return True
        cutoff = to_iso(self.clock.now() - timedelta(days=self.rescan_after_days))
        return record.website_last_crawled < cutoff

    def _queue_rescan(self, record: BusinessRecord) -> bool:
        if not record.domain or not self._website_stale(record):
            return False
        before = self.queue.find_open(JobType.RESCAN, record.domain)
        if before is not None:
            return False
        self.queue.enqueue(CrawlJob(
            job_type=JobType.RESCAN,
            target=record.domain,
            details={"country": record.country_code, "orgNumber": record.org_number},
            priority=PRIORITY_RESCAN,
        ))
        return True

    async def run(self, limit: int = 50) -> MaintenanceReport:
        """Sequential re-verification pass. Returns what happened to each selected record."""
        logger.info("maintenance_run_start", limit=limit)
        report = MaintenanceReport()
        records = self.select_stale(limit)
        report.selected = len(records)

        for record in records:
            await self.limiter.acquire()

            token = None
            if self.lease is not None:
                token = await self.lease.acquire(record.key, self.lease_ttl)
                if token is None:
                    logger.info("maintenance_record_busy", key=record.key)
                    report.skipped += 1
                    continue

            try:
                outcome = await self._maintain(record)
                if self._queue_rescan(record):
                    report.rescans += 1
            except QrydexError as e:
                logger.error("maintenance_record_failed", key=record.key, kind=e.kind.value, error=str(e)[:200])
                report.skipped += 1
                continue
            finally:
                if token is not None:
                    await self.lease.release(record.key, token)

            if outcome == "updated":
                report.updated += 1
            elif outcome == "failed":
                report.failed += 1
            else:
                report.skipped += 1

        logger.info("maintenance_run_complete", **report.to_dict())
        return report

    async def _maintain(self, record: BusinessRecord) -> str:
        result = await self.registries.verify(record.country_code, record.org_number)
        now = self.clock.now()

        if result.success:
            apply_registry(record, result.data, to_iso(now))
            rescore(record, now)
            self._save(record)
            self.limiter.reset_backoff()
            logger.info("maintenance_record_verified", key=record.key,
                        status=record.verification_status.value, trust_score=record.trust_score)
            return "updated"

        if result.error == ErrorKind.NOT_FOUND:
            mark_not_found(record, now)
            self._save(record)
            logger.info("maintenance_record_not_found", key=record.key)
            return "failed"

        if result.error == ErrorKind.RATE_LIMITED:
            self.limiter.backoff(result.retry_after)

        logger.warning("maintenance_record_skipped", key=record.key,
                       kind=result.error.value if result.error else None, error=result.message[:200])
        return "skipped"

    async def reset_failed_analysis(self, limit: int = 100) -> int:
        """
        Clear website analyses whose AI step never ran and queue a fresh
        scrape for each. Legacy rows that only carry the old red-flag marker
        are matched after normalization.
        """
        reset = 0
        offset = 0
        while reset < limit:
            rows = self.store.select(
                BUSINESSES,
                [
                    Cond("quality_analysis", Op.NOT_NULL),
                    AnyOf([
                        Cond("analysis_status", Op.EQ, AnalysisStatus.UNAVAILABLE.value),
                        Cond("analysis_status", Op.IS_NULL),
                    ]),
                ],
                limit=limit,
                offset=offset,
                order_by=[("org_number", "asc")],
            )
            if not rows:
                break

            for row in rows:
                record = BusinessRecord.from_record(row)
                qa = record.quality_analysis
                if qa is None or qa.ai_status != AnalysisStatus.UNAVAILABLE:
                    offset += 1
                    continue
                if reset >= limit:
                    break

                record.quality_analysis = None
                record.content_hash = None
                rescore(record, self.clock.now())
                try:
                    self._save(record)
                except QrydexError as e:
                    logger.error("reset_analysis_failed", key=record.key, error=str(e)[:200])
                    offset += 1
                    continue
                if record.domain:
                    self.queue.enqueue(CrawlJob(
                        job_type=JobType.SCRAPE,
                        target=record.domain,
                        details={"country": record.country_code, "orgNumber": record.org_number},
                        priority=PRIORITY_SCRAPE,
                    ))
                reset += 1

        logger.info("analysis_reset_complete", reset=reset)
        return reset
