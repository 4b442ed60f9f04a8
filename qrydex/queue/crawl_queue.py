"""
Qrydex - Crawl Queue

Priority queue of crawl jobs on top of the store contract. Workers in
separate processes coordinate only through claim_job's conditional update:

    status = pending AND attempts = <seen>   →   in_progress, attempts + 1

A worker whose update matches nothing lost the race and skips the job, so a
job is never handed to two workers. Ordering is priority desc, then
created_at asc (FIFO within a priority).
"""
from datetime import timedelta
from typing import Dict, List, Optional

import structlog

from qrydex.clock import SystemClock, to_iso
from qrydex.models import CRAWL_QUEUE, JOB_KEY, CrawlJob, JobStatus
from qrydex.store.base import AnyOf, Cond, Op, Store, eq

logger = structlog.get_logger()

_OPEN = [JobStatus.PENDING.value, JobStatus.IN_PROGRESS.value]


class CrawlQueue:
    def __init__(
        self,
        store: Store,
        clock=None,
        retry_backoff: float = 300.0,
        max_attempts: int = 3,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.retry_backoff = retry_backoff
        self.max_attempts = max_attempts

    def _now(self) -> str:
        return to_iso(self.clock.now())

    def _later(self, seconds: float) -> str:
        return to_iso(self.clock.now() + timedelta(seconds=seconds))

    def get(self, job_id: str) -> Optional[CrawlJob]:
        row = self.store.get(CRAWL_QUEUE, id=job_id)
        return CrawlJob.from_record(row) if row else None

    def find_open(self, job_type, target: str) -> Optional[CrawlJob]:
        rows = self.store.select(
            CRAWL_QUEUE,
            [
                Cond("job_type", Op.EQ, job_type.value if hasattr(job_type, "value") else job_type),
                Cond("target", Op.EQ, target),
                Cond("status", Op.IN, _OPEN),
            ],
            limit=1,
        )
        return CrawlJob.from_record(rows[0]) if rows else None

    def enqueue(self, job: CrawlJob, dedupe: bool = True) -> CrawlJob:
        """
        Insert a pending job. With dedupe, an open job with the same
        (job_type, target) is returned instead of inserting a duplicate.

        The check and the insert are separate store calls, so two processes
        enqueuing the same job at once can both insert. Such duplicates never
        run together (identical jobs map to one lease key) and registry, scrape
        and discover jobs are idempotent, so the second run only refreshes.
        """
        if dedupe:
            existing = self.find_open(job.job_type, job.target)
            if existing:
                logger.debug("job_deduplicated", job_type=job.job_type.value, target=job.target,
                             existing_id=existing.id)
                return existing

        job.status = JobStatus.PENDING
        job.created_at = job.created_at or self._now()
        job.max_attempts = job.max_attempts or self.max_attempts
        self.store.upsert(CRAWL_QUEUE, job.to_record(), JOB_KEY)
        logger.info("job_enqueued", job_id=job.id, job_type=job.job_type.value,
                    target=job.target, priority=job.priority)
        return job

    def claim_job(self, job: CrawlJob, worker_id: str) -> Optional[CrawlJob]:
        claimed_at = self._now()
        won = self.store.update(
            CRAWL_QUEUE,
            {
                "status": JobStatus.IN_PROGRESS.value,
                "attempts": job.attempts + 1,
                "claimed_by": worker_id,
                "claimed_at": claimed_at,
            },
            eq(id=job.id, status=JobStatus.PENDING.value, attempts=job.attempts),
        )
        if won != 1:
            logger.debug("job_claim_lost", job_id=job.id, worker_id=worker_id)
            return None
        job.status = JobStatus.IN_PROGRESS
        job.attempts += 1
        job.claimed_by = worker_id
        job.claimed_at = claimed_at
        return job

    def dequeue_batch(self, n: int, worker_id: str) -> List[CrawlJob]:
        if n <= 0:
            return []
        now = self._now()
        candidates = self.store.select(
            CRAWL_QUEUE,
            [
                Cond("status", Op.EQ, JobStatus.PENDING.value),
                AnyOf([Cond("not_before", Op.IS_NULL), Cond("not_before", Op.LTE, now)]),
            ],
            limit=n * 3,
            order_by=[("priority", "desc"), ("created_at", "asc")],
        )

        claimed = []
        for row in candidates:
            if len(claimed) >= n:
                break
            job = self.claim_job(CrawlJob.from_record(row), worker_id)
            if job:
                claimed.append(job)

        if claimed:
            logger.info("jobs_claimed", worker_id=worker_id, count=len(claimed))
        return claimed

    def complete(self, job_id: str) -> bool:
        done = self.store.update(
            CRAWL_QUEUE,
            {"status": JobStatus.DONE.value, "finished_at": self._now(), "last_error": None},
            eq(id=job_id, status=JobStatus.IN_PROGRESS.value),
        )
        return done == 1

    def fail(
        self,
        job_id: str,
        reason: str,
        retryable: bool = False,
        retry_after: Optional[float] = None,
    ) -> Optional[JobStatus]:
        """
        Retryable failures go back to pending with a backoff until
        max_attempts is reached; everything else ends failed.
        """
        job = self.get(job_id)
        if job is None:
            return None

        if retryable and job.attempts < job.max_attempts:
            delay = retry_after if retry_after is not None else self.retry_backoff * max(job.attempts, 1)
            patch = {
                "status": JobStatus.PENDING.value,
                "not_before": self._later(delay),
                "claimed_by": None,
                "claimed_at": None,
                "last_error": reason[:500],
            }
            status = JobStatus.PENDING
        else:
            patch = {
                "status": JobStatus.FAILED.value,
                "finished_at": self._now(),
                "last_error": reason[:500],
            }
            status = JobStatus.FAILED

        self.store.update(CRAWL_QUEUE, patch, eq(id=job_id, status=JobStatus.IN_PROGRESS.value))
        logger.info("job_failed", job_id=job_id, retryable=retryable, attempts=job.attempts,
                    status=status.value, reason=reason[:200])
        return status

    def release(self, job_id: str, delay: float = 5.0) -> bool:
        """Hand a claimed job back without consuming an attempt."""
        job = self.get(job_id)
        if job is None:
            return False
        released = self.store.update(
            CRAWL_QUEUE,
            {
                "status": JobStatus.PENDING.value,
                "attempts": max(job.attempts - 1, 0),
                "not_before": self._later(delay),
                "claimed_by": None,
                "claimed_at": None,
            },
            eq(id=job_id, status=JobStatus.IN_PROGRESS.value, attempts=job.attempts),
        )
        return released == 1

    def recover_stale(self, lease_timeout: float) -> int:
        """Reclaim in_progress jobs whose worker stopped reporting."""
        cutoff = to_iso(self.clock.now() - timedelta(seconds=lease_timeout))
        stale = self.store.select(
            CRAWL_QUEUE,
            [Cond("status", Op.EQ, JobStatus.IN_PROGRESS.value), Cond("claimed_at", Op.LT, cutoff)],
        )

        recovered = 0
        for row in stale:
            job = CrawlJob.from_record(row)
            exhausted = job.attempts >= job.max_attempts
            patch = {
                "status": (JobStatus.FAILED if exhausted else JobStatus.PENDING).value,
                "claimed_by": None,
                "claimed_at": None,
                "last_error": "lease expired",
            }
            if exhausted:
                patch["finished_at"] = self._now()
            won = self.store.update(
                CRAWL_QUEUE,
                patch,
                eq(id=job.id, status=JobStatus.IN_PROGRESS.value, claimed_at=job.claimed_at),
            )
            recovered += won

        if recovered:
            logger.warning("stale_jobs_recovered", count=recovered, lease_timeout=lease_timeout)
        return recovered

    def stats(self) -> Dict[str, int]:
        counts = {s.value: self.store.count(CRAWL_QUEUE, eq(status=s.value)) for s in JobStatus}
        counts["total"] = sum(counts.values())
        return counts
