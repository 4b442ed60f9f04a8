"""
Qrydex - Job Dispatcher

Drains the crawl queue and routes each job to its handler:

    discover   fetch a listing/news page, enqueue registry jobs for every
               organisation number found on it
    registry   verify one business, or list a NACE industry (NO)
    scrape     scrape a business website and merge the result
    rescan     same as scrape, queued by maintenance for stale website data

Every job runs under a per-business lease and a job timeout. Failure policy:

    rate_limited        → retry with the third party's backoff
    network / timeout   → retry (bounded by max_attempts)
    schema / not_found / unsupported → terminal
    storage             → terminal for that job only
"""
import asyncio
import re
from dataclasses import dataclass
from typing import List, Optional

import httpx
import structlog
from bs4 import BeautifulSoup
from pydantic import ValidationError

from qrydex.clock import SystemClock, parse_iso, to_iso
from qrydex.errors import (
    ErrorKind, NetworkFailure, NotFound, QrydexError, RateLimited, SchemaFailure, Unsupported,
)
from qrydex.models import (
    BUSINESS_KEY, BUSINESSES, BusinessRecord, CrawlJob, JobType, RegistryRecord,
    RegistryVerificationResult, VerificationStatus, business_key, split_business_key,
)
from qrydex.scraper.extract import find_org_numbers
from qrydex.scraper.website import BROWSER_HEADERS, ScrapeFailure, ScrapeFailureKind, normalize_domain
from qrydex.trust.engine import compute_trust_score

logger = structlog.get_logger()

PRIORITY_DISCOVERED = 70
PRIORITY_SCRAPE = 50


@dataclass
class DrainReport:
    claimed: int = 0
    done: int = 0
    failed: int = 0
    retried: int = 0
    released: int = 0

    def merge(self, other: "DrainReport") -> None:
        self.claimed += other.claimed
        self.done += other.done
        self.failed += other.failed
        self.retried += other.retried
        self.released += other.released


def error_for(result: RegistryVerificationResult) -> QrydexError:
    """Turn a failed registry result back into the matching exception."""
    if result.error == ErrorKind.RATE_LIMITED:
        return RateLimited(result.source, result.retry_after)
    cls = {
        ErrorKind.NETWORK: NetworkFailure,
        ErrorKind.SCHEMA: SchemaFailure,
        ErrorKind.NOT_FOUND: NotFound,
        ErrorKind.UNSUPPORTED: Unsupported,
    }.get(result.error, NetworkFailure)
    return cls(result.message)


def website_from_registry(registry: RegistryRecord) -> Optional[str]:
    if not registry.website:
        return None
    return normalize_domain(registry.website) or None


def apply_registry(record: BusinessRecord, registry: RegistryRecord, verified_at: str) -> None:
    record.registry_data = registry
    record.legal_name = registry.legal_name or record.legal_name
    record.verification_status = registry.verification_status
    record.last_verified_at = verified_at
    if not record.domain:
        record.domain = website_from_registry(registry)


def rescore(record: BusinessRecord, now) -> None:
    result = compute_trust_score(record.registry_data, record.quality_analysis, record.news_signals, now=now)
    record.trust_score = result.score
    record.trust_score_breakdown = result.breakdown


def mark_not_found(record: BusinessRecord, now) -> None:
    """The registry no longer knows the entity: drop its registry data and fail it."""
    record.registry_data = None
    record.verification_status = VerificationStatus.FAILED
    record.last_verified_at = to_iso(now)
    rescore(record, now)


class Dispatcher:
    def __init__(
        self,
        store,
        queue,
        registries,
        scraper,
        lease,
        news=None,
        client: Optional[httpx.AsyncClient] = None,
        clock=None,
        job_timeout: float = 120.0,
        lease_ttl: int = 600,
        release_delay: float = 5.0,
        rescan_after_days: int = 30,
    ):
        self.store = store
        self.queue = queue
        self.registries = registries
        self.scraper = scraper
        self.lease = lease
        self.news = news
        self.client = client
        self.clock = clock or SystemClock()
        self.job_timeout = job_timeout
        self.lease_ttl = lease_ttl
        self.release_delay = release_delay
        self.rescan_after_days = rescan_after_days

    # ── Store helpers ──────────────────────────────

    def load_business(self, country: str, org_number: str) -> Optional[BusinessRecord]:
        row = self.store.get(BUSINESSES, org_number=org_number, country_code=country.upper())
        return BusinessRecord.from_record(row) if row else None

    def save_business(self, record: BusinessRecord) -> None:
        now = to_iso(self.clock.now())
        record.created_at = record.created_at or now
        record.updated_at = now
        self.store.upsert(BUSINESSES, record.to_record(), BUSINESS_KEY)

    def website_stale(self, record: BusinessRecord) -> bool:
        crawled = parse_iso(record.website_last_crawled)
        if crawled is None:
            return True
        return (self.clock.now() - crawled).days >= self.rescan_after_days

    def enqueue_scrape(self, record: BusinessRecord, job_type: JobType = JobType.SCRAPE,
                       priority: int = PRIORITY_SCRAPE) -> Optional[CrawlJob]:
        if not record.domain:
            return None
        return self.queue.enqueue(CrawlJob(
            job_type=job_type,
            target=record.domain,
            details={"country": record.country_code, "orgNumber": record.org_number},
            priority=priority,
        ))

    # ── Drain loop ─────────────────────────────────

    async def drain_once(self, worker_id: str, batch_size: int = 10) -> DrainReport:
        report = DrainReport()
        jobs = self.queue.dequeue_batch(batch_size, worker_id)
        report.claimed = len(jobs)
        for job in jobs:
            outcome = await self.run_job(job)
            if outcome == "done":
                report.done += 1
            elif outcome == "released":
                report.released += 1
            elif outcome == "pending":
                report.retried += 1
            else:
                report.failed += 1
        return report

    async def drain(self, worker_id: str, batch_size: int = 10, max_batches: Optional[int] = None) -> DrainReport:
        total = DrainReport()
        batches = 0
        while max_batches is None or batches < max_batches:
            report = await self.drain_once(worker_id, batch_size)
            batches += 1
            total.merge(report)
            if report.claimed == 0 or report.claimed == report.released:
                break
        logger.info("drain_complete", worker_id=worker_id, batches=batches, claimed=total.claimed,
                    done=total.done, failed=total.failed, retried=total.retried, released=total.released)
        return total

    def lease_key(self, job: CrawlJob) -> str:
        """Per-business lease key, built from the identifier the business is stored under."""
        key = job.lease_key
        if job.job_type == JobType.DISCOVER or job.details.get("naceCode"):
            return key
        try:
            country, org = split_business_key(key)
        except ValueError:
            return key
        return business_key(country, self.registries.canonical(country, org))

    async def run_job(self, job: CrawlJob) -> str:
        """Run one claimed job. Returns the job's resulting status."""
        key = self.lease_key(job)
        token = await self.lease.acquire(key, self.lease_ttl)
        if token is None:
            self.queue.release(job.id, self.release_delay)
            logger.info("job_released_lease_busy", job_id=job.id, key=key)
            return "released"

        try:
            await asyncio.wait_for(self.handle(job), timeout=self.job_timeout)
        except RateLimited as e:
            return self._fail(job, e, retryable=True, retry_after=e.retry_after)
        except QrydexError as e:
            return self._fail(job, e, retryable=e.kind.retryable)
        except asyncio.TimeoutError:
            return self._fail(job, NetworkFailure(f"job timed out after {self.job_timeout}s"), retryable=True)
        except Exception as e:
            logger.error("job_crashed", job_id=job.id, job_type=job.job_type.value, error=str(e))
            return self._fail(job, e, retryable=False)
        finally:
            await self.lease.release(key, token)

        self.queue.complete(job.id)
        logger.info("job_complete", job_id=job.id, job_type=job.job_type.value, target=job.target)
        return "done"

    def _fail(self, job: CrawlJob, error: Exception, retryable: bool, retry_after=None) -> str:
        kind = getattr(error, "kind", None)
        reason = f"{kind.value}: {error}" if kind else f"error: {error}"
        status = self.queue.fail(job.id, reason, retryable=retryable, retry_after=retry_after)
        return status.value if status else "failed"

    async def handle(self, job: CrawlJob) -> None:
        if job.job_type == JobType.REGISTRY:
            if job.details.get("naceCode"):
                await self.handle_industry(job)
            else:
                await self.handle_registry(job)
        elif job.job_type in (JobType.SCRAPE, JobType.RESCAN):
            await self.handle_scrape(job)
        elif job.job_type == JobType.DISCOVER:
            await self.handle_discover(job)
        else:
            raise SchemaFailure(f"unknown job type: {job.job_type}")

    # ── Registry ───────────────────────────────────

    def _business_target(self, job: CrawlJob):
        country = job.details.get("country")
        org = job.details.get("orgNumber")
        if not (country and org):
            try:
                country, org = split_business_key(job.target)
            except ValueError:
                raise SchemaFailure(f"job {job.id} has no business target")
        country = str(country).upper()
        return country, self.registries.canonical(country, str(org))

    async def handle_registry(self, job: CrawlJob) -> BusinessRecord:
        country, org = self._business_target(job)
        result = await self.registries.verify(country, org)
        record = self.load_business(country, org)
        now = self.clock.now()

        if not result.success:
            if result.error == ErrorKind.NOT_FOUND and record is not None:
                mark_not_found(record, now)
                self.save_business(record)
            raise error_for(result)

        registry = result.data
        if record is None and registry.org_number and registry.org_number != org:
            record = self.load_business(country, registry.org_number)
        if record is None:
            record = BusinessRecord(org_number=registry.org_number or org, country_code=country)
        apply_registry(record, registry, to_iso(now))
        await self._refresh_news(record)
        rescore(record, now)
        self.save_business(record)
        logger.info("business_verified", key=record.key, status=record.verification_status.value,
                    trust_score=record.trust_score)

        if record.domain and self.website_stale(record):
            self.enqueue_scrape(record)
        return record

    async def _refresh_news(self, record: BusinessRecord) -> None:
        if self.news is None or not record.legal_name:
            return
        try:
            record.news_signals = await self.news.collect(record.legal_name, record.country_code)
            record.news_last_collected = to_iso(self.clock.now())
        except QrydexError as e:
            logger.warning("news_collection_failed", key=record.key, kind=e.kind.value, error=str(e)[:200])

    async def handle_industry(self, job: CrawlJob) -> int:
        country = str(job.details.get("country", "NO")).upper()
        nace = str(job.details["naceCode"])
        if country != "NO":
            raise Unsupported(f"industry search is only available for NO, not {country}")
        try:
            records = await self.registries.norway.search_by_industry(nace, limit=int(job.details.get("limit", 100)))
        except httpx.HTTPError as e:
            raise NetworkFailure(f"industry search failed: {e or type(e).__name__}") from e
        except (ValidationError, ValueError) as e:
            # json decode errors are ValueErrors too
            raise SchemaFailure(f"industry search payload: {str(e)[:200]}") from e

        saved = 0
        for registry in records:
            if await self._ingest_listed(country, registry):
                saved += 1

        logger.info("industry_ingested", nace_code=nace, businesses=len(records), saved=saved)
        return saved

    async def _ingest_listed(self, country: str, registry: RegistryRecord) -> bool:
        """Save one entity from an industry listing under its own lease."""
        key = business_key(country, registry.org_number)
        token = await self.lease.acquire(key, self.lease_ttl)
        if token is None:
            logger.info("industry_entity_skipped_lease_busy", key=key)
            return False
        try:
            now = self.clock.now()
            record = self.load_business(country, registry.org_number)
            if record is None:
                record = BusinessRecord(org_number=registry.org_number, country_code=country)
            apply_registry(record, registry, to_iso(now))
            rescore(record, now)
            self.save_business(record)
            if record.domain and self.website_stale(record):
                self.enqueue_scrape(record)
            return True
        except QrydexError as e:
            logger.warning("industry_entity_failed", key=key, kind=e.kind.value, error=str(e)[:200])
            return False
        finally:
            await self.lease.release(key, token)

    # ── Website ────────────────────────────────────

    async def handle_scrape(self, job: CrawlJob) -> BusinessRecord:
        country, org = self._business_target(job)
        record = self.load_business(country, org)
        if record is None:
            raise NotFound(f"no business {business_key(country, org)} for scrape job")

        domain = job.target or record.domain
        result = await self.scraper.scrape(domain, previous_hash=record.content_hash, legal_name=record.legal_name)

        if isinstance(result, ScrapeFailure):
            # Keep previously stored website data as it was.
            logger.info("scrape_failed", key=record.key, domain=domain, kind=result.kind.value)
            if result.kind in (ScrapeFailureKind.TIMEOUT, ScrapeFailureKind.UNREACHABLE):
                raise NetworkFailure(f"{result.kind.value}: {result.message}")
            raise SchemaFailure(f"{result.kind.value}: {result.message}")

        quality = result.quality
        previous = record.quality_analysis
        if result.unchanged and previous is not None:
            quality.ai_status = previous.ai_status
            quality.ai_summary = previous.ai_summary
            quality.red_flags = previous.red_flags
            quality.trust_signals = previous.trust_signals

        record.domain = result.domain
        record.company_description = result.company_description or record.company_description
        record.products = result.products or record.products
        record.services = result.services or record.services
        record.quality_analysis = quality
        record.content_hash = result.content_hash
        record.website_last_crawled = result.fetched_at or to_iso(self.clock.now())
        rescore(record, self.clock.now())
        self.save_business(record)
        logger.info("business_scraped", key=record.key, domain=record.domain,
                    unchanged=result.unchanged, trust_score=record.trust_score)
        return record

    # ── Discovery ──────────────────────────────────

    async def handle_discover(self, job: CrawlJob) -> List[str]:
        if self.client is None:
            raise SchemaFailure("discover jobs need an HTTP client")
        url = job.target if re.match(r"^https?://", job.target) else f"https://{job.target}"
        try:
            response = await self.client.get(url, headers=BROWSER_HEADERS, timeout=15.0, follow_redirects=True)
        except httpx.HTTPError as e:
            raise NetworkFailure(f"discover fetch failed: {e or type(e).__name__}") from e
        if response.status_code == 429:
            raise RateLimited(url)
        if response.status_code >= 400:
            raise NetworkFailure(f"discover fetch returned HTTP {response.status_code}")

        text = BeautifulSoup(response.text, "html.parser").get_text(" ")
        org_numbers = find_org_numbers(text)
        for org in org_numbers:
            self.queue.enqueue(CrawlJob(
                job_type=JobType.REGISTRY,
                target=business_key("NO", org),
                details={"country": "NO", "orgNumber": org, "source": url},
                priority=PRIORITY_DISCOVERED,
            ))
        logger.info("discover_complete", url=url, org_numbers=len(org_numbers))
        return org_numbers
