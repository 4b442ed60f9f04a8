"""
Qrydex - Service wiring
Builds the store, queue, lease, adapters, scraper, dispatcher and scheduler
from Settings. The API, the arq worker and the CLI all start from here.
"""
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from qrydex.clock import SystemClock
from qrydex.news.collector import NewsCollector
from qrydex.queue.crawl_queue import CrawlQueue
from qrydex.queue.lease import MemoryKeyLease, RedisKeyLease
from qrydex.rate_limit import RateLimiter
from qrydex.registry import RegistrySet
from qrydex.scraper.summarizer import Summarizer
from qrydex.scraper.website import WebsiteScraper
from qrydex.store import Store, open_store
from qrydex.workers.dispatcher import Dispatcher
from qrydex.workers.maintenance import MaintenanceScheduler

logger = structlog.get_logger()

_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


@dataclass
class Services:
    settings: object
    store: Store
    client: httpx.AsyncClient
    queue: CrawlQueue
    lease: object
    registries: RegistrySet
    scraper: WebsiteScraper
    news: NewsCollector
    dispatcher: Dispatcher
    maintenance: MaintenanceScheduler

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.lease.close()
        self.store.close()


def build_services(
    settings=None,
    store: Optional[Store] = None,
    client: Optional[httpx.AsyncClient] = None,
    lease=None,
    clock=None,
) -> Services:
    if settings is None:
        from qrydex.config import settings
    clock = clock or SystemClock()
    store = store or open_store(settings)
    client = client or httpx.AsyncClient(timeout=_TIMEOUT)
    if lease is None:
        # A memory store lives in one process, so its lease can too.
        lease = MemoryKeyLease(clock) if settings.STORE_BACKEND == "memory" else RedisKeyLease(settings.REDIS_URL)

    queue = CrawlQueue(
        store,
        clock=clock,
        retry_backoff=settings.RETRY_BACKOFF,
        max_attempts=settings.JOB_MAX_ATTEMPTS,
    )
    registries = RegistrySet.from_settings(client, settings, clock=clock)
    summarizer = Summarizer(
        client,
        api_key=settings.OPENAI_API_KEY,
        model=settings.OPENAI_MODEL,
        timeout=settings.SUMMARIZER_TIMEOUT,
    )
    scraper = WebsiteScraper(
        client,
        summarizer=summarizer,
        limiter=RateLimiter(settings.SCRAPE_MIN_INTERVAL, name="scraper", clock=clock),
        timeout=settings.SCRAPE_TIMEOUT,
        clock=clock,
        max_subpages=settings.SCRAPE_MAX_SUBPAGES,
    )
    news = NewsCollector(
        client,
        lookback_days=settings.NEWS_LOOKBACK_DAYS,
        max_items=settings.NEWS_MAX_ITEMS,
        clock=clock,
    )
    dispatcher = Dispatcher(
        store,
        queue,
        registries,
        scraper,
        lease,
        news=news,
        client=client,
        clock=clock,
        job_timeout=settings.JOB_TIMEOUT,
        lease_ttl=settings.LEASE_TIMEOUT,
        rescan_after_days=settings.RESCAN_AFTER_DAYS,
    )
    maintenance = MaintenanceScheduler(
        store,
        registries,
        queue,
        clock=clock,
        interval=settings.MAINTENANCE_INTERVAL,
        stale_after_days=settings.STALE_AFTER_DAYS,
        rescan_after_days=settings.RESCAN_AFTER_DAYS,
        lease=lease,
        lease_ttl=settings.LEASE_TIMEOUT,
    )
    logger.info("services_ready", store=type(store).__name__, lease=type(lease).__name__,
                summarizer=summarizer.enabled)
    return Services(
        settings=settings,
        store=store,
        client=client,
        queue=queue,
        lease=lease,
        registries=registries,
        scraper=scraper,
        news=news,
        dispatcher=dispatcher,
        maintenance=maintenance,
    )
