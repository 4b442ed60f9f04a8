"""
Qrydex - Website Scraper

Fetches a business homepage plus up to max_subpages product/service pages
linked from it, extracts structured facts and asks the summarizer for an
assessment. No storage side effects: the caller merges the
result into the business record.

Fetch strategies run in order:
    https  → default
    http   → only after a TLS failure on https; success records ssl_valid=False

Failure kinds:
    unreachable  DNS/connect failure, or every strategy exhausted
    timeout      the https attempt timed out
    blocked      401/403/429/503 answered with a bot challenge
    parse_error  body could not be parsed
"""
import ssl
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union
from urllib.parse import urlparse

import httpx
import structlog

from qrydex.clock import SystemClock, to_iso
from qrydex.errors import QrydexError
from qrydex.models import AnalysisStatus, QualityAnalysis
from qrydex.rate_limit import RateLimiter
from qrydex.scraper.extract import PageExtract, extract_page, is_professional_email, subpage_links

logger = structlog.get_logger()

FETCH_STRATEGIES = ("https", "http")

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "nb-NO,nb;q=0.9,en;q=0.8",
}

BLOCK_STATUSES = {401, 403, 429, 503}
CHALLENGE_MARKERS = (
    "cf-chl", "challenge-platform", "captcha", "just a moment",
    "attention required", "access denied", "are you a robot",
)


class ScrapeFailureKind(str, Enum):
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    PARSE_ERROR = "parse_error"


@dataclass
class ScrapeFailure:
    domain: str
    kind: ScrapeFailureKind
    message: str = ""


@dataclass
class WebsiteData:
    domain: str
    url: str
    ssl_valid: bool
    content_hash: str
    quality: QualityAnalysis
    description: Optional[str] = None
    about: Optional[str] = None
    products: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    unchanged: bool = False
    fetched_at: Optional[str] = None

    @property
    def company_description(self) -> Optional[str]:
        return self.description or self.about


ScrapeResult = Union[WebsiteData, ScrapeFailure]


def normalize_domain(value: str) -> str:
    value = value.strip()
    if "://" not in value:
        value = "//" + value
    host = urlparse(value).netloc or ""
    return host.split("@")[-1].split(":")[0].lower().rstrip(".")


def is_tls_error(exc: BaseException) -> bool:
    seen = exc
    while seen is not None:
        if isinstance(seen, ssl.SSLError):
            return True
        message = str(seen).lower()
        if "ssl" in message or "certificate" in message or "tls" in message:
            return True
        seen = seen.__cause__ or seen.__context__
    return False


def looks_like_challenge(response: httpx.Response) -> bool:
    if response.status_code not in BLOCK_STATUSES:
        return False
    if response.headers.get("cf-mitigated") == "challenge":
        return True
    body = response.text[:20000].lower()
    return any(marker in body for marker in CHALLENGE_MARKERS)


class WebsiteScraper:
    def __init__(
        self,
        client: httpx.AsyncClient,
        summarizer=None,
        limiter: Optional[RateLimiter] = None,
        timeout: float = 10.0,
        clock=None,
        max_subpages: int = 10,
    ):
        self.client = client
        self.max_subpages = max_subpages
        self.summarizer = summarizer
        self.clock = clock or SystemClock()
        self.limiter = limiter or RateLimiter(1.0, name="scraper", clock=self.clock)
        self.timeout = timeout

    async def _fetch(self, domain: str) -> Union[tuple, ScrapeFailure]:
        """Walk FETCH_STRATEGIES. Returns (response, ssl_valid) or a failure."""
        tls_failed = False
        for scheme in FETCH_STRATEGIES:
            if scheme == "http" and not tls_failed:
                break
            url = f"{scheme}://{domain}/"
            try:
                response = await self.client.get(
                    url, headers=BROWSER_HEADERS, timeout=self.timeout, follow_redirects=True
                )
            except httpx.TimeoutException as e:
                logger.info("scrape_timeout", domain=domain, scheme=scheme)
                return ScrapeFailure(domain, ScrapeFailureKind.TIMEOUT, str(e) or "timed out")
            except httpx.HTTPError as e:
                if scheme == "https" and is_tls_error(e):
                    logger.info("scrape_tls_failed", domain=domain, error=str(e)[:120])
                    tls_failed = True
                    continue
                logger.info("scrape_unreachable", domain=domain, scheme=scheme, error=str(e)[:120])
                return ScrapeFailure(domain, ScrapeFailureKind.UNREACHABLE, str(e) or type(e).__name__)
            return response, response.url.scheme == "https"

        return ScrapeFailure(domain, ScrapeFailureKind.UNREACHABLE, "all fetch strategies exhausted")

    async def scrape(
        self,
        domain: str,
        previous_hash: Optional[str] = None,
        legal_name: Optional[str] = None,
    ) -> ScrapeResult:
        domain = normalize_domain(domain)
        if not domain:
            return ScrapeFailure(domain, ScrapeFailureKind.UNREACHABLE, "empty domain")

        await self.limiter.acquire()
        fetched = await self._fetch(domain)
        if isinstance(fetched, ScrapeFailure):
            return fetched
        response, ssl_valid = fetched

        if looks_like_challenge(response):
            logger.info("scrape_blocked", domain=domain, status=response.status_code)
            return ScrapeFailure(domain, ScrapeFailureKind.BLOCKED, f"HTTP {response.status_code} bot challenge")
        if response.status_code >= 400:
            return ScrapeFailure(domain, ScrapeFailureKind.UNREACHABLE, f"HTTP {response.status_code}")

        try:
            page = extract_page(response.text)
        except Exception as e:
            logger.warning("scrape_parse_failed", domain=domain, error=str(e)[:200])
            return ScrapeFailure(domain, ScrapeFailureKind.PARSE_ERROR, str(e)[:200])

        subpages = await self._scan_subpages(domain, str(response.url), response.text, page)

        now = to_iso(self.clock.now())
        quality = QualityAnalysis(
            reachable=True,
            ssl_valid=ssl_valid,
            professional_email=any(is_professional_email(e) for e in page.emails),
            contact_emails=page.emails,
            contact_phones=page.phones,
            website_url=str(response.url),
            analyzed_at=now,
        )

        content_hash = page.content_hash
        unchanged = previous_hash is not None and previous_hash == content_hash
        if not unchanged:
            await self._summarize(domain, page, legal_name, quality)

        logger.info("scrape_complete", domain=domain, ssl_valid=ssl_valid, subpages=subpages,
                    unchanged=unchanged, ai_status=quality.ai_status.value)
        return WebsiteData(
            domain=domain,
            url=str(response.url),
            ssl_valid=ssl_valid,
            content_hash=content_hash,
            quality=quality,
            description=page.description,
            about=page.about,
            products=page.products,
            services=page.services,
            unchanged=unchanged,
            fetched_at=now,
        )

    async def _scan_subpages(self, domain: str, base_url: str, html_doc: str, page: PageExtract) -> int:
        """Fetch linked product/service pages and merge them into page. Failures are skipped."""
        if self.max_subpages <= 0:
            return 0
        scanned = 0
        for url in subpage_links(html_doc, base_url, self.max_subpages):
            await self.limiter.acquire()
            try:
                response = await self.client.get(
                    url, headers=BROWSER_HEADERS, timeout=self.timeout, follow_redirects=True
                )
            except httpx.HTTPError as e:
                logger.info("subpage_fetch_failed", domain=domain, url=url, error=str(e)[:120])
                continue
            if response.status_code >= 400:
                logger.info("subpage_skipped", domain=domain, url=url, status=response.status_code)
                continue
            try:
                page.merge(extract_page(response.text))
            except Exception as e:
                logger.info("subpage_parse_failed", domain=domain, url=url, error=str(e)[:120])
                continue
            scanned += 1
        return scanned

    async def _summarize(self, domain: str, page: PageExtract, legal_name, quality: QualityAnalysis) -> None:
        if self.summarizer is None or not self.summarizer.enabled:
            quality.ai_status = AnalysisStatus.SKIPPED
            return
        try:
            summary = await self.summarizer.summarize(domain, page, legal_name=legal_name)
        except QrydexError as e:
            logger.warning("summarizer_unavailable", domain=domain, kind=e.kind.value, error=str(e)[:200])
            quality.ai_status = AnalysisStatus.UNAVAILABLE
            return
        quality.ai_status = AnalysisStatus.COMPLETE
        quality.ai_summary = summary.ai_summary
        quality.red_flags = summary.red_flags
        quality.trust_signals = summary.trust_signals
