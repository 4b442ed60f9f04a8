"""
Qrydex - News Signal Collector

Google News RSS search per business, parsed with feedparser. Each headline
becomes a NewsSignal with a keyword-derived sentiment and an impact on a
0-10 scale. Only items inside the lookback window are kept, newest first.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import feedparser
import httpx
import structlog

from qrydex.clock import SystemClock, to_iso
from qrydex.errors import NetworkFailure, RateLimited
from qrydex.models import NewsSignal, Sentiment
from qrydex.rate_limit import RateLimiter

logger = structlog.get_logger()

GOOGLE_NEWS_RSS = "https://news.google.com/rss/search"

# (hl, gl, ceid) per country
_LOCALES = {
    "NO": ("no", "NO", "NO:no"),
    "GB": ("en-GB", "GB", "GB:en"),
    "DK": ("da", "DK", "DK:da"),
    "FI": ("fi", "FI", "FI:fi"),
    "SE": ("sv", "SE", "SE:sv"),
    "DE": ("de", "DE", "DE:de"),
}
_DEFAULT_LOCALE = ("en-US", "US", "US:en")

# keyword → impact (0-10)
POSITIVE_KEYWORDS = {
    "award": 6, "wins": 6, "record": 6, "growth": 5, "expands": 5, "expansion": 5,
    "contract": 6, "investment": 6, "funding": 7, "profit": 5, "partnership": 5,
    "launch": 4, "acquires": 6, "pris": 5, "vekst": 5, "rekord": 6, "avtale": 5,
    "kontrakt": 6, "investering": 6, "lansering": 4, "overskudd": 5,
}
NEGATIVE_KEYWORDS = {
    "bankruptcy": 10, "bankrupt": 10, "konkurs": 10, "fraud": 9, "svindel": 9,
    "lawsuit": 7, "sued": 7, "søksmål": 7, "investigation": 7, "etterforskning": 7,
    "scandal": 8, "layoffs": 6, "nedbemanning": 6, "permittering": 6, "loss": 5,
    "underskudd": 5, "fined": 5, "bøtelagt": 5, "recall": 6, "data breach": 8, "datainnbrudd": 8,
}
NEUTRAL_IMPACT = 3.0


def _words(text: str) -> str:
    return " " + re.sub(r"[^\w\s]", " ", text.lower()) + " "


def classify(headline: str) -> Tuple[Sentiment, float]:
    """Keyword sentiment. Negative wins ties; impact is the strongest keyword hit."""
    text = _words(headline)
    neg = [w for k, w in NEGATIVE_KEYWORDS.items() if f" {k} " in text]
    pos = [w for k, w in POSITIVE_KEYWORDS.items() if f" {k} " in text]
    if neg and sum(neg) >= sum(pos):
        return Sentiment.NEGATIVE, float(max(neg))
    if pos:
        return Sentiment.POSITIVE, float(max(pos))
    return Sentiment.NEUTRAL, NEUTRAL_IMPACT


def _published(entry) -> Optional[datetime]:
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return datetime(*parsed[:6], tzinfo=timezone.utc)
    return None


class NewsCollector:
    def __init__(
        self,
        client: httpx.AsyncClient,
        lookback_days: int = 90,
        max_items: int = 20,
        timeout: float = 10.0,
        limiter: Optional[RateLimiter] = None,
        clock=None,
    ):
        self.client = client
        self.lookback_days = lookback_days
        self.max_items = max_items
        self.timeout = timeout
        self.clock = clock or SystemClock()
        self.limiter = limiter or RateLimiter(1.0, name="google_news", clock=self.clock)

    def feed_url_params(self, legal_name: str, country_code: str = "") -> dict:
        hl, gl, ceid = _LOCALES.get(country_code.upper(), _DEFAULT_LOCALE)
        return {"q": f'"{legal_name}"', "hl": hl, "gl": gl, "ceid": ceid}

    async def collect(self, legal_name: str, country_code: str = "") -> List[NewsSignal]:
        if not legal_name:
            return []

        await self.limiter.acquire()
        try:
            response = await self.client.get(
                GOOGLE_NEWS_RSS,
                params=self.feed_url_params(legal_name, country_code),
                timeout=self.timeout,
                follow_redirects=True,
            )
        except httpx.HTTPError as e:
            raise NetworkFailure(f"news feed request failed: {e or type(e).__name__}") from e
        if response.status_code == 429:
            raise RateLimited("google_news")
        if response.status_code >= 400:
            raise NetworkFailure(f"news feed returned HTTP {response.status_code}")

        feed = feedparser.parse(response.text)
        return self.signals_from_feed(feed)

    def signals_from_feed(self, feed) -> List[NewsSignal]:
        now = self.clock.now()
        cutoff = now - timedelta(days=self.lookback_days)
        seen = set()
        signals = []

        for entry in feed.entries:
            title = (entry.get("title") or "").strip()
            published = _published(entry)
            if not title or published is None or published < cutoff or published > now + timedelta(days=1):
                continue
            key = title.lower()
            if key in seen:
                continue
            seen.add(key)

            source = entry.get("source", {})
            sentiment, impact = classify(title)
            signals.append(NewsSignal(
                headline=title[:500],
                sentiment=sentiment,
                published_at=to_iso(published),
                source=source.get("title", "") if hasattr(source, "get") else "",
                url=entry.get("link"),
                impact=impact,
            ))

        signals.sort(key=lambda s: s.published_at, reverse=True)
        logger.info("news_collected", entries=len(feed.entries), kept=len(signals[: self.max_items]))
        return signals[: self.max_items]
