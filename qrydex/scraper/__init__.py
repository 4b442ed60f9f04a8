from qrydex.scraper.summarizer import Summarizer
from qrydex.scraper.website import (
    ScrapeFailure,
    ScrapeFailureKind,
    ScrapeResult,
    WebsiteData,
    WebsiteScraper,
    normalize_domain,
)

__all__ = [
    "ScrapeFailure",
    "ScrapeFailureKind",
    "ScrapeResult",
    "Summarizer",
    "WebsiteData",
    "WebsiteScraper",
    "normalize_domain",
]
