"""
Qrydex - Configuration
Settings for the enrichment pipeline, workers and the trigger endpoint.

All settings load from environment variables with safe defaults for development.
In production, set QRYDEX_ENV=production to enforce required values.
"""
import os
import secrets
import warnings
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("QRYDEX_ENV", "development")

        # === Store ===
        self.STORE_BACKEND = os.getenv("STORE_BACKEND", "neo4j" if self.is_production else "memory")
        self.NEO4J_URI = os.getenv("NEO4J_URI", "bolt://localhost:7687")
        self.NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
        self.NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD", "qrydex_dev_password")
        self.STORE_TIMEOUT = float(os.getenv("STORE_TIMEOUT", "15"))
        self.REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

        # === AI summarizer ===
        self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
        self.OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.SUMMARIZER_TIMEOUT = float(os.getenv("SUMMARIZER_TIMEOUT", "30"))

        # === Registries ===
        self.COMPANIES_HOUSE_API_KEY = os.getenv("COMPANIES_HOUSE_API_KEY", "")
        self.REGISTRY_TIMEOUT = float(os.getenv("REGISTRY_TIMEOUT", "10"))
        self.REGISTRY_MIN_INTERVAL = float(os.getenv("REGISTRY_MIN_INTERVAL", "0.5"))

        # === Scraper ===
        self.SCRAPE_TIMEOUT = float(os.getenv("SCRAPE_TIMEOUT", "10"))
        self.SCRAPE_MIN_INTERVAL = float(os.getenv("SCRAPE_MIN_INTERVAL", "1.0"))
        self.SCRAPE_MAX_SUBPAGES = int(os.getenv("SCRAPE_MAX_SUBPAGES", "10"))

        # === News ===
        self.NEWS_LOOKBACK_DAYS = int(os.getenv("NEWS_LOOKBACK_DAYS", "90"))
        self.NEWS_MAX_ITEMS = int(os.getenv("NEWS_MAX_ITEMS", "20"))

        # === Queue / workers ===
        self.WORKER_BATCH = int(os.getenv("WORKER_BATCH", "10"))
        self.LEASE_TIMEOUT = int(os.getenv("LEASE_TIMEOUT", "600"))
        self.JOB_TIMEOUT = int(os.getenv("JOB_TIMEOUT", "120"))
        self.JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
        self.RETRY_BACKOFF = int(os.getenv("RETRY_BACKOFF", "300"))

        # === Maintenance ===
        self.MAINTENANCE_BATCH = int(os.getenv("MAINTENANCE_BATCH", "50"))
        self.MAINTENANCE_INTERVAL = float(os.getenv("MAINTENANCE_INTERVAL", "2.0"))
        self.STALE_AFTER_DAYS = int(os.getenv("STALE_AFTER_DAYS", "30"))
        self.RESCAN_AFTER_DAYS = int(os.getenv("RESCAN_AFTER_DAYS", "30"))

        # === Trigger endpoint ===
        self.CRON_SECRET = os.getenv("CRON_SECRET", "")
        if not self.CRON_SECRET:
            if self.is_production:
                raise RuntimeError("CRON_SECRET must be set in production. Add it to .env")
            self.CRON_SECRET = secrets.token_hex(16)
            warnings.warn("CRON_SECRET not set - using random secret. The cron endpoint is unreachable.")

        self.QRYDEX_HOST = os.getenv("QRYDEX_HOST", "0.0.0.0")
        self.QRYDEX_PORT = int(os.getenv("QRYDEX_PORT", "8000"))

        # === Seeds ===
        self.SEED_URLS: List[str] = [
            u.strip()
            for u in os.getenv(
                "SEED_URLS",
                "https://www.finansavisen.no/boers-og-marked,https://e24.no/naeringsliv,"
                "https://www.dn.no/teknologi,https://shifter.no/,https://www.proff.no/bransjer",
            ).split(",")
            if u.strip()
        ]
        self.SEED_NACE_CODES: List[str] = [
            c.strip() for c in os.getenv("SEED_NACE_CODES", "62,26,71,73,46").split(",") if c.strip()
        ]

    @property
    def is_production(self) -> bool:
        return os.getenv("QRYDEX_ENV", "development") == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
