"""
Qrydex - Domain Model

Persisted through the store contract (qrydex.store). Two tables:

    businesses   key (org_number, country_code)  → BusinessRecord
    crawl_queue  key (id)                        → CrawlJob

BusinessRecord lifecycle:
    created on first discovery / registry ingestion (verification_status=pending)
    mutated by every verification or scrape cycle
    never hard-deleted - verification_status may move to failed

CrawlJob lifecycle:
    pending -> in_progress -> done
                           -> failed
                           -> pending (retryable failure, bounded by max_attempts)
"""
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

from qrydex.clock import parse_iso
from qrydex.errors import ErrorKind

BUSINESSES = "businesses"
CRAWL_QUEUE = "crawl_queue"

BUSINESS_KEY = ("org_number", "country_code")
JOB_KEY = ("id",)

# Written by older scraper versions into red_flags instead of a status field.
AI_UNAVAILABLE_FLAG = "AI Analysis Unavailable"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class RegistryStatus(str, Enum):
    ACTIVE = "active"
    DISSOLVED = "dissolved"
    LIQUIDATION = "liquidation"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"

    @property
    def is_active(self) -> bool:
        return self == RegistryStatus.ACTIVE


class AnalysisStatus(str, Enum):
    COMPLETE = "complete"
    UNAVAILABLE = "unavailable"
    SKIPPED = "skipped"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"

    @property
    def polarity(self) -> int:
        return {"positive": 1, "neutral": 0, "negative": -1}[self.value]


class JobType(str, Enum):
    DISCOVER = "discover"
    REGISTRY = "registry"
    SCRAPE = "scrape"
    RESCAN = "rescan"


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


def business_key(country_code: str, org_number: str) -> str:
    return f"{country_code.upper()}:{org_number}"


def split_business_key(key: str) -> tuple[str, str]:
    country, _, org = key.partition(":")
    if not country or not org:
        raise ValueError(f"not a business key: {key!r}")
    return country.upper(), org


# =============================================
# REGISTRY
# =============================================

@dataclass
class RegistryRecord:
    """Jurisdiction-normalized registry entry."""
    org_number: str
    legal_name: str
    country_code: str
    address: Optional[str] = None
    registration_date: Optional[str] = None
    industry_codes: List[str] = field(default_factory=list)
    employee_count: Optional[int] = None
    status: RegistryStatus = RegistryStatus.UNKNOWN
    vat_number: Optional[str] = None
    website: Optional[str] = None
    source: str = ""

    @property
    def verification_status(self) -> VerificationStatus:
        return VerificationStatus.VERIFIED if self.status.is_active else VerificationStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> Optional["RegistryRecord"]:
        if not data:
            return None
        return RegistryRecord(
            org_number=str(data.get("org_number") or data.get("org_nr") or ""),
            legal_name=data.get("legal_name", ""),
            country_code=(data.get("country_code") or "").upper(),
            address=data.get("address") or data.get("registered_address"),
            registration_date=data.get("registration_date"),
            industry_codes=list(data.get("industry_codes") or []),
            employee_count=data.get("employee_count"),
            status=_registry_status(data.get("status") or data.get("company_status")),
            vat_number=data.get("vat_number"),
            website=data.get("website"),
            source=data.get("source", ""),
        )


def _registry_status(value) -> RegistryStatus:
    if isinstance(value, RegistryStatus):
        return value
    try:
        return RegistryStatus(str(value or "unknown").lower())
    except ValueError:
        return RegistryStatus.UNKNOWN


@dataclass
class RegistryVerificationResult:
    success: bool
    data: Optional[RegistryRecord] = None
    error: Optional[ErrorKind] = None
    message: str = ""
    source: str = ""
    retry_after: Optional[float] = None

    @classmethod
    def ok(cls, data: RegistryRecord, source: str) -> "RegistryVerificationResult":
        return cls(success=True, data=data, source=source)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        source: str = "",
        retry_after: Optional[float] = None,
    ) -> "RegistryVerificationResult":
        return cls(success=False, error=kind, message=message, source=source, retry_after=retry_after)


# =============================================
# WEBSITE QUALITY
# =============================================

@dataclass
class QualityAnalysis:
    """
    Canonical website-quality structure. Built once at ingestion; legacy field
    names are folded in by from_dict and nowhere else.
    """
    ai_status: AnalysisStatus = AnalysisStatus.SKIPPED
    ai_summary: Optional[str] = None
    red_flags: List[str] = field(default_factory=list)
    trust_signals: List[str] = field(default_factory=list)
    reachable: bool = False
    ssl_valid: bool = False
    professional_email: bool = False
    contact_emails: List[str] = field(default_factory=list)
    contact_phones: List[str] = field(default_factory=list)
    website_url: Optional[str] = None
    analyzed_at: Optional[str] = None

    @property
    def flag_count(self) -> int:
        unavailable = 1 if self.ai_status == AnalysisStatus.UNAVAILABLE else 0
        return len(self.red_flags) + unavailable

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["ai_status"] = self.ai_status.value
        return data

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> Optional["QualityAnalysis"]:
        if not data:
            return None

        flags = data.get("red_flags")
        if flags is None:
            flags = data.get("redFlags")
        flags = [str(f) for f in (flags or [])]

        status = data.get("ai_status")
        if AI_UNAVAILABLE_FLAG in flags:
            status = AnalysisStatus.UNAVAILABLE
            flags = [f for f in flags if f != AI_UNAVAILABLE_FLAG]
        summary = data.get("ai_summary") or data.get("aiSummary")
        if status is None:
            status = AnalysisStatus.COMPLETE if summary else AnalysisStatus.SKIPPED

        ssl_valid = data.get("ssl_valid")
        if ssl_valid is None:
            ssl_valid = data.get("has_ssl", False)

        emails = data.get("contact_emails")
        if emails is None:
            emails = [data["contact_email"]] if data.get("contact_email") else []
        phones = data.get("contact_phones")
        if phones is None:
            phones = [data["contact_phone"]] if data.get("contact_phone") else []

        return QualityAnalysis(
            ai_status=AnalysisStatus(status),
            ai_summary=summary,
            red_flags=flags,
            trust_signals=list(data.get("trust_signals") or data.get("trustSignals") or []),
            reachable=bool(data.get("reachable", data.get("website_scraped", bool(data.get("website_url"))))),
            ssl_valid=bool(ssl_valid),
            professional_email=bool(data.get("professional_email", False)),
            contact_emails=list(emails),
            contact_phones=list(phones),
            website_url=data.get("website_url"),
            analyzed_at=data.get("analyzed_at") or data.get("last_analyzed"),
        )


# =============================================
# NEWS
# =============================================

@dataclass
class NewsSignal:
    headline: str
    sentiment: Sentiment
    published_at: str
    source: str = ""
    url: Optional[str] = None
    impact: float = 5.0          # 0-10

    @property
    def published(self) -> Optional[datetime]:
        return parse_iso(self.published_at)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["sentiment"] = self.sentiment.value
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "NewsSignal":
        try:
            sentiment = Sentiment(str(data.get("sentiment", "neutral")).lower())
        except ValueError:
            sentiment = Sentiment.NEUTRAL
        impact = data.get("impact", data.get("impact_score", 5.0))
        return NewsSignal(
            headline=data.get("headline", ""),
            sentiment=sentiment,
            published_at=data.get("published_at") or data.get("date") or "",
            source=data.get("source", ""),
            url=data.get("url"),
            impact=min(max(float(impact or 0), 0.0), 10.0),
        )


# =============================================
# BUSINESS RECORD
# =============================================

@dataclass
class BusinessRecord:
    org_number: str
    country_code: str
    legal_name: str = ""

    # Registry-sourced
    registry_data: Optional[RegistryRecord] = None
    verification_status: VerificationStatus = VerificationStatus.PENDING
    last_verified_at: Optional[str] = None

    # Website-sourced
    domain: Optional[str] = None
    company_description: Optional[str] = None
    products: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    quality_analysis: Optional[QualityAnalysis] = None
    website_last_crawled: Optional[str] = None
    content_hash: Optional[str] = None

    # Derived
    trust_score: int = 0
    trust_score_breakdown: Dict[str, int] = field(default_factory=dict)
    news_signals: List[NewsSignal] = field(default_factory=list)
    news_last_collected: Optional[str] = None

    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def key(self) -> str:
        return business_key(self.country_code, self.org_number)

    @property
    def analysis_status(self) -> Optional[str]:
        return self.quality_analysis.ai_status.value if self.quality_analysis else None

    def to_record(self) -> Dict[str, Any]:
        """Flatten for the store. Nested structures stay as plain dicts/lists."""
        return {
            "org_number": self.org_number,
            "country_code": self.country_code.upper(),
            "legal_name": self.legal_name,
            "registry_data": self.registry_data.to_dict() if self.registry_data else None,
            "verification_status": self.verification_status.value,
            "last_verified_at": self.last_verified_at,
            "domain": self.domain,
            "company_description": self.company_description,
            "products": list(self.products),
            "services": list(self.services),
            "quality_analysis": self.quality_analysis.to_dict() if self.quality_analysis else None,
            "analysis_status": self.analysis_status,
            "website_last_crawled": self.website_last_crawled,
            "content_hash": self.content_hash,
            "trust_score": self.trust_score,
            "trust_score_breakdown": dict(self.trust_score_breakdown),
            "news_signals": [s.to_dict() for s in self.news_signals],
            "news_last_collected": self.news_last_collected,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_record(record: Dict[str, Any]) -> "BusinessRecord":
        try:
            status = VerificationStatus(record.get("verification_status") or "pending")
        except ValueError:
            status = VerificationStatus.PENDING
        return BusinessRecord(
            org_number=str(record.get("org_number", "")),
            country_code=(record.get("country_code") or "").upper(),
            legal_name=record.get("legal_name") or "",
            registry_data=RegistryRecord.from_dict(record.get("registry_data")),
            verification_status=status,
            last_verified_at=record.get("last_verified_at"),
            domain=record.get("domain"),
            company_description=record.get("company_description"),
            products=list(record.get("products") or []),
            services=list(record.get("services") or []),
            quality_analysis=QualityAnalysis.from_dict(record.get("quality_analysis")),
            website_last_crawled=record.get("website_last_crawled"),
            content_hash=record.get("content_hash"),
            trust_score=int(record.get("trust_score") or 0),
            trust_score_breakdown=dict(record.get("trust_score_breakdown") or {}),
            news_signals=[NewsSignal.from_dict(s) for s in (record.get("news_signals") or [])],
            news_last_collected=record.get("news_last_collected"),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )


# =============================================
# CRAWL JOB
# =============================================

@dataclass
class CrawlJob:
    job_type: JobType
    target: str
    details: Dict[str, Any] = field(default_factory=dict)
    priority: int = 50
    status: JobStatus = JobStatus.PENDING
    created_at: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts: int = 0
    max_attempts: Optional[int] = None
    not_before: Optional[str] = None
    claimed_by: Optional[str] = None
    claimed_at: Optional[str] = None
    finished_at: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def lease_key(self) -> str:
        """
        Key guarded by the per-key lease. Jobs about the same business share a
        key regardless of job type.
        """
        country = self.details.get("country")
        org = self.details.get("orgNumber")
        if country and org:
            return business_key(country, org)
        if self.job_type == JobType.REGISTRY and ":" in self.target:
            return self.target.upper()
        return f"{self.job_type.value}:{self.target}"

    def to_record(self) -> Dict[str, Any]:
        data = asdict(self)
        data["job_type"] = self.job_type.value
        data["status"] = self.status.value
        return data

    @staticmethod
    def from_record(record: Dict[str, Any]) -> "CrawlJob":
        return CrawlJob(
            id=record["id"],
            job_type=JobType(record["job_type"]),
            target=record.get("target", ""),
            details=dict(record.get("details") or {}),
            priority=int(record.get("priority", 50)),
            status=JobStatus(record.get("status", "pending")),
            created_at=record.get("created_at"),
            attempts=int(record.get("attempts", 0)),
            max_attempts=int(record.get("max_attempts") or 3),
            not_before=record.get("not_before"),
            claimed_by=record.get("claimed_by"),
            claimed_at=record.get("claimed_at"),
            finished_at=record.get("finished_at"),
            last_error=record.get("last_error"),
        )
