"""Maintenance scheduler: stale selection, sequential re-verification, failure isolation."""
import asyncio
from types import SimpleNamespace

import httpx

from qrydex.errors import StorageFailure
from qrydex.models import (
    AI_UNAVAILABLE_FLAG, BUSINESS_KEY, BUSINESSES, AnalysisStatus, BusinessRecord, CrawlJob, JobType,
    QualityAnalysis, VerificationStatus,
)
from qrydex.registry import RegistrySet
from qrydex.store.base import eq
from qrydex.store.memory import MemoryStore
from qrydex.workers.maintenance import MaintenanceScheduler

from conftest import days_ago, mock_client, put_business

SETTINGS = SimpleNamespace(REGISTRY_MIN_INTERVAL=0.0, REGISTRY_TIMEOUT=5.0, COMPANIES_HOUSE_API_KEY="")


def _entity(org):
    return {"organisasjonsnummer": org, "navn": f"COMPANY {org} AS"}


def brreg(responses):
    """org number -> status code; 200 answers with a minimal active entity."""
    def handler(request):
        org = request.url.path.rsplit("/", 1)[-1]
        status = responses.get(org, 404)
        if status == 200:
            return httpx.Response(200, json=_entity(org))
        if status == 429:
            return httpx.Response(429, headers={"Retry-After": "30"})
        return httpx.Response(status, json={})
    return handler


def _scheduler(store, queue, clock, lease, handler):
    registries = RegistrySet.from_settings(mock_client(handler), SETTINGS, clock=clock)
    return MaintenanceScheduler(store, registries, queue, clock=clock, interval=2.0, lease=lease)


def _load(store, org):
    return BusinessRecord.from_record(store.get(BUSINESSES, org_number=org, country_code="NO"))


# ── Selection ─────────────────────────────────────────────

def test_selects_never_verified_then_oldest(store, queue, clock, lease):
    put_business(store, org_number="100000005", last_verified_at=days_ago(5))
    put_business(store, org_number="100000040", last_verified_at=days_ago(40))
    put_business(store, org_number="100000000", last_verified_at=None)
    put_business(store, org_number="100000010", last_verified_at=days_ago(10))
    put_business(store, org_number="100000090", last_verified_at=days_ago(90))

    scheduler = _scheduler(store, queue, clock, lease, brreg({}))
    selected = [r.org_number for r in scheduler.select_stale(limit=10)]

    assert selected == ["100000000", "100000090", "100000040"]
    assert [r.org_number for r in scheduler.select_stale(limit=2)] == ["100000000", "100000090"]


# ── Runs ──────────────────────────────────────────────────

def test_run_reverifies_and_rescores(store, queue, clock, lease):
    put_business(store, org_number="100000001", last_verified_at=None, trust_score=0)
    put_business(store, org_number="100000002", last_verified_at=days_ago(60), trust_score=0)
    put_business(store, org_number="100000003", last_verified_at=days_ago(45), trust_score=0)
    scheduler = _scheduler(store, queue, clock, lease,
                           brreg({"100000001": 200, "100000002": 200, "100000003": 200}))

    report = asyncio.run(scheduler.run(limit=10))

    assert report.to_dict() == {"selected": 3, "updated": 3, "failed": 0, "skipped": 0, "rescans": 0}
    for org in ("100000001", "100000002", "100000003"):
        record = _load(store, org)
        assert record.verification_status == VerificationStatus.VERIFIED
        assert record.trust_score == 70
        assert record.trust_score_breakdown["registry"] == 20
        assert record.last_verified_at >= days_ago(0)
    # strictly sequential, spaced by the fixed interval
    assert clock.sleeps == [2.0, 2.0]


def test_one_failure_never_aborts_the_run(clock, lease, queue):
    class FlakyStore(MemoryStore):
        def upsert(self, table, record, conflict_key):
            if record.get("org_number") == "100000004" and record.get("verification_status") == "verified":
                raise StorageFailure("write rejected")
            return super().upsert(table, record, conflict_key)

    store = FlakyStore()
    queue.store = store
    put_business(store, org_number="100000001", last_verified_at=days_ago(90))
    put_business(store, org_number="100000002", last_verified_at=days_ago(80), registry_data=None,
                 verification_status=VerificationStatus.VERIFIED)
    put_business(store, org_number="100000003", last_verified_at=days_ago(70))
    put_business(store, org_number="100000004", last_verified_at=days_ago(60))
    put_business(store, org_number="100000005", last_verified_at=days_ago(50))
    scheduler = _scheduler(store, queue, clock, lease, brreg({
        "100000001": 500,
        "100000002": 404,
        "100000003": 429,
        "100000004": 200,
        "100000005": 200,
    }))

    report = asyncio.run(scheduler.run(limit=10))

    assert report.selected == 5
    assert report.updated == 1
    assert report.failed == 1
    assert report.skipped == 3

    assert _load(store, "100000001").last_verified_at == days_ago(90)
    not_found = _load(store, "100000002")
    assert not_found.verification_status == VerificationStatus.FAILED
    assert not_found.trust_score == 10
    assert _load(store, "100000003").last_verified_at == days_ago(70)
    assert _load(store, "100000005").verification_status == VerificationStatus.VERIFIED
    # the 429 pushed the limiter out by Retry-After
    assert 30.0 in clock.sleeps


def test_stale_website_gets_one_rescan(store, queue, clock, lease):
    put_business(store, org_number="100000001", last_verified_at=None, domain="stale.no",
                 website_last_crawled=days_ago(45),
                 quality_analysis=QualityAnalysis(ai_status=AnalysisStatus.COMPLETE, reachable=True))
    put_business(store, org_number="100000002", last_verified_at=None, domain="fresh.no",
                 website_last_crawled=days_ago(3),
                 quality_analysis=QualityAnalysis(ai_status=AnalysisStatus.COMPLETE, reachable=True))
    put_business(store, org_number="100000003", last_verified_at=None, domain="queued.no")
    queue.enqueue(CrawlJob(JobType.RESCAN, "queued.no"))
    scheduler = _scheduler(store, queue, clock, lease, brreg({"100000001": 200, "100000002": 200,
                                                              "100000003": 200}))

    report = asyncio.run(scheduler.run(limit=10))

    assert report.rescans == 1
    rescans = sorted(r["target"] for r in store.select("crawl_queue", eq(job_type="rescan")))
    assert rescans == ["queued.no", "stale.no"]


def test_busy_record_is_skipped(store, queue, clock, lease):
    put_business(store, org_number="100000001", last_verified_at=None)
    scheduler = _scheduler(store, queue, clock, lease, brreg({"100000001": 200}))

    async def run_while_leased():
        await lease.acquire("NO:100000001", 600)
        return await scheduler.run(limit=10)

    report = asyncio.run(run_while_leased())
    assert report.skipped == 1
    assert _load(store, "100000001").last_verified_at is None


# ── AI status reset ───────────────────────────────────────

def test_reset_failed_analysis(store, queue, clock, lease):
    put_business(store, org_number="100000001", domain="new-style.no",
                 quality_analysis=QualityAnalysis(ai_status=AnalysisStatus.UNAVAILABLE, reachable=True))
    # rows written before ai_status existed carry only the red-flag marker
    store.upsert(BUSINESSES, {
        "org_number": "100000002", "country_code": "NO", "domain": "legacy.no",
        "quality_analysis": {"redFlags": [AI_UNAVAILABLE_FLAG], "has_ssl": True},
        "content_hash": "abc",
    }, BUSINESS_KEY)
    store.upsert(BUSINESSES, {
        "org_number": "100000003", "country_code": "NO", "domain": "legacy-ok.no",
        "quality_analysis": {"aiSummary": "Fine.", "redFlags": []},
    }, BUSINESS_KEY)
    put_business(store, org_number="100000004", domain="complete.no",
                 quality_analysis=QualityAnalysis(ai_status=AnalysisStatus.COMPLETE, ai_summary="Fine."))
    scheduler = _scheduler(store, queue, clock, lease, brreg({}))

    assert asyncio.run(scheduler.reset_failed_analysis(limit=10)) == 2

    for org in ("100000001", "100000002"):
        record = _load(store, org)
        assert record.quality_analysis is None
        assert record.content_hash is None
    assert _load(store, "100000003").quality_analysis.ai_summary == "Fine."
    assert _load(store, "100000004").quality_analysis.ai_status == AnalysisStatus.COMPLETE
    scrapes = sorted(r["target"] for r in store.select("crawl_queue", eq(job_type="scrape")))
    assert scrapes == ["legacy.no", "new-style.no"]

    assert asyncio.run(scheduler.reset_failed_analysis(limit=10)) == 0


def test_reset_respects_limit(store, queue, clock, lease):
    for org in ("100000001", "100000002", "100000003"):
        put_business(store, org_number=org, domain=f"{org}.no",
                     quality_analysis=QualityAnalysis(ai_status=AnalysisStatus.UNAVAILABLE))
    scheduler = _scheduler(store, queue, clock, lease, brreg({}))

    assert asyncio.run(scheduler.reset_failed_analysis(limit=2)) == 2
    assert store.count(BUSINESSES, eq(analysis_status="unavailable")) == 1
