"""Trust scoring engine: baseline, category contributions, clamps, news decay."""
from datetime import timedelta

from qrydex.clock import to_iso
from qrydex.models import AnalysisStatus, NewsSignal, QualityAnalysis, RegistryStatus, Sentiment
from qrydex.trust.engine import BASELINE, compute_trust_score, score_news, score_website

from conftest import NOW, active_registry


def _news(sentiment, days_old, impact=10.0):
    return NewsSignal(
        headline=f"{sentiment.value} story",
        sentiment=sentiment,
        published_at=to_iso(NOW - timedelta(days=days_old)),
        impact=impact,
    )


def _clean_site(**overrides):
    fields = dict(
        ai_status=AnalysisStatus.COMPLETE,
        ai_summary="Established tool wholesaler.",
        reachable=True,
        ssl_valid=True,
    )
    fields.update(overrides)
    return QualityAnalysis(**fields)


# ── Registry ──────────────────────────────────────────────

def test_active_registry_only():
    result = compute_trust_score(active_registry(), None, now=NOW)
    assert result.score == BASELINE + 20
    assert result.breakdown == {"registry": 20, "website": 0, "news": 0}


def test_missing_registry_data_penalised():
    result = compute_trust_score(None, None, now=NOW)
    assert result.score == BASELINE - 40
    assert result.breakdown["registry"] == -40


def test_dissolved_registry_scores_like_missing():
    registry = active_registry()
    registry.status = RegistryStatus.DISSOLVED
    assert compute_trust_score(registry, None, now=NOW).breakdown["registry"] == -40


# ── Website ───────────────────────────────────────────────

def test_clean_website_reaches_category_max():
    points, details = score_website(_clean_site())
    assert points == 20
    assert details["no_red_flags"] == 5


def test_website_penalty_clamped():
    site = _clean_site(ai_summary=None, red_flags=[f"flag {i}" for i in range(6)])
    points, _ = score_website(site)
    assert points == -25


def test_ai_unavailable_counts_as_red_flag():
    site = _clean_site(ai_status=AnalysisStatus.UNAVAILABLE, ai_summary=None)
    points, details = score_website(site)
    assert details["red_flags"] == -6
    assert points == 5 + 5 - 6


def test_skipped_ai_is_not_penalised():
    site = _clean_site(ai_status=AnalysisStatus.SKIPPED, ai_summary=None)
    points, _ = score_website(site)
    assert points == 15


# ── News ──────────────────────────────────────────────────

def test_recent_news_weighs_more_than_old_news():
    recent, _ = score_news([_news(Sentiment.NEGATIVE, 0)], NOW)
    old, _ = score_news([_news(Sentiment.NEGATIVE, 60)], NOW)
    assert recent == -3
    assert old == -1


def test_news_outside_window_ignored():
    points, details = score_news([_news(Sentiment.POSITIVE, 120)], NOW)
    assert points == 0
    assert details["signals"] == 0


def test_news_contribution_capped():
    signals = [_news(Sentiment.POSITIVE, 0) for _ in range(10)]
    points, _ = score_news(signals, NOW)
    assert points == 10


# ── Final score ───────────────────────────────────────────

def test_score_clamped_to_zero():
    site = _clean_site(ai_summary=None, reachable=False, ssl_valid=False,
                       red_flags=["a", "b", "c", "d", "e"])
    news = [_news(Sentiment.NEGATIVE, 0) for _ in range(3)]
    result = compute_trust_score(None, site, news, now=NOW)
    assert result.breakdown == {"registry": -40, "website": -25, "news": -10}
    assert result.score == 0


def test_score_reaches_hundred():
    news = [_news(Sentiment.POSITIVE, 0) for _ in range(3)]
    result = compute_trust_score(active_registry(), _clean_site(), news, now=NOW)
    assert result.score == 100


def test_scoring_is_deterministic():
    news = [_news(Sentiment.NEGATIVE, 10, impact=7), _news(Sentiment.POSITIVE, 3, impact=5)]
    first = compute_trust_score(active_registry(), _clean_site(red_flags=["x"]), news, now=NOW)
    second = compute_trust_score(active_registry(), _clean_site(red_flags=["x"]), news, now=NOW)
    assert first.score == second.score
    assert first.breakdown == second.breakdown
    assert first.to_full()["baseline"] == BASELINE
