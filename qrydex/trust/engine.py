"""
Qrydex - Trust Scoring Engine
Signed contributions around a fixed baseline.

    Baseline                     50
    Registry   active           +20   otherwise / missing   -40
    Website    reachable         +5
               TLS valid         +5
               AI summary        +5
               no red flags      +5
               each red flag     -6   (AI unavailable counts as one)
               category clamp    [-25, +20]
    News       recency-weighted net sentiment, capped at ±10
    ─────────────────────────────
    Final score clamped to [0, 100]

Pure: same inputs and `now` give the same score and breakdown.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from qrydex.models import QualityAnalysis, NewsSignal, RegistryRecord

BASELINE = 50

REGISTRY_ACTIVE = 20
REGISTRY_INACTIVE = -40

_WEBSITE_MIN = -25
_WEBSITE_MAX = 20
RED_FLAG_PENALTY = -6

NEWS_CAP = 10
NEWS_WINDOW_DAYS = 90
NEWS_HALF_LIFE_DAYS = 30
NEWS_FULL_VOLUME = 3.0    # summed weight at which volume stops scaling the score


def _clamp(value, low, high):
    return min(max(value, low), high)


def score_registry(registry: Optional[RegistryRecord]) -> tuple[int, Dict[str, Any]]:
    """Category: is the entity legally alive?"""
    if registry is None:
        return REGISTRY_INACTIVE, {"status": "missing"}
    if registry.status.is_active:
        return REGISTRY_ACTIVE, {"status": registry.status.value}
    return REGISTRY_INACTIVE, {"status": registry.status.value}


def score_website(qa: Optional[QualityAnalysis]) -> tuple[int, Dict[str, int]]:
    """Category: does the website look like a real business?"""
    if qa is None:
        return 0, {}

    breakdown = {}
    if qa.reachable:
        breakdown["reachable"] = 5
    if qa.ssl_valid:
        breakdown["tls_valid"] = 5
    if qa.ai_summary:
        breakdown["ai_summary"] = 5

    flags = qa.flag_count
    if flags == 0:
        breakdown["no_red_flags"] = 5
    else:
        breakdown["red_flags"] = RED_FLAG_PENALTY * flags

    raw = sum(breakdown.values())
    return _clamp(raw, _WEBSITE_MIN, _WEBSITE_MAX), breakdown


def _age_days(signal: NewsSignal, now: datetime) -> Optional[int]:
    published = signal.published
    if published is None:
        return None
    return max((now - published).days, 0)


def score_news(signals: Sequence[NewsSignal], now: datetime) -> tuple[int, Dict[str, Any]]:
    """Category: what is the press saying lately?"""
    total_weight = 0.0
    weighted = 0.0
    counted = 0
    for signal in signals:
        age = _age_days(signal, now)
        if age is None or age > NEWS_WINDOW_DAYS:
            continue
        weight = (signal.impact / 10.0) * 0.5 ** (age / NEWS_HALF_LIFE_DAYS)
        total_weight += weight
        weighted += weight * signal.sentiment.polarity
        counted += 1

    if total_weight <= 0:
        return 0, {"signals": counted, "net_sentiment": 0.0, "volume": 0.0}

    net = weighted / total_weight
    volume = min(1.0, total_weight / NEWS_FULL_VOLUME)
    contribution = int(round(_clamp(net * volume * NEWS_CAP, -NEWS_CAP, NEWS_CAP)))
    return contribution, {
        "signals": counted,
        "net_sentiment": round(net, 4),
        "volume": round(volume, 4),
    }


@dataclass
class TrustScoreResult:
    score: int
    breakdown: Dict[str, int]
    details: Dict[str, Any] = field(default_factory=dict)

    def to_full(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "breakdown": dict(self.breakdown),
            "baseline": BASELINE,
            "details": self.details,
        }


def compute_trust_score(
    registry_data: Optional[RegistryRecord],
    quality_analysis: Optional[QualityAnalysis],
    news_signals: Optional[List[NewsSignal]] = None,
    now: Optional[datetime] = None,
) -> TrustScoreResult:
    now = now or datetime.now(timezone.utc)

    registry, registry_bd = score_registry(registry_data)
    website, website_bd = score_website(quality_analysis)
    news, news_bd = score_news(news_signals or [], now)

    score = _clamp(BASELINE + registry + website + news, 0, 100)
    return TrustScoreResult(
        score=score,
        breakdown={"registry": registry, "website": website, "news": news},
        details={"registry": registry_bd, "website": website_bd, "news": news_bd},
    )
