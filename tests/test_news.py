"""News collector: keyword sentiment and RSS window handling."""
import asyncio

import httpx
import pytest

from qrydex.errors import NetworkFailure, RateLimited
from qrydex.models import Sentiment
from qrydex.news.collector import NewsCollector, classify

from conftest import FakeClock, mock_client, no_wait_limiter

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
  <title>"Nordic Tools AS" - Google News</title>
  <item>
    <title>Nordic Tools wins award for apprentices</title>
    <link>https://e24.no/award</link>
    <pubDate>Fri, 27 Feb 2026 08:00:00 GMT</pubDate>
  </item>
  <item>
    <title>Nordic Tools konkurs i datterselskap</title>
    <link>https://dn.no/konkurs</link>
    <pubDate>Fri, 20 Feb 2026 08:00:00 GMT</pubDate>
  </item>
  <item>
    <title>Nordic Tools wins award for apprentices</title>
    <link>https://syndicated.example/award</link>
    <pubDate>Thu, 26 Feb 2026 08:00:00 GMT</pubDate>
  </item>
  <item>
    <title>Nordic Tools opens in Bergen</title>
    <link>https://e24.no/old</link>
    <pubDate>Mon, 01 Sep 2025 08:00:00 GMT</pubDate>
  </item>
  <item>
    <title>Nordic Tools announces next year</title>
    <link>https://e24.no/future</link>
    <pubDate>Thu, 05 Mar 2026 08:00:00 GMT</pubDate>
  </item>
</channel>
</rss>
"""


@pytest.mark.parametrize("headline, sentiment, impact", [
    ("Nordic Tools wins award", Sentiment.POSITIVE, 6.0),
    ("Nordic Tools slått konkurs", Sentiment.NEGATIVE, 10.0),
    ("Record profit despite lawsuit", Sentiment.POSITIVE, 6.0),
    ("New contract, new lawsuit", Sentiment.NEGATIVE, 7.0),
    ("Nordic Tools opens in Bergen", Sentiment.NEUTRAL, 3.0),
])
def test_classify(headline, sentiment, impact):
    assert classify(headline) == (sentiment, impact)


def _collector(handler):
    clock = FakeClock()
    return NewsCollector(mock_client(handler), lookback_days=90, max_items=20,
                         limiter=no_wait_limiter(clock), clock=clock)


def test_collect_keeps_window_newest_first():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, text=FEED)

    signals = asyncio.run(_collector(handler).collect("Nordic Tools AS", "NO"))

    assert [s.headline for s in signals] == [
        "Nordic Tools wins award for apprentices",
        "Nordic Tools konkurs i datterselskap",
    ]
    assert signals[0].url == "https://e24.no/award"
    assert signals[0].published_at.startswith("2026-02-27T08:00:00")
    assert signals[1].sentiment == Sentiment.NEGATIVE
    assert seen[0].url.params["q"] == '"Nordic Tools AS"'
    assert seen[0].url.params["hl"] == "no"


def test_collect_caps_items():
    collector = _collector(lambda request: httpx.Response(200, text=FEED))
    collector.max_items = 1
    assert len(asyncio.run(collector.collect("Nordic Tools AS", "NO"))) == 1


def test_collect_failures_raise_typed_errors():
    throttled = _collector(lambda request: httpx.Response(429))
    with pytest.raises(RateLimited):
        asyncio.run(throttled.collect("Nordic Tools AS"))

    def down(request):
        raise httpx.ConnectError("no route", request=request)

    with pytest.raises(NetworkFailure):
        asyncio.run(_collector(down).collect("Nordic Tools AS"))


def test_blank_name_collects_nothing():
    def handler(request):
        raise AssertionError("no request expected")

    assert asyncio.run(_collector(handler).collect("")) == []
