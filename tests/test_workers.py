"""Queue seeding and the CLI command runner."""
import asyncio

import pytest

from qrydex import cli
from qrydex.config import get_settings
from qrydex.models import JobType
from qrydex.queue.lease import MemoryKeyLease
from qrydex.services import build_services
from qrydex.store.base import eq
from qrydex.workers.seed import PRIORITY_DISCOVER, PRIORITY_INDUSTRY, seed_default_jobs

from conftest import FakeClock, mock_client


def test_seed_default_jobs(queue, store):
    jobs = seed_default_jobs(queue, ["https://e24.no/naeringsliv"], ["62", "71"], industry_limit=25)

    assert [(j.job_type, j.priority) for j in jobs] == [
        (JobType.DISCOVER, PRIORITY_DISCOVER),
        (JobType.REGISTRY, PRIORITY_INDUSTRY),
        (JobType.REGISTRY, PRIORITY_INDUSTRY),
    ]
    assert jobs[1].target == "nace-62"
    assert jobs[1].details == {"country": "NO", "naceCode": "62", "limit": 25}

    # re-seeding while the jobs are open adds nothing
    seed_default_jobs(queue, ["https://e24.no/naeringsliv"], ["62", "71"])
    assert store.count("crawl_queue") == 3


@pytest.fixture
def services(store):
    clock = FakeClock()

    def offline(request):
        raise AssertionError(f"unexpected request to {request.url}")

    return build_services(get_settings(), store=store, client=mock_client(offline),
                          lease=MemoryKeyLease(clock), clock=clock)


def test_cli_seed_then_stats(services, store):
    seeded = asyncio.run(cli.run("seed", [], services))
    stats = asyncio.run(cli.run("stats", [], services))

    assert seeded["jobs"] == store.count("crawl_queue")
    assert stats["pending"] == stats["total"] == seeded["jobs"]
    assert store.count("crawl_queue", eq(job_type="discover")) == len(get_settings().SEED_URLS)


def test_cli_recover_and_maintenance_on_empty_store(services):
    assert asyncio.run(cli.run("recover", [], services)) == {"recovered": 0}
    assert asyncio.run(cli.run("maintenance", ["5"], services))["selected"] == 0


def test_cli_rejects_unknown_command(services):
    with pytest.raises(ValueError):
        asyncio.run(cli.run("explode", [], services))
