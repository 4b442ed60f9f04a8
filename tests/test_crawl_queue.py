"""Crawl queue: ordering, deduplication, exclusive claims and bounded retries."""
from concurrent.futures import ThreadPoolExecutor

from qrydex.models import CrawlJob, JobStatus, JobType
from qrydex.queue.crawl_queue import CrawlQueue


def _job(target, priority=50, job_type=JobType.SCRAPE, **kw):
    return CrawlJob(job_type=job_type, target=target, priority=priority, **kw)


def test_priority_then_fifo(queue, clock):
    queue.enqueue(_job("low.no", priority=10))
    clock.advance(1)
    queue.enqueue(_job("first-high.no", priority=90))
    clock.advance(1)
    queue.enqueue(_job("second-high.no", priority=90))

    claimed = queue.dequeue_batch(3, "w1")
    assert [j.target for j in claimed] == ["first-high.no", "second-high.no", "low.no"]
    assert all(j.status == JobStatus.IN_PROGRESS and j.attempts == 1 for j in claimed)


def test_seeded_discover_job_runs_before_industry_job(queue, clock):
    queue.enqueue(_job("nace-62", priority=60, job_type=JobType.REGISTRY, details={"country": "NO", "naceCode": "62"}))
    clock.advance(1)
    queue.enqueue(_job("https://e24.no/naeringsliv", priority=80, job_type=JobType.DISCOVER))

    claimed = queue.dequeue_batch(2, "w1")
    assert [j.job_type for j in claimed] == [JobType.DISCOVER, JobType.REGISTRY]
    assert claimed[1].details == {"country": "NO", "naceCode": "62"}


def test_enqueue_deduplicates_open_jobs(queue, store):
    first = queue.enqueue(_job("example.no"))
    second = queue.enqueue(_job("example.no"))
    assert second.id == first.id
    assert store.count("crawl_queue") == 1

    queue.dequeue_batch(1, "w1")
    queue.complete(first.id)
    third = queue.enqueue(_job("example.no"))
    assert third.id != first.id


def test_stale_claim_loses_race(queue):
    job = queue.enqueue(_job("example.no"))
    seen_by_a = queue.get(job.id)
    seen_by_b = queue.get(job.id)

    assert queue.claim_job(seen_by_a, "a") is not None
    assert queue.claim_job(seen_by_b, "b") is None
    assert queue.get(job.id).claimed_by == "a"


def test_concurrent_workers_never_share_a_job(queue):
    for i in range(20):
        queue.enqueue(_job(f"site{i}.no"))

    with ThreadPoolExecutor(max_workers=4) as pool:
        batches = list(pool.map(lambda w: queue.dequeue_batch(10, w), ["w1", "w2", "w3", "w4"]))

    ids = [job.id for batch in batches for job in batch]
    assert len(ids) == 20
    assert len(set(ids)) == 20


def test_retryable_failure_is_bounded(queue, clock):
    job = queue.enqueue(_job("flaky.no"))

    for attempt in (1, 2):
        [claimed] = queue.dequeue_batch(1, "w1")
        assert claimed.attempts == attempt
        assert queue.fail(job.id, "network: timeout", retryable=True) == JobStatus.PENDING
        assert queue.dequeue_batch(1, "w1") == []
        clock.advance(60 * attempt + 1)

    queue.dequeue_batch(1, "w1")
    assert queue.fail(job.id, "network: timeout", retryable=True) == JobStatus.FAILED
    stored = queue.get(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.attempts == 3
    assert stored.last_error == "network: timeout"


def test_retry_after_overrides_backoff(queue, clock):
    job = queue.enqueue(_job("throttled.no"))
    queue.dequeue_batch(1, "w1")
    queue.fail(job.id, "rate_limited", retryable=True, retry_after=10)
    clock.advance(11)
    assert [j.id for j in queue.dequeue_batch(1, "w1")] == [job.id]


def test_terminal_failure(queue):
    job = queue.enqueue(_job("broken.no"))
    queue.dequeue_batch(1, "w1")
    assert queue.fail(job.id, "schema: bad payload", retryable=False) == JobStatus.FAILED
    assert queue.get(job.id).finished_at is not None


def test_release_does_not_consume_attempt(queue, clock):
    job = queue.enqueue(_job("busy.no"))
    queue.dequeue_batch(1, "w1")
    assert queue.release(job.id, delay=5)

    stored = queue.get(job.id)
    assert stored.status == JobStatus.PENDING
    assert stored.attempts == 0
    assert queue.dequeue_batch(1, "w1") == []
    clock.advance(6)
    assert len(queue.dequeue_batch(1, "w1")) == 1


def test_recover_stale_jobs(store, clock):
    queue = CrawlQueue(store, clock=clock, max_attempts=3)
    retry = queue.enqueue(_job("retry.no"))
    last_chance = queue.enqueue(_job("last.no", max_attempts=1))
    queue.dequeue_batch(2, "crashed-worker")

    clock.advance(300)
    assert queue.recover_stale(lease_timeout=600) == 0

    clock.advance(400)
    assert queue.recover_stale(lease_timeout=600) == 2
    assert queue.get(retry.id).status == JobStatus.PENDING
    assert queue.get(last_chance.id).status == JobStatus.FAILED
    assert queue.get(last_chance.id).last_error == "lease expired"


def test_stats(queue):
    done = queue.enqueue(_job("a.no"))
    queue.enqueue(_job("b.no", priority=1))
    queue.dequeue_batch(1, "w1")
    queue.complete(done.id)
    assert queue.stats() == {"pending": 1, "in_progress": 0, "done": 1, "failed": 0, "total": 2}
