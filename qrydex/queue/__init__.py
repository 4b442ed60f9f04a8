from qrydex.queue.crawl_queue import CrawlQueue
from qrydex.queue.lease import MemoryKeyLease, RedisKeyLease

__all__ = ["CrawlQueue", "MemoryKeyLease", "RedisKeyLease"]
