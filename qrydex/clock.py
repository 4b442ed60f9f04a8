"""
Qrydex - Clock
Wall clock, monotonic clock and sleep behind one object, so rate limiters,
the queue and the scheduler can be driven by a fake clock in tests.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Optional


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO string. Stored timestamps compare lexicographically."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif hasattr(value, "to_native"):
        dt = value.to_native()
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
