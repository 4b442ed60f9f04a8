"""
Qrydex - Error taxonomy

Adapters and the scraper convert these into typed results; the dispatcher and
the maintenance scheduler decide retry/skip from the kind.

    network       unreachable / timeout                 → retryable
    schema        unexpected response shape             → terminal
    rate_limited  explicit throttling from a third party → back off, re-enqueue
    not_found     identifier has no registry match       → terminal
    storage       store rejected a write                 → abort that record only
    unsupported   no adapter for the jurisdiction        → terminal
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NETWORK = "network"
    SCHEMA = "schema"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    STORAGE = "storage"
    UNSUPPORTED = "unsupported"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.NETWORK, ErrorKind.RATE_LIMITED)


class QrydexError(Exception):
    kind: ErrorKind = ErrorKind.NETWORK


class NetworkFailure(QrydexError):
    kind = ErrorKind.NETWORK


class SchemaFailure(QrydexError):
    kind = ErrorKind.SCHEMA


class NotFound(QrydexError):
    kind = ErrorKind.NOT_FOUND


class StorageFailure(QrydexError):
    kind = ErrorKind.STORAGE


class RateLimited(QrydexError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, source: str, retry_after: Optional[float] = None):
        self.source = source
        self.retry_after = retry_after
        suffix = f" Retry after {retry_after:.0f}s" if retry_after else ""
        super().__init__(f"Rate limited by {source}.{suffix}")


class Unsupported(QrydexError):
    kind = ErrorKind.UNSUPPORTED
