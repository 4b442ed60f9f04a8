"""
Qrydex - Registry Adapter base

Every national registry is wrapped in an adapter that returns a
RegistryVerificationResult and never raises:

    HTTP 404              → not_found
    HTTP 429              → rate_limited (Retry-After honoured)
    other non-2xx, 3xx included  → network
    transport / timeout   → network
    payload fails model   → schema

Adapters validate payloads with pydantic models; anything the model rejects
is a schema failure, not a crash.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from qrydex.errors import ErrorKind, NotFound, QrydexError, RateLimited
from qrydex.models import RegistryRecord, RegistryVerificationResult
from qrydex.rate_limit import RateLimiter

logger = structlog.get_logger()

USER_AGENT = "Qrydex/1.0 (Business Verification Platform)"


def retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def raise_for_status(response: httpx.Response, source: str) -> None:
    """Map registry HTTP status codes onto the error taxonomy."""
    if response.status_code == 404:
        raise NotFound(f"{source}: no entity found")
    if response.status_code == 429:
        raise RateLimited(source, retry_after_seconds(response))
    if not 200 <= response.status_code < 300:
        raise httpx.HTTPStatusError(
            f"{source} returned HTTP {response.status_code}",
            request=response.request,
            response=response,
        )


class RegistryAdapter(ABC):
    """One national registry. Subclasses implement normalize/_fetch/_parse."""

    source: str = ""
    country_code: str = ""
    min_interval: float = 0.5

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: Optional[RateLimiter] = None,
        timeout: float = 10.0,
    ):
        self.client = client
        self.limiter = limiter or RateLimiter(self.min_interval, name=self.source)
        self.timeout = timeout

    def normalize(self, org_number: str) -> Optional[str]:
        """Canonical identifier, or None when the format cannot be valid."""
        cleaned = "".join(str(org_number).split())
        return cleaned or None

    @abstractmethod
    async def _fetch(self, org_number: str) -> httpx.Response:
        ...

    @abstractmethod
    def _parse(self, payload: Any, org_number: str) -> RegistryRecord:
        ...

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        headers.update(kwargs.pop("headers", {}))
        return await self.client.get(url, headers=headers, timeout=self.timeout, **kwargs)

    async def verify(self, org_number: str) -> RegistryVerificationResult:
        org = self.normalize(org_number)
        if org is None:
            return RegistryVerificationResult.failure(
                ErrorKind.NOT_FOUND, f"invalid identifier format: {org_number}", self.source
            )

        try:
            await self.limiter.acquire()
            response = await self._fetch(org)
            raise_for_status(response, self.source)
            record = self._parse(response.json(), org)
        except RateLimited as e:
            self.limiter.backoff(e.retry_after)
            logger.warning("registry_rate_limited", source=self.source, org_number=org,
                           retry_after=e.retry_after)
            return RegistryVerificationResult.failure(
                ErrorKind.RATE_LIMITED, str(e), self.source, retry_after=e.retry_after
            )
        except QrydexError as e:
            logger.info("registry_lookup_failed", source=self.source, org_number=org,
                        kind=e.kind.value, error=str(e))
            return RegistryVerificationResult.failure(e.kind, str(e), self.source)
        except (ValidationError, ValueError, KeyError, TypeError) as e:
            # json decode errors are ValueErrors too
            logger.warning("registry_schema_mismatch", source=self.source, org_number=org, error=str(e)[:200])
            return RegistryVerificationResult.failure(ErrorKind.SCHEMA, str(e)[:200], self.source)
        except httpx.HTTPError as e:
            logger.warning("registry_network_error", source=self.source, org_number=org,
                           error=str(e) or type(e).__name__)
            return RegistryVerificationResult.failure(
                ErrorKind.NETWORK, str(e) or type(e).__name__, self.source
            )

        self.limiter.reset_backoff()
        logger.info("registry_verified", source=self.source, org_number=org, status=record.status.value)
        return RegistryVerificationResult.ok(record, self.source)


def join_address(*parts) -> Optional[str]:
    cleaned = [str(p).strip() for p in parts if p and str(p).strip()]
    return ", ".join(cleaned) or None