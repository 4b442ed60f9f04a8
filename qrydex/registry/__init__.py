"""
Qrydex - Registry Adapter Set
Routes a (country, identifier) pair to the right national registry.

    NO  Brønnøysund           GB/UK  Companies House
    DK  CVR                   FI     PRH / YTJ
    other EU members          VIES VAT validation
"""
from typing import Dict, Optional

import httpx
import structlog

from qrydex.errors import ErrorKind
from qrydex.models import RegistryVerificationResult
from qrydex.rate_limit import RateLimiter
from qrydex.registry.base import RegistryAdapter
from qrydex.registry.denmark import DenmarkRegistry
from qrydex.registry.finland import FinlandRegistry
from qrydex.registry.norway import NorwayRegistry
from qrydex.registry.uk import CompaniesHouseRegistry
from qrydex.registry.vies import ViesRegistry, is_eu_country, vies_country

logger = structlog.get_logger()

_ALIASES = {"UK": "GB"}


def _vat_number(country_code: str, org_number: str) -> str:
    prefix = vies_country(country_code)
    vat = str(org_number).replace(" ", "").upper()
    return vat if vat.startswith(prefix) else prefix + vat


class RegistrySet:
    def __init__(self, adapters: Dict[str, RegistryAdapter], vies: Optional[ViesRegistry] = None):
        self.adapters = adapters
        self.vies = vies

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings, clock=None) -> "RegistrySet":
        def limiter(name: str, interval: float) -> RateLimiter:
            return RateLimiter(max(interval, settings.REGISTRY_MIN_INTERVAL), name=name, clock=clock)

        timeout = settings.REGISTRY_TIMEOUT
        return cls(
            adapters={
                "NO": NorwayRegistry(client, limiter=limiter("brreg", NorwayRegistry.min_interval), timeout=timeout),
                "GB": CompaniesHouseRegistry(
                    client,
                    api_key=settings.COMPANIES_HOUSE_API_KEY,
                    limiter=limiter("companies_house", CompaniesHouseRegistry.min_interval),
                    timeout=timeout,
                ),
                "DK": DenmarkRegistry(client, limiter=limiter("cvr", DenmarkRegistry.min_interval), timeout=timeout),
                "FI": FinlandRegistry(client, limiter=limiter("prh", FinlandRegistry.min_interval), timeout=timeout),
            },
            vies=ViesRegistry(client, limiter=limiter("vies", ViesRegistry.min_interval), timeout=timeout),
        )

    @property
    def norway(self) -> NorwayRegistry:
        return self.adapters["NO"]

    def supports(self, country_code: str) -> bool:
        code = _ALIASES.get(country_code.upper(), country_code.upper())
        return code in self.adapters or (self.vies is not None and is_eu_country(code))

    def canonical(self, country_code: str, org_number: str) -> str:
        """
        The identifier a business is stored under. "923 609 016" and
        "NO923609016MVA" both become "923609016"; VAT numbers lose their
        country prefix. Unparseable input comes back with whitespace removed.
        """
        code = _ALIASES.get(country_code.upper(), country_code.upper())
        fallback = "".join(str(org_number).split())
        adapter = self.adapters.get(code)
        if adapter is not None:
            return adapter.normalize(org_number) or fallback
        if self.vies is not None and is_eu_country(code):
            vat = self.vies.normalize(_vat_number(code, org_number))
            return vat[2:] if vat else fallback
        return fallback

    async def verify(self, country_code: str, org_number: str) -> RegistryVerificationResult:
        code = _ALIASES.get(country_code.upper(), country_code.upper())
        adapter = self.adapters.get(code)
        if adapter is not None:
            return await adapter.verify(org_number)

        if self.vies is not None and is_eu_country(code):
            return await self.vies.verify(_vat_number(code, org_number))

        logger.info("registry_unsupported_country", country=code)
        return RegistryVerificationResult.failure(
            ErrorKind.UNSUPPORTED, f"no registry adapter for {code}", source="registry_set"
        )


__all__ = [
    "CompaniesHouseRegistry",
    "DenmarkRegistry",
    "FinlandRegistry",
    "NorwayRegistry",
    "RegistryAdapter",
    "RegistrySet",
    "ViesRegistry",
]
