"""
Qrydex - EU VIES VAT validation
Covers EU member states without a dedicated adapter. A valid VAT
registration is treated as an active business.
"""
import re
from typing import Optional

import httpx
from pydantic import BaseModel

from qrydex.models import RegistryRecord, RegistryStatus
from qrydex.registry.base import RegistryAdapter

VIES_API = "https://ec.europa.eu/taxation_customs/vies/rest-api/ms"

EU_COUNTRY_CODES = frozenset({
    "AT", "BE", "BG", "CY", "CZ", "DE", "DK", "EE", "EL", "ES",
    "FI", "FR", "HR", "HU", "IE", "IT", "LT", "LU", "LV", "MT",
    "NL", "PL", "PT", "RO", "SE", "SI", "SK", "XI",
})


def vies_country(country_code: str) -> str:
    """Greece is EL in VIES but GR in ISO 3166."""
    code = country_code.upper()
    return "EL" if code == "GR" else code


def is_eu_country(country_code: str) -> bool:
    return vies_country(country_code) in EU_COUNTRY_CODES


class ViesResponse(BaseModel):
    isValid: bool
    name: Optional[str] = None
    address: Optional[str] = None
    userError: Optional[str] = None


class ViesRegistry(RegistryAdapter):
    """Identifiers are full VAT numbers: country prefix + national number."""

    source = "vies"
    min_interval = 1.0

    def normalize(self, org_number: str) -> Optional[str]:
        cleaned = re.sub(r"[\s.\-]", "", str(org_number)).upper()
        if len(cleaned) < 4:
            return None
        country = vies_country(cleaned[:2])
        if country not in EU_COUNTRY_CODES:
            return None
        return country + cleaned[2:]

    async def _fetch(self, org_number: str) -> httpx.Response:
        return await self._get(f"{VIES_API}/{org_number[:2]}/vat/{org_number[2:]}")

    def _parse(self, payload, org_number: str) -> RegistryRecord:
        data = ViesResponse.model_validate(payload)
        name = data.name if data.name and data.name.strip("- ") else ""
        address = data.address if data.address and data.address.strip("- ") else None
        country = "GR" if org_number[:2] == "EL" else org_number[:2]
        return RegistryRecord(
            org_number=org_number[2:],
            legal_name=name,
            country_code=country,
            address=" ".join(address.split()) if address else None,
            status=RegistryStatus.ACTIVE if data.isValid else RegistryStatus.INACTIVE,
            vat_number=org_number,
            source=self.source,
        )
