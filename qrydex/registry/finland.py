"""
Qrydex - Finnish Patent and Registration Office (FI), YTJ open data.
"""
import re
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from qrydex.errors import NotFound
from qrydex.models import RegistryRecord, RegistryStatus
from qrydex.registry.base import RegistryAdapter, join_address

PRH_API = "http://avoindata.prh.fi/bis/v1"

_BUSINESS_ID = re.compile(r"^\d{7}-\d$")


class PrhAddress(BaseModel):
    street: Optional[str] = None
    postCode: Optional[str] = None
    city: Optional[str] = None
    endDate: Optional[str] = None


class PrhBusinessLine(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    language: Optional[str] = None


class PrhCompany(BaseModel):
    businessId: str
    name: str
    registrationDate: Optional[str] = None
    addresses: List[PrhAddress] = Field(default_factory=list)
    businessLines: List[PrhBusinessLine] = Field(default_factory=list)
    liquidations: List[dict] = Field(default_factory=list)

    def to_record(self) -> RegistryRecord:
        current = [a for a in self.addresses if not a.endDate]
        address = None
        if current:
            a = current[0]
            address = join_address(a.street, " ".join(p for p in (a.postCode, a.city) if p))
        lines = [b for b in self.businessLines if b.code]
        english = [b for b in lines if (b.language or "").upper() == "EN"] or lines
        return RegistryRecord(
            org_number=self.businessId,
            legal_name=self.name,
            country_code="FI",
            address=address,
            registration_date=self.registrationDate,
            industry_codes=[f"{b.code}: {b.name}" if b.name else b.code for b in english[:1]],
            status=RegistryStatus.LIQUIDATION if self.liquidations else RegistryStatus.ACTIVE,
            vat_number="FI" + self.businessId.replace("-", ""),
            source=FinlandRegistry.source,
        )


class PrhResponse(BaseModel):
    results: List[PrhCompany] = Field(default_factory=list)


class FinlandRegistry(RegistryAdapter):
    source = "prh"
    country_code = "FI"

    def normalize(self, org_number: str) -> Optional[str]:
        cleaned = re.sub(r"\s", "", str(org_number))
        if re.match(r"^\d{8}$", cleaned):
            cleaned = f"{cleaned[:7]}-{cleaned[7]}"
        return cleaned if _BUSINESS_ID.match(cleaned) else None

    async def _fetch(self, org_number: str) -> httpx.Response:
        return await self._get(f"{PRH_API}/{org_number}")

    def _parse(self, payload, org_number: str) -> RegistryRecord:
        response = PrhResponse.model_validate(payload)
        if not response.results:
            raise NotFound(f"{self.source}: no entity {org_number}")
        return response.results[0].to_record()
