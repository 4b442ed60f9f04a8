"""
Qrydex - Danish CVR (DK) via the cvrapi.dk gateway.
The gateway answers lookups for unknown numbers with an `error` field.
"""
import re
from datetime import datetime
from typing import Optional, Union

import httpx
from pydantic import BaseModel

from qrydex.errors import NotFound, RateLimited
from qrydex.models import RegistryRecord, RegistryStatus
from qrydex.registry.base import RegistryAdapter, join_address

CVR_API = "https://cvrapi.dk/api"

_CVR = re.compile(r"^\d{8}$")


def _iso_date(value: Optional[str]) -> Optional[str]:
    """cvrapi dates look like '01/02 - 2003'."""
    if not value:
        return None
    for fmt in ("%d/%m - %Y", "%d/%m/%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(value.strip(), fmt).date().isoformat()
        except ValueError:
            continue
    return value


class CvrCompany(BaseModel):
    vat: Union[int, str]
    name: str
    address: Optional[str] = None
    zipcode: Optional[Union[int, str]] = None
    city: Optional[str] = None
    startdate: Optional[str] = None
    enddate: Optional[str] = None
    employees: Optional[Union[int, str]] = None
    industrycode: Optional[Union[int, str]] = None
    industrydesc: Optional[str] = None
    creditbankrupt: Optional[bool] = None

    @property
    def status(self) -> RegistryStatus:
        if self.enddate:
            return RegistryStatus.DISSOLVED
        if self.creditbankrupt:
            return RegistryStatus.LIQUIDATION
        return RegistryStatus.ACTIVE

    def to_record(self) -> RegistryRecord:
        postal = " ".join(str(p) for p in (self.zipcode, self.city) if p)
        employees = None
        if self.employees is not None and str(self.employees).isdigit():
            employees = int(self.employees)
        industry = []
        if self.industrycode:
            industry = [f"{self.industrycode}: {self.industrydesc}" if self.industrydesc else str(self.industrycode)]
        return RegistryRecord(
            org_number=str(self.vat),
            legal_name=self.name,
            country_code="DK",
            address=join_address(self.address, postal),
            registration_date=_iso_date(self.startdate),
            industry_codes=industry,
            employee_count=employees,
            status=self.status,
            vat_number=f"DK{self.vat}",
            source=DenmarkRegistry.source,
        )


class DenmarkRegistry(RegistryAdapter):
    source = "cvr"
    country_code = "DK"
    min_interval = 1.0

    def normalize(self, org_number: str) -> Optional[str]:
        cleaned = re.sub(r"\s", "", str(org_number)).upper()
        if cleaned.startswith("DK"):
            cleaned = cleaned[2:]
        return cleaned if _CVR.match(cleaned) else None

    async def _fetch(self, org_number: str) -> httpx.Response:
        return await self._get(CVR_API, params={"search": org_number, "country": "dk"})

    def _parse(self, payload, org_number: str) -> RegistryRecord:
        if isinstance(payload, dict) and payload.get("error"):
            error = str(payload["error"])
            if "QUOTA" in error.upper():
                raise RateLimited(self.source)
            raise NotFound(f"{self.source}: {error}")
        return CvrCompany.model_validate(payload).to_record()
