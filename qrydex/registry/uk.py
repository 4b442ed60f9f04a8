"""
Qrydex - Companies House (GB)
Requires an API key, sent as the HTTP basic-auth username with an empty password.
"""
import re
from typing import List, Optional

import httpx
from pydantic import BaseModel, Field

from qrydex.errors import ErrorKind
from qrydex.models import RegistryRecord, RegistryStatus, RegistryVerificationResult
from qrydex.registry.base import RegistryAdapter, join_address

COMPANIES_HOUSE_API = "https://api.company-information.service.gov.uk"

_COMPANY_NUMBER = re.compile(r"^(?:[A-Z]{2}\d{6}|\d{8})$")

_STATUS = {
    "active": RegistryStatus.ACTIVE,
    "open": RegistryStatus.ACTIVE,
    "dissolved": RegistryStatus.DISSOLVED,
    "converted-closed": RegistryStatus.DISSOLVED,
    "removed": RegistryStatus.DISSOLVED,
    "closed": RegistryStatus.DISSOLVED,
    "liquidation": RegistryStatus.LIQUIDATION,
    "receivership": RegistryStatus.LIQUIDATION,
    "administration": RegistryStatus.LIQUIDATION,
    "voluntary-arrangement": RegistryStatus.LIQUIDATION,
    "insolvency-proceedings": RegistryStatus.LIQUIDATION,
}


class OfficeAddress(BaseModel):
    address_line_1: Optional[str] = None
    address_line_2: Optional[str] = None
    locality: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class CompanyProfile(BaseModel):
    company_number: str
    company_name: str
    company_status: Optional[str] = None
    date_of_creation: Optional[str] = None
    registered_office_address: Optional[OfficeAddress] = None
    sic_codes: List[str] = Field(default_factory=list)

    def to_record(self) -> RegistryRecord:
        address = None
        if self.registered_office_address:
            a = self.registered_office_address
            address = join_address(a.address_line_1, a.address_line_2, a.locality, a.postal_code, a.country)
        return RegistryRecord(
            org_number=self.company_number,
            legal_name=self.company_name,
            country_code="GB",
            address=address,
            registration_date=self.date_of_creation,
            industry_codes=list(self.sic_codes),
            status=_STATUS.get((self.company_status or "").lower(), RegistryStatus.UNKNOWN),
            source=CompaniesHouseRegistry.source,
        )


class CompaniesHouseRegistry(RegistryAdapter):
    source = "companies_house"
    country_code = "GB"

    def __init__(self, client: httpx.AsyncClient, api_key: str = "", **kwargs):
        super().__init__(client, **kwargs)
        self.api_key = api_key

    def normalize(self, org_number: str) -> Optional[str]:
        cleaned = re.sub(r"\s", "", str(org_number)).upper()
        if cleaned.isdigit():
            cleaned = cleaned.zfill(8)
        return cleaned if _COMPANY_NUMBER.match(cleaned) else None

    async def verify(self, org_number: str) -> RegistryVerificationResult:
        if not self.api_key:
            return RegistryVerificationResult.failure(
                ErrorKind.UNSUPPORTED, "COMPANIES_HOUSE_API_KEY not configured", self.source
            )
        return await super().verify(org_number)

    async def _fetch(self, org_number: str) -> httpx.Response:
        return await self._get(
            f"{COMPANIES_HOUSE_API}/company/{org_number}",
            auth=httpx.BasicAuth(self.api_key, ""),
        )

    def _parse(self, payload, org_number: str) -> RegistryRecord:
        return CompanyProfile.model_validate(payload).to_record()
