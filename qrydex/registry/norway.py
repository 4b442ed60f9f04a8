"""
Qrydex - Brønnøysund Register Centre (NO)
Free public API, no key. https://data.brreg.no/enhetsregisteret/api/docs/
"""
import re
from typing import List, Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from qrydex.models import RegistryRecord, RegistryStatus
from qrydex.registry.base import RegistryAdapter, join_address, raise_for_status

logger = structlog.get_logger()

BRREG_API_BASE = "https://data.brreg.no/enhetsregisteret/api"

_ORG_NUMBER = re.compile(r"^\d{9}$")


class BrregAddress(BaseModel):
    adresse: List[str] = Field(default_factory=list)
    postnummer: Optional[str] = None
    poststed: Optional[str] = None
    land: Optional[str] = None


class BrregIndustry(BaseModel):
    kode: str
    beskrivelse: Optional[str] = None


class BrregEntity(BaseModel):
    organisasjonsnummer: str
    navn: str
    forretningsadresse: Optional[BrregAddress] = None
    registreringsdatoEnhetsregisteret: Optional[str] = None
    naeringskode1: Optional[BrregIndustry] = None
    antallAnsatte: Optional[int] = None
    registrertIMvaregisteret: bool = False
    hjemmeside: Optional[str] = None
    konkurs: bool = False
    underAvvikling: bool = False
    underTvangsavviklingEllerTvangsopplosning: bool = False
    slettedato: Optional[str] = None

    @property
    def status(self) -> RegistryStatus:
        if self.konkurs or self.slettedato:
            return RegistryStatus.DISSOLVED
        if self.underAvvikling or self.underTvangsavviklingEllerTvangsopplosning:
            return RegistryStatus.LIQUIDATION
        return RegistryStatus.ACTIVE

    def to_record(self) -> RegistryRecord:
        address = None
        if self.forretningsadresse:
            a = self.forretningsadresse
            postal = " ".join(p for p in (a.postnummer, a.poststed) if p)
            address = join_address(*a.adresse, postal, a.land)

        industry = []
        if self.naeringskode1:
            code = self.naeringskode1
            industry = [f"{code.kode}: {code.beskrivelse}" if code.beskrivelse else code.kode]

        return RegistryRecord(
            org_number=self.organisasjonsnummer,
            legal_name=self.navn,
            country_code="NO",
            address=address,
            registration_date=self.registreringsdatoEnhetsregisteret,
            industry_codes=industry,
            employee_count=self.antallAnsatte,
            status=self.status,
            vat_number=f"NO{self.organisasjonsnummer}MVA" if self.registrertIMvaregisteret else None,
            website=self.hjemmeside,
            source=NorwayRegistry.source,
        )


class BrregSearchPage(BaseModel):
    enheter: List[BrregEntity] = Field(default_factory=list)


class BrregSearchResponse(BaseModel):
    embedded: Optional[BrregSearchPage] = Field(default=None, alias="_embedded")


class NorwayRegistry(RegistryAdapter):
    source = "brreg"
    country_code = "NO"

    def normalize(self, org_number: str) -> Optional[str]:
        cleaned = re.sub(r"\s", "", str(org_number))
        if cleaned.upper().startswith("NO"):
            cleaned = cleaned[2:]
        if cleaned.upper().endswith("MVA"):
            cleaned = cleaned[:-3]
        return cleaned if _ORG_NUMBER.match(cleaned) else None

    async def _fetch(self, org_number: str) -> httpx.Response:
        return await self._get(f"{BRREG_API_BASE}/enheter/{org_number}")

    def _parse(self, payload, org_number: str) -> RegistryRecord:
        return BrregEntity.model_validate(payload).to_record()

    async def search_by_industry(self, nace_code: str, limit: int = 100) -> List[RegistryRecord]:
        """
        Active entities registered under a NACE code. Errors propagate as
        httpx / pydantic exceptions; the dispatcher classifies them.
        """
        await self.limiter.acquire()
        response = await self._get(
            f"{BRREG_API_BASE}/enheter",
            params={"naeringskode": nace_code, "size": str(limit), "konkurs": "false"},
        )
        raise_for_status(response, self.source)
        page = BrregSearchResponse.model_validate(response.json())
        entities = page.embedded.enheter if page.embedded else []
        records = [e.to_record() for e in entities]
        active = [r for r in records if r.status.is_active]
        logger.info("brreg_industry_search", nace_code=nace_code, found=len(records), active=len(active))
        return active
