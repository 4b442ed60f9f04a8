"""
Qrydex - AI Summarizer
Asks an OpenAI chat model for a short business summary plus red flags and
trust signals. Raises NetworkFailure / SchemaFailure; the scraper turns any
failure into ai_status=unavailable.
"""
import json
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from qrydex.errors import NetworkFailure, RateLimited, SchemaFailure

logger = structlog.get_logger()

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"

PROMPT = """You are an expert fraud investigator and business analyst.
Analyze the following business website data and decide whether it looks like a
legitimate B2B company.

Business data:
{context}

Check for: mismatches between the legal name and the website, generic or copied
content, missing contact information, and claims that do not fit the business.

Return a JSON object with exactly these keys:
{{"summary": "max 2 sentences", "red_flags": [string], "trust_signals": [string]}}
"""


class SummaryPayload(BaseModel):
    summary: str
    red_flags: List[str] = Field(default_factory=list)
    trust_signals: List[str] = Field(default_factory=list)


@dataclass
class Summary:
    ai_summary: str
    red_flags: List[str] = field(default_factory=list)
    trust_signals: List[str] = field(default_factory=list)


class Summarizer:
    """OpenAI chat-completions client, same request shape as the monitoring clients."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        base_url: str = OPENAI_CHAT_URL,
    ):
        self.client = client
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.base_url = base_url

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def summarize(self, domain: str, page, legal_name: Optional[str] = None) -> Summary:
        context = {
            "name": legal_name,
            "domain": domain,
            "title": page.title,
            "description": page.description,
            "about": page.about,
            "products": page.products[:10],
            "services": page.services[:10],
            "emails": page.emails[:5],
            "phones": page.phones[:5],
            "content_snippet": page.text[:1000],
        }
        try:
            response = await self.client.post(
                self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": [{"role": "user", "content": PROMPT.format(context=json.dumps(context, indent=2))}],
                    "response_format": {"type": "json_object"},
                    "max_tokens": 600,
                    "temperature": 0.2,
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise NetworkFailure(f"summarizer request failed: {e or type(e).__name__}") from e

        if response.status_code == 429:
            raise RateLimited("openai")
        if response.status_code >= 400:
            raise NetworkFailure(f"summarizer returned HTTP {response.status_code}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
            payload = SummaryPayload.model_validate(json.loads(content))
        except (KeyError, IndexError, TypeError, ValueError, ValidationError) as e:
            raise SchemaFailure(f"unexpected summarizer response: {str(e)[:200]}") from e

        logger.debug("summarizer_complete", domain=domain, red_flags=len(payload.red_flags))
        return Summary(
            ai_summary=payload.summary.strip(),
            red_flags=[f.strip() for f in payload.red_flags if f and f.strip()],
            trust_signals=[s.strip() for s in payload.trust_signals if s and s.strip()],
        )
