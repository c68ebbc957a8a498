"""
LLM-assisted extraction for unstructured grant pages.

Supports multiple providers:
- Anthropic Claude
- OpenAI GPT

The model only reads the page; its answer is normalized and then
validated against the extraction schema like any other strategy.
Requires an API key (ANTHROPIC_API_KEY / OPENAI_API_KEY).
"""

import asyncio
import json
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog

from grants_ingest.core.errors import ExtractionError
from grants_ingest.core.models import ExtractedGrant, RawPage, RawUnit
from grants_ingest.core.normalizer import (
    normalize_categories,
    normalize_deadline_type,
    normalize_entity_types,
    normalize_funding_type,
    normalize_states,
)
from grants_ingest.sources.base import SourceConfig

from .base import ExtractionStrategy, source_id_from_url, validate_extraction
from .mapping import as_list, funding_payload, iso_date, to_amount
from .sanitizer import sanitize_prompt_input, sanitize_prompt_list

logger = structlog.get_logger(__name__)


MAX_RAW_TEXT_CHARS = 15000
MAX_HINT_CHARS = 500
MAX_SHORT_HINT_CHARS = 200
DEFAULT_CONFIDENCE = 50

EXTRACTION_PROMPT = """You are a grant data extraction system. Extract structured grant information from the provided text.

RULES:
1. Only extract information that is explicitly stated in the text
2. Do not guess, infer or make up information
3. Use null for fields that are not found
4. Copy amounts and dates exactly when you also give their original text

SOURCE: {source_name}
URL: {source_url}

RAW TEXT:
{raw_text}
{hints}
Return ONLY valid JSON (no markdown, no explanation):

{{
  "title": "exact grant/program title",
  "sponsor": "funding agency or organization",
  "description": "full description",
  "summary": "1-2 sentence summary",
  "applyUrl": "URL to apply or learn more, or null",
  "funding": {{"min": number|null, "max": number|null, "text": "original funding text"|null,
              "type": "grant|loan|rebate|tax_credit|forgivable_loan|unknown"}},
  "deadline": {{"type": "fixed|rolling|unknown", "date": "YYYY-MM-DD"|null, "text": "original deadline text"|null}},
  "postedDate": "YYYY-MM-DD"|null,
  "geography": {{"isNational": bool, "states": ["2-letter codes"], "isLocalOnly": bool, "serviceAreaText": string|null}},
  "eligibility": {{
    "entityTypes": ["nonprofit|small_business|individual|for_profit|educational|government|tribal"],
    "industries": [], "restrictions": ["who is NOT eligible"], "requirements": [],
    "budgetMin": number|null, "budgetMax": number|null,
    "citizenshipRequired": bool, "samRequired": bool, "ruralOnly": bool, "urbanOnly": bool
  }},
  "categories": ["agriculture|arts_culture|business|community_development|education|energy|environment|health|research|technology|transportation"],
  "purposeTags": ["equipment, hiring, R&D, expansion, training, capital, operating, ..."],
  "requirements": {{"documents": [], "certifications": [], "registrations": [], "other": []}},
  "contact": {{"name": string|null, "email": string|null, "phone": string|null, "agency": string|null}},
  "confidence": number 0-100
}}
"""


def build_prompt(page: RawPage, source: SourceConfig, max_chars: int = MAX_RAW_TEXT_CHARS) -> str:
    """Assemble the extraction prompt from sanitized page text and hints."""
    found = page.hints
    lines = []
    for label, key, limit in (
        ("Title", "title", MAX_HINT_CHARS),
        ("Sponsor", "sponsor", MAX_HINT_CHARS),
        ("Deadline", "deadline_text", MAX_SHORT_HINT_CHARS),
        ("Amount", "amount_text", MAX_SHORT_HINT_CHARS),
    ):
        if found.get(key):
            lines.append(f"- {label} hint: {sanitize_prompt_input(found[key], limit)}")
    if source.extraction_hints.categories:
        lines.append(f"- Category hint: {sanitize_prompt_list(source.extraction_hints.categories)}")

    hints = ""
    if lines:
        hints = "\nPRE-EXTRACTED HINTS (verify these against the text):\n" + "\n".join(lines) + "\n"

    return EXTRACTION_PROMPT.format(
        source_name=sanitize_prompt_input(source.name, MAX_SHORT_HINT_CHARS),
        source_url=sanitize_prompt_input(page.url, MAX_HINT_CHARS),
        raw_text=sanitize_prompt_input(page.text, max_chars),
        hints=hints,
    )


def parse_llm_json(response_text: str) -> dict:
    """
    Parse a model answer into a dict.

    Handles ```json fences and repairs trailing commas and single quotes.

    Raises:
        ExtractionError: Answer is not a JSON object
    """
    json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response_text)
    json_str = (json_match.group(1) if json_match else response_text).strip()

    try:
        data = json.loads(json_str)
    except json.JSONDecodeError:
        repaired = re.sub(r",\s*}", "}", json_str)
        repaired = re.sub(r",\s*]", "]", repaired).replace("'", '"')
        try:
            data = json.loads(repaired)
        except json.JSONDecodeError as e:
            logger.error("json_parse_failed", error=str(e), response=response_text[:500])
            raise ExtractionError("Failed to parse LLM response as JSON") from e

    if not isinstance(data, dict):
        raise ExtractionError("LLM response is not a JSON object")
    return data


def _obj(data: dict, key: str) -> dict:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _strings(value: Any) -> list[str]:
    return [item for item in as_list(value) if item]


def _number(value: Any) -> Optional[float]:
    return to_amount(value)


def _flag(value: Any) -> bool:
    # Models sometimes quote booleans; anything but an explicit true is false
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def _confidence(value: Any) -> int:
    number = _number(value)
    if number is None:
        return DEFAULT_CONFIDENCE
    if 0 < number <= 1:
        number *= 100
    return int(round(number))


def map_llm_response(data: dict, page: RawPage, source: SourceConfig) -> dict:
    """Normalize a model answer into a camelCase schema payload."""
    hints = source.extraction_hints
    funding = _obj(data, "funding")
    deadline = _obj(data, "deadline")
    geography = _obj(data, "geography")
    eligibility = _obj(data, "eligibility")
    requirements = _obj(data, "requirements")
    contact = _obj(data, "contact")

    states = normalize_states(_strings(geography.get("states")))
    if hints.state and hints.state not in states:
        states = [hints.state, *states]

    deadline_date = iso_date(deadline.get("date"), hints.date_format)
    deadline_type = normalize_deadline_type(_str(deadline.get("type"))).value
    if deadline_type == "unknown" and deadline_date:
        deadline_type = "fixed"

    entity_types = normalize_entity_types(_strings(eligibility.get("entityTypes")), hints.entity_type_mapping)
    for entity_type in hints.entity_types:
        if entity_type not in entity_types:
            entity_types.append(entity_type)

    return {
        "title": _str(data.get("title")) or page.hints.get("title") or "",
        "sponsor": _str(data.get("sponsor")) or hints.sponsor or "",
        "description": _str(data.get("description")) or "",
        "summary": _str(data.get("summary")),
        "applyUrl": _str(data.get("applyUrl")) or page.url,
        "funding": funding_payload(
            _number(funding.get("min")),
            _number(funding.get("max")),
            _str(funding.get("text")),
            normalize_funding_type(_str(funding.get("type"))).value,
        ),
        "deadline": {"type": deadline_type, "date": deadline_date, "text": _str(deadline.get("text"))},
        "postedDate": iso_date(data.get("postedDate")),
        "geography": {
            "isNational": _flag(geography.get("isNational")) if hints.national is None else hints.national,
            "states": states,
            "isLocalOnly": _flag(geography.get("isLocalOnly")),
            "serviceAreaText": _str(geography.get("serviceAreaText")),
        },
        "eligibility": {
            "entityTypes": entity_types,
            "industries": normalize_categories(_strings(eligibility.get("industries"))),
            "restrictions": _strings(eligibility.get("restrictions")),
            "requirements": _strings(eligibility.get("requirements")),
            "budgetMin": _number(eligibility.get("budgetMin")),
            "budgetMax": _number(eligibility.get("budgetMax")),
            "citizenshipRequired": _flag(eligibility.get("citizenshipRequired")),
            "samRequired": _flag(eligibility.get("samRequired")),
            "ruralOnly": _flag(eligibility.get("ruralOnly")),
            "urbanOnly": _flag(eligibility.get("urbanOnly")),
        },
        "categories": normalize_categories(
            [*hints.categories, *_strings(data.get("categories"))], hints.category_mapping,
        ),
        "purposeTags": _strings(data.get("purposeTags")),
        "requirements": {
            "documents": _strings(requirements.get("documents")),
            "certifications": _strings(requirements.get("certifications")),
            "registrations": _strings(requirements.get("registrations")),
            "other": _strings(requirements.get("other")),
        },
        "contact": {
            "name": _str(contact.get("name")),
            "email": _str(contact.get("email")),
            "phone": _str(contact.get("phone")),
            "agency": _str(contact.get("agency")),
        },
        "extractionConfidence": _confidence(data.get("confidence")),
    }


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name = "llm"

    def __init__(self, api_key: Optional[str], model: str, timeout: float = 60.0, max_retries: int = 2):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = None

    def is_available(self) -> bool:
        """Check if the provider has an API key."""
        return bool(self.api_key)

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Send prompt, return the raw text answer."""


class ClaudeProvider(LLMProvider):
    """Anthropic Claude provider."""

    name = "claude"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        timeout: float = 60.0,
        max_retries: int = 2,
    ):
        super().__init__(api_key or os.getenv("ANTHROPIC_API_KEY"), model, timeout, max_retries)

    def _get_client(self):
        """Lazy-load Anthropic client."""
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                logger.warning("anthropic_not_installed", hint="pip install anthropic")
                raise
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._client

    async def complete(self, prompt: str) -> str:
        client = self._get_client()
        message = await client.messages.create(
            model=self.model,
            max_tokens=4096,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in message.content if getattr(block, "type", "") == "text")


class OpenAIProvider(LLMProvider):
    """OpenAI GPT provider."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        timeout: float = 60.0,
        max_retries: int = 2,
    ):
        super().__init__(api_key or os.getenv("OPENAI_API_KEY"), model, timeout, max_retries)

    def _get_client(self):
        """Lazy-load OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                logger.warning("openai_not_installed", hint="pip install openai")
                raise
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._client

    async def complete(self, prompt: str) -> str:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=4096,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""


class LLMExtractor(ExtractionStrategy):
    """
    Model-assisted extraction strategy.

    Automatically selects an available provider (Claude, then OpenAI)
    unless one is forced.

    Usage:
        extractor = LLMExtractor(timeout=60)
        if extractor.is_available():
            grant = await extractor.extract(page, source)
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        timeout: float = 60.0,
        max_retries: int = 2,
        max_input_chars: int = MAX_RAW_TEXT_CHARS,
        providers: Optional[dict[str, LLMProvider]] = None,
    ):
        """
        Initialize LLM extractor.

        Args:
            provider: Force 'claude' or 'openai'; None/"" for auto
            anthropic_api_key: Override env ANTHROPIC_API_KEY
            openai_api_key: Override env OPENAI_API_KEY
            timeout: Deadline for one extraction in seconds
            max_retries: Client-level retry budget
            max_input_chars: Cap on page text sent to the model
            providers: Explicit provider instances (replaces the defaults)
        """
        super().__init__()
        self.providers: dict[str, LLMProvider] = providers or {
            "claude": ClaudeProvider(api_key=anthropic_api_key, timeout=timeout, max_retries=max_retries),
            "openai": OpenAIProvider(api_key=openai_api_key, timeout=timeout, max_retries=max_retries),
        }
        self.forced_provider = provider or None
        self.timeout = timeout
        self.max_input_chars = max_input_chars
        self._selected_provider: Optional[LLMProvider] = None

    def is_available(self) -> bool:
        """Check if any LLM provider is available."""
        return any(p.is_available() for p in self.providers.values())

    def get_provider(self) -> Optional[LLMProvider]:
        """Get the selected/available provider."""
        if self._selected_provider:
            return self._selected_provider

        if self.forced_provider:
            provider = self.providers.get(self.forced_provider)
            if provider and provider.is_available():
                self._selected_provider = provider
                return provider
            self.logger.warning("forced_provider_not_available", provider=self.forced_provider)

        for provider in self.providers.values():
            if provider.is_available():
                self._selected_provider = provider
                self.logger.info("llm_provider_selected", provider=provider.name)
                return provider

        return None

    async def extract(self, unit: RawUnit, source: SourceConfig) -> ExtractedGrant:
        if not isinstance(unit, RawPage):
            raise ExtractionError(f"{self.get_strategy_name()} only handles HTML pages")

        provider = self.get_provider()
        if provider is None:
            raise ExtractionError("No LLM provider available")

        prompt = build_prompt(unit, source, self.max_input_chars)

        try:
            response_text = await asyncio.wait_for(provider.complete(prompt), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ExtractionError(f"LLM extraction timed out after {self.timeout}s") from e
        except Exception as e:
            self.logger.error("llm_extraction_failed", provider=provider.name, url=unit.url, error=str(e))
            raise ExtractionError(f"LLM extraction failed: {e}") from e

        payload = map_llm_response(parse_llm_json(response_text), unit, source)

        return validate_extraction(
            payload,
            source_name=source.source_id,
            source_id=source_id_from_url(unit.url),
            source_url=unit.url,
            raw_text=unit.text,
        )
