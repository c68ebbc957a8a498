"""
Extraction strategies: raw units -> schema-validated ExtractedGrant.

Strategies:
- ApiRecordExtractor: field mapping for API/feed records
- SelectorExtractor: deterministic, selector hints + page text
- LLMExtractor: model-assisted (Claude / OpenAI), sanitized input

All output passes validate_extraction() against ExtractionSchema.
"""

import structlog

from grants_ingest.config.loader import ExtractionSettings

from .api import ApiRecordExtractor
from .base import ExtractionSchema, ExtractionStrategy, source_id_from_url, validate_extraction
from .llm import ClaudeProvider, LLMExtractor, LLMProvider, OpenAIProvider, parse_llm_json
from .sanitizer import sanitize_prompt_input, sanitize_prompt_list
from .selector import SelectorExtractor

logger = structlog.get_logger(__name__)


def create_page_extractor(settings: ExtractionSettings) -> ExtractionStrategy:
    """
    Build the strategy used for scraped HTML pages.

    The LLM strategy is used only when configured and a provider key is
    present; otherwise pages go through the selector strategy.
    """
    if settings.strategy == "llm":
        extractor = LLMExtractor(
            provider=settings.llm_provider or None,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            max_input_chars=settings.max_input_chars,
        )
        if extractor.is_available():
            return extractor
        logger.warning("llm_unavailable_using_selectors", provider=settings.llm_provider or "auto")
    return SelectorExtractor()


__all__ = [
    "ApiRecordExtractor",
    "ClaudeProvider",
    "ExtractionSchema",
    "ExtractionStrategy",
    "LLMExtractor",
    "LLMProvider",
    "OpenAIProvider",
    "SelectorExtractor",
    "create_page_extractor",
    "parse_llm_json",
    "sanitize_prompt_input",
    "sanitize_prompt_list",
    "source_id_from_url",
    "validate_extraction",
]
