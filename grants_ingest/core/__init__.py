"""
Core layer - stable foundation for the ingestion pipeline.

Components:
- models: RawPage/RawRecord, ExtractedGrant, ValidationResult, NormalizedGrant, run stats
- errors: Fatal vs. recoverable exception taxonomy
- http_client: Rate-limited, retrying HTTP client and link checks
- selectors: HTML main-text, hint, listing-link and pagination helpers
- normalizer: Date, amount, state and vocabulary normalization
- validator: Quality scoring and validity checks
- deduplicator: Exact-key, fingerprint and fuzzy deduplication
- canonical: ExtractedGrant -> NormalizedGrant mapping
- expiry: Status and expiry rules
"""

from .models import (
    ExtractedGrant,
    NormalizedGrant,
    RawPage,
    RawRecord,
    ValidationResult,
    IngestionRunStats,
    IngestionError,
)
from .normalizer import (
    clean_text,
    parse_date,
    parse_amount,
    parse_amount_range,
    determine_status,
)
from .deduplicator import Deduplicator, generate_fingerprint, generate_content_hash

__all__ = [
    "ExtractedGrant",
    "NormalizedGrant",
    "RawPage",
    "RawRecord",
    "ValidationResult",
    "IngestionRunStats",
    "IngestionError",
    "clean_text",
    "parse_date",
    "parse_amount",
    "parse_amount_range",
    "determine_status",
    "Deduplicator",
    "generate_fingerprint",
    "generate_content_hash",
]
