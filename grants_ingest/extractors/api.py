"""
Field-mapping extraction for structured API and feed records.
"""

import json
from typing import Any, Optional

from grants_ingest.core.deduplicator import generate_content_hash
from grants_ingest.core.errors import ExtractionError
from grants_ingest.core.models import ExtractedGrant, RawRecord, RawUnit
from grants_ingest.core.normalizer import (
    clean_text,
    normalize_categories,
    normalize_entity_types,
    normalize_funding_type,
    normalize_states,
)
from grants_ingest.sources.base import SourceConfig

from .base import ExtractionStrategy, source_id_from_url, validate_extraction
from .mapping import as_list, as_text, deadline_payload, first_value, funding_payload, iso_date, lookup

GENERIC_CONFIDENCE = 70
SUMMARY_CHARS = 500

# Canonical field -> record keys tried in order
DEFAULT_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("id", "opportunityId", "number", "guid"),
    "url": ("url", "link"),
    "title": ("title", "opportunityTitle", "name"),
    "sponsor": ("agency", "sponsor", "agencyName"),
    "description": ("description", "synopsis"),
    "summary": ("summary", "description"),
    "applyUrl": ("applyUrl", "url", "link"),
    "amountMin": ("awardFloor", "minAmount"),
    "amountMax": ("awardCeiling", "maxAmount"),
    "amountText": ("awardText", "fundingAmount"),
    "deadline": ("deadline", "closeDate", "dueDate"),
    "deadlineType": ("deadlineType",),
    "postedDate": ("postedDate", "openDate"),
    "status": ("status", "oppStatus"),
    "fundingType": ("fundingType",),
    "entityTypes": ("eligibility", "eligibleApplicants", "applicantTypes"),
    "categories": ("categories", "category"),
    "states": ("states", "state"),
}


class ApiRecordExtractor(ExtractionStrategy):
    """
    Generic mapping for JSON/feed records.

    ``extraction_hints.field_map`` (canonical field -> record key,
    dotted paths allowed) overrides the default key lists per source.
    """

    confidence = GENERIC_CONFIDENCE

    def field(self, record: dict, name: str, source: SourceConfig) -> Any:
        override = source.extraction_hints.field_map.get(name)
        if override:
            return lookup(record, override)
        return first_value(record, *DEFAULT_FIELDS.get(name, ()))

    def record_id(self, record: dict, url: Optional[str], source: SourceConfig) -> str:
        value = self.field(record, "id", source)
        if value not in (None, ""):
            return str(value)
        if url:
            return source_id_from_url(url)
        return generate_content_hash(json.dumps(record, sort_keys=True, default=str))[:16]

    def build_payload(self, record: dict, source: SourceConfig, fallback_url: str) -> dict:
        """Map one record to a camelCase schema payload."""
        hints = source.extraction_hints

        url = as_text(self.field(record, "url", source))
        apply_url = as_text(self.field(record, "applyUrl", source)) or url or fallback_url
        description = as_text(self.field(record, "description", source)) or ""
        summary = as_text(self.field(record, "summary", source))

        states = normalize_states(as_list(self.field(record, "states", source)))
        if hints.state and hints.state not in states:
            states = [hints.state, *states]
        is_national = hints.national if hints.national is not None else not states

        entity_types = normalize_entity_types(
            as_list(self.field(record, "entityTypes", source)), hints.entity_type_mapping,
        )
        for entity_type in hints.entity_types:
            if entity_type not in entity_types:
                entity_types.append(entity_type)

        categories = normalize_categories(
            [*hints.categories, *as_list(self.field(record, "categories", source))],
            hints.category_mapping,
        )

        return {
            "title": as_text(self.field(record, "title", source)) or "",
            "sponsor": as_text(self.field(record, "sponsor", source)) or hints.sponsor or "",
            "description": description,
            "summary": summary[:SUMMARY_CHARS] if summary else None,
            "applyUrl": apply_url,
            "funding": funding_payload(
                self.field(record, "amountMin", source),
                self.field(record, "amountMax", source),
                as_text(self.field(record, "amountText", source)),
                funding_type=normalize_funding_type(as_text(self.field(record, "fundingType", source))).value,
            ),
            "deadline": deadline_payload(
                self.field(record, "deadline", source),
                hints.date_format,
                as_text(self.field(record, "deadlineType", source)),
            ),
            "postedDate": iso_date(self.field(record, "postedDate", source), hints.date_format),
            "geography": {"isNational": bool(is_national), "states": states},
            "eligibility": {"entityTypes": entity_types},
            "categories": categories,
            "extractionConfidence": self.confidence,
            "status": as_text(self.field(record, "status", source)),
        }

    async def extract(self, unit: RawUnit, source: SourceConfig) -> ExtractedGrant:
        if not isinstance(unit, RawRecord):
            raise ExtractionError(f"{self.get_strategy_name()} only handles structured records")

        payload = self.build_payload(unit.data, source, unit.url)
        record_id = self.record_id(unit.data, payload["applyUrl"], source)

        return validate_extraction(
            payload,
            source_name=source.source_id,
            source_id=record_id,
            source_url=unit.url,
            raw_text=clean_text(json.dumps(unit.data, default=str)),
        )
