"""
Federal API adapters: Grants.gov, SBIR.gov and SAM.gov.

Each maps its API's record shape to the extraction schema with
agency-specific vocabularies (applicant codes, category codes).
"""

import json
from abc import abstractmethod
from typing import Optional

from grants_ingest.core.models import ExtractedGrant, RawRecord
from grants_ingest.core.normalizer import (
    clean_text,
    extract_requirements,
    normalize_categories,
    normalize_entity_types,
)
from grants_ingest.core.taxonomy import GRANTS_GOV_CATEGORIES, GRANTS_GOV_ELIGIBILITY
from grants_ingest.extractors import validate_extraction
from grants_ingest.extractors.mapping import (
    as_list,
    as_text,
    deadline_payload,
    detect_entity_types,
    first_value,
    funding_payload,
    iso_date,
    to_amount,
)

from .configured import ConfiguredAdapter

SUMMARY_CHARS = 500


def format_amount(value: Optional[float]) -> str:
    return f"${value:,.0f}"


class RecordMappingAdapter(ConfiguredAdapter):
    """Adapter with a hand-written record mapping instead of the generic one."""

    confidence = 70

    @abstractmethod
    def record_id(self, record: dict) -> Optional[str]:
        """Id of the record inside the source."""

    @abstractmethod
    def map_record(self, record: dict, unit: RawRecord) -> dict:
        """Map one record to a camelCase schema payload."""

    async def normalize_record(self, unit: RawRecord) -> ExtractedGrant:
        record = unit.data
        record_id = self.record_id(record) or unit.content_hash[:16]
        return validate_extraction(
            self.map_record(record, unit),
            source_name=self.source_id,
            source_id=str(record_id),
            source_url=unit.url,
            raw_text=clean_text(json.dumps(record, default=str)),
        )


def grants_gov_entity_types(values: list[str]) -> list[str]:
    """Applicant codes ("25 - Nonprofits ...") and names -> entity types."""
    found: list[str] = []
    for value in values:
        lowered = value.strip().lower()
        for codes, phrases, entity_type in GRANTS_GOV_ELIGIBILITY:
            if entity_type in found:
                continue
            if lowered.startswith(codes) or any(phrase in lowered for phrase in phrases):
                found.append(entity_type)
    for entity_type in normalize_entity_types(values):
        if entity_type not in found:
            found.append(entity_type)
    return found


def grants_gov_categories(values: list[str]) -> list[str]:
    categories: list[str] = []
    names: list[str] = []
    for value in values:
        code = value.strip().upper()
        if code in GRANTS_GOV_CATEGORIES:
            categories.extend(c for c in GRANTS_GOV_CATEGORIES[code] if c not in categories)
        else:
            names.append(value)
    for category in normalize_categories(names):
        if category not in categories:
            categories.append(category)
    return categories


class GrantsGovAdapter(RecordMappingAdapter):
    """Grants.gov search API (search2-style hits or full opportunity records)."""

    confidence = 85
    DETAIL_URL = "https://www.grants.gov/search-results-detail/{id}"

    def record_id(self, record: dict) -> Optional[str]:
        value = first_value(record, "id", "opportunityId")
        return str(value) if value is not None else None

    def map_record(self, record: dict, unit: RawRecord) -> dict:
        hints = self.source.extraction_hints
        record_id = self.record_id(record)

        description = as_text(first_value(record, "synopsis.synopsisDesc", "synopsis", "description")) or ""
        floor = to_amount(first_value(record, "awardFloor", "fundingDetails.awardFloor"))
        ceiling = to_amount(first_value(record, "awardCeiling", "fundingDetails.awardCeiling"))
        if floor is not None and ceiling is not None:
            funding_text = f"{format_amount(floor)} - {format_amount(ceiling)}"
        else:
            funding_text = as_text(first_value(record, "awardText", "fundingDetails.estimatedFunding"))

        applicants = as_list(first_value(record, "eligibleApplicants", "synopsis.applicantTypes", "applicantTypes"))
        categories = as_list(first_value(
            record, "category", "fundingActivityCategories", "synopsis.fundingActivityCategories",
        ))

        return {
            "title": as_text(first_value(record, "title", "opportunityTitle")) or "",
            "sponsor": as_text(first_value(record, "agency", "agencyName", "agencyCode")) or "",
            "description": description,
            "summary": description[:SUMMARY_CHARS] or None,
            "applyUrl": self.DETAIL_URL.format(id=record_id) if record_id else unit.url,
            "funding": funding_payload(floor, ceiling, funding_text, "grant"),
            "deadline": deadline_payload(first_value(record, "closeDate"), hints.date_format),
            "postedDate": iso_date(first_value(record, "openDate", "postedDate", "postDate"), hints.date_format),
            "geography": {"isNational": True, "states": []},
            "eligibility": {
                "entityTypes": grants_gov_entity_types(applicants),
                "samRequired": True,
                "requirements": extract_requirements(description),
            },
            "categories": grants_gov_categories(categories),
            "extractionConfidence": self.confidence,
            "status": as_text(first_value(record, "oppStatus", "opportunityStatus")),
        }


SBIR_REQUIREMENTS = [
    "Must be a U.S. small business",
    "Fewer than 500 employees",
    "51% owned by U.S. citizens or permanent residents",
]


class SbirAdapter(RecordMappingAdapter):
    """SBIR/STTR solicitations (small business R&D)."""

    confidence = 90
    DETAIL_URL = "https://www.sbir.gov/node/{id}"

    def record_id(self, record: dict) -> Optional[str]:
        value = first_value(record, "solicitationId", "solicitation_id", "id", "solicitation_number")
        return str(value) if value is not None else None

    def map_record(self, record: dict, unit: RawRecord) -> dict:
        hints = self.source.extraction_hints
        record_id = self.record_id(record)

        phase1 = to_amount(first_value(record, "phase1Amount", "phase_1_amount"))
        phase2 = to_amount(first_value(record, "phase2Amount", "phase_2_amount"))
        funding_text = f"Phase I: {format_amount(phase1)}" if phase1 is not None else None

        description = as_text(first_value(record, "description", "abstract")) or ""
        apply_url = as_text(first_value(record, "applicationUrl", "url", "sbir_solicitation_link"))
        if not apply_url:
            apply_url = self.DETAIL_URL.format(id=record_id) if record_id else unit.url

        return {
            "title": as_text(first_value(record, "solicitationTitle", "solicitation_title", "title")) or "",
            "sponsor": as_text(first_value(record, "agency")) or "Multiple Agencies",
            "description": description,
            "summary": description[:SUMMARY_CHARS] or None,
            "applyUrl": apply_url,
            "funding": funding_payload(phase1, phase2, funding_text, "grant"),
            "deadline": deadline_payload(
                first_value(record, "closeDate", "close_date", "deadline", "application_due_date"),
                hints.date_format,
            ),
            "postedDate": iso_date(first_value(record, "openDate", "open_date", "releaseDate", "release_date")),
            "geography": {"isNational": True, "states": []},
            "eligibility": {
                "entityTypes": ["small_business"],
                "requirements": list(SBIR_REQUIREMENTS),
                "citizenshipRequired": True,
            },
            "categories": ["research", "technology"],
            "purposeTags": ["R&D", "innovation"],
            "extractionConfidence": self.confidence,
            "status": as_text(first_value(record, "status", "current_status")),
        }


class SamGovAdapter(RecordMappingAdapter):
    """SAM.gov assistance listings (CFDA) and opportunity notices."""

    confidence = 80
    LISTING_URL = "https://sam.gov/fal/{id}"

    def record_id(self, record: dict) -> Optional[str]:
        value = first_value(record, "cfda", "noticeId", "solicitationNumber")
        return str(value) if value is not None else None

    def sponsor(self, record: dict) -> str:
        agency = as_text(record.get("agency"))
        if agency:
            sub_agency = as_text(record.get("subAgency"))
            return f"{agency} - {sub_agency}" if sub_agency else agency
        path = as_text(first_value(record, "fullParentPathName", "department"))
        return " - ".join(part.strip() for part in path.split(".")) if path else ""

    def map_record(self, record: dict, unit: RawRecord) -> dict:
        hints = self.source.extraction_hints
        record_id = self.record_id(record)

        description = as_text(first_value(record, "objectives", "description")) or ""
        # v2 notices carry a link to the description, not the text
        if description.startswith(("http://", "https://")):
            description = ""

        applicant_text = as_text(record.get("applicantEligibility"))
        eligibility_text = " ".join(
            t for t in (applicant_text, as_text(record.get("beneficiaryEligibility"))) if t
        )

        url = as_text(first_value(record, "webLink", "uiLink"))
        if not url:
            url = self.LISTING_URL.format(id=record_id) if record_id else unit.url

        status = as_text(record.get("status"))
        if status is None and str(record.get("active", "")).lower() == "no":
            status = "closed"

        return {
            "title": as_text(record.get("title")) or "",
            "sponsor": self.sponsor(record),
            "description": description,
            "summary": description[:SUMMARY_CHARS] or None,
            "applyUrl": url,
            "funding": funding_payload(text=as_text(first_value(record, "awardRange", "award.amount"))),
            "deadline": deadline_payload(
                first_value(record, "programDeadlines", "responseDeadLine"), hints.date_format,
            ),
            "postedDate": iso_date(first_value(record, "published", "postedDate")),
            "geography": {"isNational": True, "states": []},
            "eligibility": {
                "entityTypes": detect_entity_types(eligibility_text, hints.entity_type_mapping),
                "requirements": extract_requirements(applicant_text),
                "rawText": eligibility_text or None,
            },
            "categories": normalize_categories(as_list(record.get("categories")), hints.category_mapping),
            "extractionConfidence": self.confidence,
            "status": status,
        }
