"""
Mapping of validated candidates to the canonical persisted record.
"""

import json
from datetime import date
from typing import Optional

from .deduplicator import generate_content_hash
from .expiry import status_for_deadline
from .models import (
    ExtractedGrant,
    FundingType,
    LinkStatus,
    NormalizedGrant,
    ValidationResult,
    utcnow,
)


def _json(value) -> str:
    return json.dumps(value, ensure_ascii=False)


def normalize_grant(
    grant: ExtractedGrant,
    validation: ValidationResult,
    today: Optional[date] = None,
) -> NormalizedGrant:
    """
    Map a validated candidate to a NormalizedGrant.

    Pure apart from stamping last_verified_at. Status follows the expiry
    rules, link status follows the validator's liveness check.

    Args:
        grant: Extracted candidate
        validation: Its validation result
        today: Reference date for status

    Returns:
        NormalizedGrant ready for upsert
    """
    title = (grant.title or "").strip()
    sponsor = (grant.sponsor or "").strip()
    description = grant.description or ""
    geography = grant.geography
    eligibility = grant.eligibility

    status = status_for_deadline(
        grant.deadline.type,
        grant.deadline.date,
        source_status=grant.source_status,
        today=today,
    )

    contact = None if grant.contact.is_empty() else _json({
        "name": grant.contact.name,
        "email": grant.contact.email,
        "phone": grant.contact.phone,
        "agency": grant.contact.agency,
    })

    return NormalizedGrant(
        source_name=grant.source_name,
        source_id=grant.source_id,
        title=title,
        sponsor=sponsor,
        url=(grant.apply_url or "").strip(),
        hash_fingerprint=validation.fingerprint,
        summary=grant.summary or description[:500] or None,
        description=grant.description,
        categories=_json(grant.categories),
        eligibility=_json({
            "tags": eligibility.entity_types,
            "industries": eligibility.industries,
            "restrictions": eligibility.restrictions,
            "requirements": eligibility.requirements,
            "raw": eligibility.raw_text or geography.service_area_text,
        }),
        locations=_json([{"state": state, "country": "US"} for state in geography.states]),
        amount_min=grant.funding.min or None,
        amount_max=grant.funding.max or None,
        amount_text=grant.funding.text or None,
        funding_type=None if grant.funding.type == FundingType.UNKNOWN else grant.funding.type.value,
        deadline_type=grant.deadline.type,
        deadline_date=grant.deadline.date,
        posted_date=grant.posted_date,
        contact=contact,
        requirements=_json(grant.requirements.flatten()),
        requirements_structured=_json({
            "documents": grant.requirements.documents,
            "certifications": grant.requirements.certifications,
            "registrations": grant.requirements.registrations,
            "other": grant.requirements.other,
        }),
        purpose_tags=_json(grant.purpose_tags),
        eligible_entity_types=list(eligibility.entity_types),
        eligible_states=["national"] if geography.is_national else list(geography.states),
        eligible_industries=list(eligibility.industries),
        min_budget_requirement=eligibility.budget_min or None,
        max_budget_requirement=eligibility.budget_max or None,
        restricted_to_rural=eligibility.rural_only,
        restricted_to_urban=eligibility.urban_only,
        citizenship_required=eligibility.citizenship_required,
        sam_registration_required=eligibility.sam_required,
        is_national=geography.is_national,
        is_state_specific=not geography.is_national and bool(geography.states),
        is_local_only=geography.is_local_only,
        service_area_text=geography.service_area_text,
        status=status,
        duplicate_of=validation.duplicate_of,
        quality_score=validation.quality_score,
        link_status=LinkStatus.ACTIVE if validation.checks.apply_url_valid else LinkStatus.UNKNOWN,
        last_verified_at=utcnow(),
        content_hash=generate_content_hash(description, title),
    )
