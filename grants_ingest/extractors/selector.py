"""
Deterministic extraction from scraped detail pages.

Uses the selector hints captured at fetch time, the page text and the
source's extraction hints. Nothing is guessed: a field the page does
not state stays empty and the validator scores it accordingly.
"""

import re
from typing import Optional
from urllib.parse import urljoin, urlparse

from grants_ingest.core.errors import ExtractionError
from grants_ingest.core.models import ExtractedGrant, RawPage, RawUnit
from grants_ingest.core.normalizer import extract_requirements, normalize_categories
from grants_ingest.core.selectors import collapse_whitespace, make_soup
from grants_ingest.sources.base import SourceConfig

from .base import ExtractionStrategy, source_id_from_url, validate_extraction
from .mapping import deadline_payload, detect_categories, detect_entity_types, funding_payload

BASE_CONFIDENCE = 30
FIELD_CONFIDENCE = 10
MAX_DESCRIPTION_CHARS = 2000

APPLY_LINK_TEXT = re.compile(r"\b(apply|application portal|submit (?:an )?application)\b", re.IGNORECASE)
NATIONWIDE_TEXT = re.compile(r"\b(nationwide|all (?:50 )?states|national program)\b", re.IGNORECASE)


def find_title(soup) -> Optional[str]:
    for selector in ("h1", 'meta[property="og:title"]', "title"):
        element = soup.select_one(selector)
        if element is None:
            continue
        text = element.get("content") if element.name == "meta" else element.get_text(" ")
        text = collapse_whitespace(text or "")
        if text:
            return text
    return None


def find_apply_url(soup, page_url: str) -> Optional[str]:
    """First link whose text reads like an application link."""
    for link in soup.find_all("a", href=True):
        if not APPLY_LINK_TEXT.search(link.get_text(" ")):
            continue
        absolute = urljoin(page_url, link["href"].strip())
        if urlparse(absolute).scheme in ("http", "https"):
            return absolute
    return None


class SelectorExtractor(ExtractionStrategy):
    """Selector/hint-based extraction for HTML detail pages."""

    def build_payload(self, page: RawPage, source: SourceConfig) -> dict:
        hints = source.extraction_hints
        found = page.hints
        soup = make_soup(page.html)

        title = found.get("title") or find_title(soup)
        sponsor = found.get("sponsor") or hints.sponsor
        description = found.get("description") or page.text[:MAX_DESCRIPTION_CHARS]
        eligibility_text = found.get("eligibility_text")

        states = [hints.state] if hints.state else []
        if hints.national is not None:
            is_national = hints.national
        else:
            is_national = not states and bool(NATIONWIDE_TEXT.search(page.text))

        entity_types = detect_entity_types(eligibility_text, hints.entity_type_mapping)
        for entity_type in hints.entity_types:
            if entity_type not in entity_types:
                entity_types.append(entity_type)

        categories = normalize_categories(
            [*hints.categories, *detect_categories([title, found.get("description")])],
            hints.category_mapping,
        )

        present = [
            found.get("title"),
            sponsor,
            found.get("description"),
            found.get("deadline_text"),
            found.get("amount_text"),
            eligibility_text,
        ]
        confidence = BASE_CONFIDENCE + FIELD_CONFIDENCE * sum(1 for value in present if value)

        return {
            "title": title or "",
            "sponsor": sponsor or "",
            "description": description,
            "applyUrl": find_apply_url(soup, page.url) or page.url,
            "funding": funding_payload(text=found.get("amount_text")),
            "deadline": deadline_payload(found.get("deadline_text"), hints.date_format),
            "geography": {"isNational": is_national, "states": states},
            "eligibility": {
                "entityTypes": entity_types,
                "requirements": extract_requirements(eligibility_text),
                "rawText": eligibility_text,
            },
            "categories": categories,
            "extractionConfidence": min(confidence, 100),
        }

    async def extract(self, unit: RawUnit, source: SourceConfig) -> ExtractedGrant:
        if not isinstance(unit, RawPage):
            raise ExtractionError(f"{self.get_strategy_name()} only handles HTML pages")

        return validate_extraction(
            self.build_payload(unit, source),
            source_name=source.source_id,
            source_id=source_id_from_url(unit.url),
            source_url=unit.url,
            raw_text=unit.text,
        )
