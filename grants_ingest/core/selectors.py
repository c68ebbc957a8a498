"""
HTML selection helpers for scrape sources.

Provides consistent extraction of main text, selector hints, listing
links and pagination targets from fetched HTML.
"""

import re
from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

import structlog

from grants_ingest.sources.base import Selectors

logger = structlog.get_logger(__name__)


# Elements that never carry grant content
NOISE_SELECTORS = 'script, style, nav, header, footer, aside, [role="navigation"]'

# Common selectors for finding main content, in priority order
MAIN_SELECTORS = ["main", "article", '[role="main"]', ".content", "#content"]

DEFAULT_LIST_SELECTOR = ".grant, .opportunity, .program"
DEFAULT_LINK_SELECTOR = "a"

# Hint name -> Selectors attribute
HINT_FIELDS = {
    "title": "title",
    "sponsor": "sponsor",
    "deadline_text": "deadline",
    "amount_text": "amount",
    "description": "description",
    "eligibility_text": "eligibility",
}


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def extract_text_content(html: str) -> str:
    """
    Extract readable main text from a page.

    Navigation chrome is removed first; the first main-content container
    wins, falling back to <body>.

    Args:
        html: Raw page HTML

    Returns:
        Whitespace-collapsed text
    """
    soup = make_soup(html)

    for element in soup.select(NOISE_SELECTORS):
        element.decompose()

    for selector in MAIN_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            return collapse_whitespace(container.get_text(" "))

    body = soup.body or soup
    return collapse_whitespace(body.get_text(" "))


def select_text(soup: BeautifulSoup, selector: Optional[str]) -> Optional[str]:
    """Text of the first element matching selector, or None."""
    if not selector:
        return None
    element = soup.select_one(selector)
    if element is None:
        return None
    text = collapse_whitespace(element.get_text(" "))
    return text or None


def pre_extract(html: str, selectors: Selectors) -> dict:
    """
    Pull field hints out of a detail page using source selectors.

    Hints are unverified; extraction strategies decide whether to use
    them.

    Args:
        html: Detail page HTML
        selectors: Source selectors

    Returns:
        Dict with any of title, sponsor, deadline_text, amount_text,
        description, eligibility_text
    """
    soup = make_soup(html)
    hints = {}

    for hint_name, attr in HINT_FIELDS.items():
        value = select_text(soup, getattr(selectors, attr))
        if value:
            hints[hint_name] = value

    return hints


def extract_grant_links(html: str, page_url: str, selectors: Selectors) -> list[str]:
    """
    Collect absolute detail-page links from a listing page.

    Each list item contributes the href of its first link element, or
    its own href when the item itself is a link.

    Args:
        html: Listing page HTML
        page_url: URL the listing was fetched from (for relative links)
        selectors: Source selectors

    Returns:
        Unique absolute http(s) URLs in page order
    """
    soup = make_soup(html)
    list_selector = selectors.grant_list or DEFAULT_LIST_SELECTOR
    link_selector = selectors.grant_link or DEFAULT_LINK_SELECTOR

    links: list[str] = []
    seen: set[str] = set()
    for item in soup.select(list_selector):
        link = item.select_one(link_selector)
        href = link.get("href") if link is not None else item.get("href")
        if not href:
            continue

        absolute = urljoin(page_url, href.strip())
        if urlparse(absolute).scheme not in ("http", "https"):
            continue
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)

    return links


def get_next_page_url(
    html: str,
    page_url: str,
    listing_url: str,
    selectors: Selectors,
    pagination_pattern: Optional[str],
    current_page: int,
    max_pages: int,
) -> Optional[str]:
    """
    Find the URL of the next listing page.

    A "next" link selector wins; otherwise the pagination pattern
    (e.g. "?page={page}") is appended to the listing URL.

    Args:
        html: Current listing page HTML
        page_url: URL of the current page
        listing_url: First page URL (pattern base)
        selectors: Source selectors
        pagination_pattern: Optional pattern with {page}
        current_page: 1-based index of the current page
        max_pages: Safety cap

    Returns:
        Absolute URL or None when there is no next page
    """
    if current_page >= max_pages:
        return None

    if selectors.next_page:
        soup = make_soup(html)
        link = soup.select_one(selectors.next_page)
        href = link.get("href") if link is not None else None
        if href:
            return urljoin(page_url, href.strip())

    if pagination_pattern:
        return listing_url + pagination_pattern.replace("{page}", str(current_page + 1))

    return None
