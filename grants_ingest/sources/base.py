"""
Source descriptors.

A SourceConfig is loaded once from sources.yml and is immutable for
the duration of a run. It tells the fetchers how to crawl a source and
gives the extractors source-specific hints.
"""

from dataclasses import dataclass, field
from typing import Optional

from grants_ingest.core.errors import ConfigError
from grants_ingest.core.models import CrawlType


@dataclass(frozen=True)
class Selectors:
    """CSS selectors for scrape sources."""

    grant_list: Optional[str] = None
    grant_link: Optional[str] = None
    title: Optional[str] = None
    sponsor: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[str] = None
    amount: Optional[str] = None
    eligibility: Optional[str] = None
    next_page: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Selectors":
        data = data or {}
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class ApiConfig:
    """Endpoint and pagination protocol for API sources."""

    endpoint: str
    method: str = "GET"
    headers: dict = field(default_factory=dict)
    auth_type: str = "none"  # none | api_key
    api_key_param: str = "api_key"
    grants_path: Optional[str] = None  # Dotted path to the result list
    pagination_param: Optional[str] = None
    page_size_param: Optional[str] = None
    page_size: int = 100
    pagination_mode: str = "offset"  # offset | page
    params: dict = field(default_factory=dict)  # Static query/body params

    @classmethod
    def from_dict(cls, data: dict) -> "ApiConfig":
        if "endpoint" not in data:
            raise ConfigError("api.endpoint is required")
        method = str(data.get("method", "GET")).upper()
        if method not in ("GET", "POST"):
            raise ConfigError(f"Unsupported api.method: {method}")
        mode = data.get("pagination_mode", "offset")
        if mode not in ("offset", "page"):
            raise ConfigError(f"Unsupported api.pagination_mode: {mode}")
        return cls(
            endpoint=data["endpoint"],
            method=method,
            headers=dict(data.get("headers") or {}),
            auth_type=data.get("auth_type", "none"),
            api_key_param=data.get("api_key_param", "api_key"),
            grants_path=data.get("grants_path"),
            pagination_param=data.get("pagination_param"),
            page_size_param=data.get("page_size_param"),
            page_size=int(data.get("page_size", 100)),
            pagination_mode=mode,
            params=dict(data.get("params") or {}),
        )


@dataclass(frozen=True)
class FeedConfig:
    """RSS/Atom/JSON feed location and field mapping."""

    url: str
    format: str = "rss"  # rss | atom | json
    items_path: Optional[str] = None  # JSON feeds only
    field_mapping: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "FeedConfig":
        if "url" not in data:
            raise ConfigError("feed.url is required")
        fmt = data.get("format", "rss")
        if fmt not in ("rss", "atom", "json"):
            raise ConfigError(f"Unsupported feed.format: {fmt}")
        return cls(
            url=data["url"],
            format=fmt,
            items_path=data.get("items_path"),
            field_mapping=dict(data.get("field_mapping") or {}),
        )


@dataclass(frozen=True)
class ExtractionHints:
    """Source-specific hints for extraction strategies."""

    entity_type_mapping: dict = field(default_factory=dict)
    category_mapping: dict = field(default_factory=dict)
    field_map: dict = field(default_factory=dict)  # canonical field -> raw record key
    state: Optional[str] = None  # Pins geography for state portals
    sponsor: Optional[str] = None  # Fixed sponsor for single-funder sites
    entity_types: list = field(default_factory=list)
    categories: list = field(default_factory=list)
    date_format: Optional[str] = None
    national: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ExtractionHints":
        data = data or {}
        return cls(
            entity_type_mapping=dict(data.get("entity_type_mapping") or {}),
            category_mapping=dict(data.get("category_mapping") or {}),
            field_map=dict(data.get("field_map") or {}),
            state=str(data["state"]).strip().upper() if data.get("state") else None,
            sponsor=data.get("sponsor"),
            entity_types=list(data.get("entity_types") or []),
            categories=list(data.get("categories") or []),
            date_format=data.get("date_format"),
            national=None if data.get("national") is None else bool(data["national"]),
        )


@dataclass(frozen=True)
class SourceConfig:
    """Configuration for one grant source."""

    source_id: str
    name: str
    type: CrawlType
    base_url: str

    enabled: bool = True
    priority: int = 5
    adapter: Optional[str] = None  # Named adapter, else configured adapter

    # Rate limiting
    request_delay_ms: int = 1000
    max_concurrent: int = 2
    schedule_interval_hours: int = 24

    # Scrape settings
    listing_urls: tuple = ()
    selectors: Selectors = field(default_factory=Selectors)
    pagination_pattern: Optional[str] = None
    max_pages: int = 50

    api: Optional[ApiConfig] = None
    feed: Optional[FeedConfig] = None
    extraction_hints: ExtractionHints = field(default_factory=ExtractionHints)

    requires_attribution: bool = False
    attribution_text: Optional[str] = None

    @property
    def api_key_env(self) -> str:
        """Environment variable holding this source's API key."""
        return f"{self.source_id.upper()}_API_KEY"

    @classmethod
    def from_dict(cls, data: dict) -> "SourceConfig":
        """
        Create from dictionary (e.g., from YAML).

        Raises:
            ConfigError: If required fields are missing or inconsistent
        """
        for required in ("source_id", "name", "type", "base_url"):
            if required not in data:
                raise ConfigError(f"Missing required field: {required}")

        try:
            crawl_type = CrawlType(data["type"])
        except ValueError as e:
            raise ConfigError(f"Unknown crawl type: {data['type']}") from e

        api = ApiConfig.from_dict(data["api"]) if data.get("api") else None
        feed = FeedConfig.from_dict(data["feed"]) if data.get("feed") else None

        if crawl_type == CrawlType.API and api is None:
            raise ConfigError(f"{data['source_id']}: api sources need an 'api' block")
        if crawl_type == CrawlType.FEED and feed is None:
            raise ConfigError(f"{data['source_id']}: feed sources need a 'feed' block")

        return cls(
            source_id=data["source_id"],
            name=data["name"],
            type=crawl_type,
            base_url=data["base_url"],
            enabled=bool(data.get("enabled", True)),
            priority=int(data.get("priority", 5)),
            adapter=data.get("adapter"),
            request_delay_ms=int(data.get("request_delay_ms", 1000)),
            max_concurrent=int(data.get("max_concurrent", 2)),
            schedule_interval_hours=int(data.get("schedule_interval_hours", 24)),
            listing_urls=tuple(data.get("listing_urls") or ()),
            selectors=Selectors.from_dict(data.get("selectors")),
            pagination_pattern=data.get("pagination_pattern"),
            max_pages=int(data.get("max_pages", 50)),
            api=api,
            feed=feed,
            extraction_hints=ExtractionHints.from_dict(data.get("extraction_hints")),
            requires_attribution=bool(data.get("requires_attribution", False)),
            attribution_text=data.get("attribution_text"),
        )
