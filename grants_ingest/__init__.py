"""
Grants Ingest - grant ingestion pipeline and eligibility engine.

Architecture:
- core/: Stable foundation (models, HTTP client, normalizers, validator, deduplicator)
- sources/: Source descriptors and the source registry
- fetchers/: Crawl strategies (HTML listings, paginated APIs, feeds)
- extractors/: Raw unit -> ExtractedGrant strategies (API mapping, selectors, LLM)
- adapters/: Per-source fetch + normalize implementations
- store/: Persistence interface and the SQLite implementation
- eligibility/: Deterministic, explainable eligibility filters
- config/: YAML-driven source catalog and pipeline settings
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
