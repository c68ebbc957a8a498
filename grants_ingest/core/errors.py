"""
Exception taxonomy for the ingestion pipeline.

Fatal errors (SourceFatalError, StoreUnavailableError) abort a single
source run. Recoverable errors (ExtractionError and friends) drop one
item and are recorded on the run's error list.
"""

from typing import Optional


class GrantsIngestError(Exception):
    """Base class for all pipeline errors."""

    recoverable = True


class ConfigError(GrantsIngestError):
    """Invalid or missing configuration."""


class UnknownSourceError(ConfigError, KeyError):
    """Source id not present in the registry."""

    def __init__(self, source_id: str):
        super().__init__(source_id)
        self.source_id = source_id

    def __str__(self) -> str:
        return f"Unknown source: {self.source_id}"


class SourceFatalError(GrantsIngestError):
    """Source cannot be processed at all in this run."""

    recoverable = False

    def __init__(self, source_id: str, message: str, url: Optional[str] = None):
        super().__init__(f"{source_id}: {message}")
        self.source_id = source_id
        self.url = url


class SourceUnreachableError(SourceFatalError):
    """Nothing could be fetched from the source."""


class SourceAuthError(SourceFatalError):
    """Source rejected our credentials (401/403)."""


class StoreUnavailableError(GrantsIngestError):
    """Backing store cannot be reached or written."""

    recoverable = False


class ExtractionError(GrantsIngestError):
    """Extraction strategy produced no record."""


class ExtractionSchemaError(ExtractionError):
    """Extraction output failed strict schema validation."""

    def __init__(self, message: str, problems: Optional[list[str]] = None):
        super().__init__(message)
        self.problems = problems or []
