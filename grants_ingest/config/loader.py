"""
YAML configuration loader with validation.

Loads the source catalog and pipeline settings from YAML files with:
- Environment variable substitution
- Schema validation
- Default values
"""

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml
import structlog

from grants_ingest.core.errors import ConfigError
from grants_ingest.sources.base import SourceConfig

logger = structlog.get_logger(__name__)


def substitute_env_vars(text: str) -> str:
    """
    Substitute environment variables in text.

    Supports formats:
    - ${VAR_NAME} - required, empty string (with a warning) if missing
    - ${VAR_NAME:-default} - optional with default

    Args:
        text: Text with env var placeholders

    Returns:
        Text with substituted values
    """
    def replace(match):
        var_expr = match.group(1)
        if ":-" in var_expr:
            var_name, default = var_expr.split(":-", 1)
            return os.getenv(var_name, default)
        value = os.getenv(var_expr)
        if value is None:
            logger.warning("env_var_not_set", var=var_expr)
            return ""
        return value

    return re.sub(r"\$\{([^}]+)\}", replace, text)


# ============= SETTINGS =============


@dataclass
class HttpSettings:
    timeout: float = 30.0
    head_timeout: float = 10.0
    max_retries: int = 3
    retry_backoff: float = 1.0
    retry_max_wait: float = 10.0


@dataclass
class DedupSettings:
    fuzzy_enabled: bool = False
    fuzzy_threshold: float = 0.85


@dataclass
class ValidationSettings:
    min_quality_score: int = 30
    verify_urls: bool = True


@dataclass
class LinkVerificationSettings:
    max_age_days: int = 7
    limit: int = 100
    concurrency: int = 5
    batch_delay_ms: int = 200


@dataclass
class ExtractionSettings:
    strategy: str = "selector"  # selector | llm
    llm_provider: Optional[str] = None  # claude | openai | None (auto)
    timeout: float = 60.0
    max_retries: int = 2
    max_input_chars: int = 15000


@dataclass
class OrchestratorSettings:
    source_concurrency: int = 1
    candidate_concurrency: int = 4


@dataclass
class HealthSettings:
    stale_after_hours: int = 48
    low_grant_threshold: int = 50


@dataclass
class Settings:
    """Pipeline tunables loaded from settings.yml."""

    database_path: str = "grants.db"
    http: HttpSettings = field(default_factory=HttpSettings)
    dedup: DedupSettings = field(default_factory=DedupSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)
    link_verification: LinkVerificationSettings = field(default_factory=LinkVerificationSettings)
    extraction: ExtractionSettings = field(default_factory=ExtractionSettings)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    health: HealthSettings = field(default_factory=HealthSettings)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Settings":
        data = data or {}
        sections = {
            "http": HttpSettings,
            "dedup": DedupSettings,
            "validation": ValidationSettings,
            "link_verification": LinkVerificationSettings,
            "extraction": ExtractionSettings,
            "orchestrator": OrchestratorSettings,
            "health": HealthSettings,
        }

        kwargs = {}
        for name, section_cls in sections.items():
            kwargs[name] = _build_section(section_cls, data.get(name), name)

        database = data.get("database") or {}
        if database.get("path"):
            kwargs["database_path"] = str(database["path"])

        return cls(**kwargs)


def _build_section(section_cls, data: Optional[dict], name: str):
    if data is None:
        return section_cls()
    if not isinstance(data, dict):
        raise ConfigError(f"settings.{name} must be a mapping")

    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown settings.{name} keys: {', '.join(sorted(unknown))}")

    return section_cls(**data)


# ============= LOADER =============


class ConfigLoader:
    """
    Configuration loader for grant sources and pipeline settings.

    Loads YAML config files and validates against expected schema.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_dir: Directory containing config files
                       (defaults to package config directory)
        """
        if config_dir:
            self.config_dir = Path(config_dir)
        else:
            self.config_dir = Path(__file__).parent

    def load_file(self, filename: str) -> dict:
        """
        Load YAML config file.

        Args:
            filename: Config file name (relative to config_dir)

        Returns:
            Parsed config dict
        """
        filepath = self.config_dir / filename

        if not filepath.exists():
            raise FileNotFoundError(f"Config file not found: {filepath}")

        logger.info("loading_config", file=str(filepath))

        with open(filepath, "r", encoding="utf-8") as f:
            content = f.read()

        content = substitute_env_vars(content)

        try:
            config = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {filepath}: {e}") from e

        return config or {}

    def load_sources(self, filename: str = "sources.yml") -> list[SourceConfig]:
        """
        Load source definitions from YAML.

        Invalid entries are logged and skipped so one bad source does not
        block the rest of the catalog.

        Args:
            filename: Sources config file name

        Returns:
            List of SourceConfig objects
        """
        config = self.load_file(filename)

        sources = []
        for source_data in config.get("sources", []):
            try:
                source = SourceConfig.from_dict(source_data)
                sources.append(source)
                logger.debug("source_loaded", source_id=source.source_id)
            except (ConfigError, TypeError, ValueError) as e:
                logger.error(
                    "source_load_failed",
                    source=source_data.get("source_id", "unknown"),
                    error=str(e),
                )

        logger.info("sources_loaded", count=len(sources))
        return sources

    def load_settings(self, filename: str = "settings.yml") -> Settings:
        """
        Load pipeline settings from YAML.

        Args:
            filename: Settings file name

        Returns:
            Settings

        Raises:
            ConfigError: On unknown keys or malformed sections
        """
        config = self.load_file(filename)
        try:
            return Settings.from_dict(config)
        except TypeError as e:
            raise ConfigError(f"Invalid settings: {e}") from e


def _split_path(config_path: Optional[str]) -> tuple[ConfigLoader, Optional[str]]:
    if not config_path:
        return ConfigLoader(), None
    path = Path(config_path)
    return ConfigLoader(str(path.parent)), path.name


def load_sources(config_path: Optional[str] = None) -> list[SourceConfig]:
    """
    Convenience function to load source configs.

    Args:
        config_path: Optional path to sources.yml

    Returns:
        List of SourceConfig objects
    """
    loader, filename = _split_path(config_path)
    return loader.load_sources(filename) if filename else loader.load_sources()


def load_settings(settings_path: Optional[str] = None) -> Settings:
    """
    Convenience function to load settings.

    Args:
        settings_path: Optional path to settings.yml

    Returns:
        Settings
    """
    loader, filename = _split_path(settings_path)
    return loader.load_settings(filename) if filename else loader.load_settings()
