"""
Configuration module for grant sources and pipeline settings.

Provides:
- YAML config loading with validation
- Source catalog (sources.yml) and tunables (settings.yml)
- Environment variable substitution
"""

from .loader import ConfigLoader, Settings, load_settings, load_sources, substitute_env_vars

__all__ = ["ConfigLoader", "Settings", "load_settings", "load_sources", "substitute_env_vars"]
