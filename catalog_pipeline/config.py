"""
Pipeline Configuration Module
=============================

Loads pipeline settings from a YAML file and applies environment
overrides. Global settings cover HTTP politeness and asset storage;
per-kind settings cover retry ceilings, sweep thresholds and drain
defaults for each batch pipeline.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from catalog_pipeline.core.enums import PipelineKind

DEFAULT_USER_AGENT = "ODA-CatalogExtractor/1.0"

# Enrichment calls are more expensive and more often transient, so they
# get a higher ceiling than crawl items.
DEFAULT_MAX_ATTEMPTS = {
    PipelineKind.CATALOG: 3,
    PipelineKind.ENRICHMENT: 5,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean flag from the environment."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class RateLimitConfig:
    """Per-host rate limiting for adapter HTTP calls."""

    requests_per_second: float = 4.0
    burst_limit: int = 8

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RateLimitConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            requests_per_second=float(data.get("requests_per_second", 4.0)),
            burst_limit=int(data.get("burst_limit", 8)),
        )


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 8.0
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    asset_storage_path: str = "~/.catalog_pipeline/assets"
    asset_max_bytes: int = 12 * 1024 * 1024
    asset_base_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            user_agent=data.get("user_agent", DEFAULT_USER_AGENT),
            request_timeout=float(data.get("request_timeout", 8.0)),
            rate_limit=RateLimitConfig.from_dict(data.get("rate_limit")),
            asset_storage_path=data.get("asset_storage_path", "~/.catalog_pipeline/assets"),
            asset_max_bytes=int(data.get("asset_max_bytes", 12 * 1024 * 1024)),
            asset_base_url=data.get("asset_base_url"),
        )


@dataclass
class PipelineConfig:
    """Settings for one pipeline kind."""

    kind: PipelineKind
    max_attempts: int = 3
    queued_stale_ms: int = 15 * 60 * 1000
    stuck_ms: int = 30 * 60 * 1000
    resume_stuck_ms: int = 2 * 60 * 1000
    enqueue_limit: int = 50
    drain_batch: int = 0
    drain_concurrency: int = 5
    drain_max_ms: int = 20_000
    discovery_limit: int = 200
    consecutive_error_limit: int = 5
    auto_pause_on_errors: bool = False
    queue_disabled: bool = False

    @classmethod
    def from_dict(cls, kind: PipelineKind | str, data: dict[str, Any] | None) -> PipelineConfig:
        """Create from dictionary, filling kind-specific defaults."""
        kind = PipelineKind(kind)
        config = cls(kind=kind, max_attempts=DEFAULT_MAX_ATTEMPTS[kind])
        for f in fields(cls):
            if f.name == "kind" or not data or f.name not in data:
                continue
            current = getattr(config, f.name)
            setattr(config, f.name, _coerce(data[f.name], current))
        return config

    def apply_env(self, environ: dict[str, str] | None = None) -> PipelineConfig:
        """
        Override settings from <KIND>_<SETTING> environment variables.

        Example: CATALOG_MAX_ATTEMPTS=4, ENRICHMENT_AUTO_PAUSE_ON_ERRORS=true
        """
        environ = os.environ if environ is None else environ
        prefix = self.kind.value.upper()
        for f in fields(self):
            if f.name == "kind":
                continue
            raw = environ.get(f"{prefix}_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            setattr(self, f.name, _coerce(raw, getattr(self, f.name)))
        return self


def _coerce(value: Any, current: Any) -> Any:
    """Coerce a raw config value to the type of the current setting."""
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_VALUES
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


class PipelineRegistry:
    """
    Registry for pipeline configuration.

    Loads settings from a YAML file and hands out per-kind configs with
    environment overrides applied.
    """

    def __init__(self) -> None:
        self._global_config: GlobalConfig = GlobalConfig()
        self._pipelines: dict[str, dict[str, Any]] = {}
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    @property
    def config_path(self) -> Path | None:
        """Path of the loaded YAML file, if any."""
        return self._config_path

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the pipeline.yaml file
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self._global_config = GlobalConfig.from_dict(data.get("global"))
        self._pipelines = dict(data.get("pipelines") or {})

    def get_pipeline_config(self, kind: PipelineKind | str) -> PipelineConfig:
        """
        Get the configuration for a pipeline kind.

        Args:
            kind: Pipeline kind

        Returns:
            PipelineConfig with YAML values and environment overrides applied
        """
        kind = PipelineKind(kind)
        config = PipelineConfig.from_dict(kind, self._pipelines.get(kind.value))
        return config.apply_env()


# Global registry instance
_default_registry: PipelineRegistry | None = None


def get_default_registry() -> PipelineRegistry:
    """
    Get the default pipeline registry instance.

    Loads configuration from the path specified in PIPELINE_CONFIG_PATH
    environment variable, or falls back to config/pipeline.yaml.

    Returns:
        The global PipelineRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        _default_registry = PipelineRegistry()

        config_path = os.environ.get("PIPELINE_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            project_root = Path(__file__).parent.parent
            path = project_root / "config" / "pipeline.yaml"

        if path.exists():
            _default_registry.load_config(path)

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (useful for testing)."""
    global _default_registry
    _default_registry = None
