"""Unified configuration schema for git_sync_manager.

Pydantic models for the YAML config structure, one section per concern.
``yaml_fallbacks()`` flattens a ``UnifiedConfig`` into the keyword set that
``config.load_config()`` consumes as its lowest-precedence source.

Usage:
    from git_sync_manager.config_schema import build_config, yaml_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=yaml_fallbacks(unified))
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class EngineConfig(BaseModel):
    """Working copies, timeouts and worker pool size."""

    temp_dir: str | None = Field(
        default=None, description="Root directory for working copies"
    )
    git_timeout: float = Field(
        default=300, gt=0, description="Seconds allowed per git command"
    )
    sync_timeout: float = Field(
        default=1800, gt=0, description="Seconds allowed per sync or preview call"
    )
    preview_cleanup_delay: float = Field(
        default=5, ge=0, description="Seconds before preview working copies are removed"
    )
    max_parallel_syncs: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum concurrent sync/preview calls (1-64)",
    )
    stale_after: float = Field(
        default=86400,
        gt=0,
        description="Age in seconds after which leftover working copies are swept",
    )

    model_config = {"frozen": True}


class StoreConfig(BaseModel):
    """Location and protection of the configuration store.

    Attributes:
        path: JSON store file.
        encryption_key: Passphrase for encrypting credential tokens at rest.
        max_sync_logs: Number of sync log entries kept.
    """

    path: str | None = Field(default=None, description="JSON store file")
    encryption_key: str | None = Field(
        default=None, description="Passphrase for token encryption", repr=False
    )
    max_sync_logs: int = Field(default=500, ge=1, description="Sync log entries kept")

    model_config = {"frozen": True}


class SchedulerConfig(BaseModel):
    enabled: bool = Field(default=True, description="Arm scheduled jobs at startup")

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` (zero-config) is
    always valid.
    """

    engine: EngineConfig = Field(default_factory=EngineConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory and adapter
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from ``load_hierarchical_config()`` output.

    Missing sections get defaults.

    Raises:
        pydantic.ValidationError: If a value is out of range or mistyped.
    """
    if not raw_data:
        return UnifiedConfig()
    return UnifiedConfig(**raw_data)


def yaml_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten the sections into ``load_config()`` fallback keys.

    Only values that differ from "unset" are included so that built-in
    defaults in ``load_config()`` stay authoritative for the rest.
    """
    fb: dict = {}
    fb.update(unified.engine.model_dump(exclude_none=True))
    store = unified.store
    if store.path:
        fb["store_path"] = store.path
    if store.encryption_key:
        fb["encryption_key"] = store.encryption_key
    fb["max_sync_logs"] = store.max_sync_logs
    fb["scheduler_enabled"] = unified.scheduler.enabled
    fb["log_level"] = unified.logging.level
    if unified.logging.file:
        fb["log_file"] = unified.logging.file
    return fb
