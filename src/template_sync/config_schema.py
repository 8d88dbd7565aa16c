"""Unified configuration schema for template_sync.

Defines Pydantic models for the engine settings file with dedicated
sections for the sync engine and logging.

Usage:
    from template_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from .sync.errors import ConfigError
from .sync.manifest import DEFAULT_DEEP_MERGE_FIELDS
from .sync.store import PROJECT_CONFIG_FILE, TEMPLATE_CONFIG_FILE
from .validators import validate_relative_path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class EngineConfig(BaseModel):
    """Sync engine settings.

    Every field has a default so a project without a settings file still
    syncs ``package.json`` with the standard deep-merge fields.
    """

    manifest_files: list[str] = Field(
        default_factory=lambda: ["package.json"],
        description="Paths merged field by field instead of copied",
    )
    deep_merge_fields: list[str] = Field(
        default_factory=lambda: sorted(DEFAULT_DEEP_MERGE_FIELDS),
        description="Manifest keys whose objects are merged key by key",
    )
    no_baseline_policy: Literal["conflict", "copy"] = Field(
        default="conflict",
        description=(
            "Decision for a differing file that has no baseline but "
            "existed in the template at the last sync"
        ),
    )
    template_config_file: str = Field(
        default=TEMPLATE_CONFIG_FILE,
        description="Template-owned ownership config file name",
    )
    project_config_file: str = Field(
        default=PROJECT_CONFIG_FILE,
        description="Project-owned state file name",
    )

    model_config = {"frozen": True}

    @field_validator("manifest_files")
    @classmethod
    def _check_manifest_paths(cls, value: list[str]) -> list[str]:
        for path in value:
            ok, reason = validate_relative_path(path)
            if not ok:
                raise ValueError(reason)
        return value


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

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    engine: EngineConfig = Field(default_factory=EngineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Raises:
        ConfigError: If a section fails validation.
    """
    if not raw_data:
        return UnifiedConfig()

    try:
        return UnifiedConfig(**raw_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
