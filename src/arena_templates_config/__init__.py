"""Configuration models for template sources and the sync engine."""

from __future__ import annotations

from arena_templates_config.durations import format_duration, parse_duration
from arena_templates_config.settings import EngineSettings
from arena_templates_config.sources import (
    ArenaTemplateSourceSpec,
    ConfigMapSourceConfig,
    GitRefConfig,
    GitSourceConfig,
    OCISourceConfig,
    SecretRef,
    SourceType,
)


__all__ = [
    "ArenaTemplateSourceSpec",
    "ConfigMapSourceConfig",
    "EngineSettings",
    "GitRefConfig",
    "GitSourceConfig",
    "OCISourceConfig",
    "SecretRef",
    "SourceType",
    "format_duration",
    "parse_duration",
]
