"""Artifact versioning and synchronization engine for Arena template sources.

Template sources point at a git repository, an OCI artifact or a config
store entry. The engine fetches their content in the background, stores
content addressed versions with a HEAD pointer, collects old versions,
indexes the contained templates and reports progress through the status
of each source.
"""

from __future__ import annotations

from arena_templates.exceptions import (
    ArenaError,
    ConfigurationError,
    FetchError,
    IndexWriteError,
    ParseError,
    SyncError,
)
from arena_templates.log import configure_logging, get_logger
from arena_templates.models import (
    ArenaTemplateSource,
    ArenaTemplateSourceStatus,
    ArtifactStatus,
    Condition,
    ConditionType,
    EventReason,
    ObjectMeta,
    Phase,
    SourceKey,
    Template,
    TemplateFileSpec,
    TemplateVariable,
)


__version__ = "0.1.0"

__all__ = [
    "ArenaError",
    "ArenaTemplateSource",
    "ArenaTemplateSourceStatus",
    "ArtifactStatus",
    "Condition",
    "ConditionType",
    "ConfigurationError",
    "EventReason",
    "FetchError",
    "IndexWriteError",
    "ObjectMeta",
    "ParseError",
    "Phase",
    "SourceKey",
    "SyncError",
    "Template",
    "TemplateFileSpec",
    "TemplateVariable",
    "configure_logging",
    "get_logger",
]
