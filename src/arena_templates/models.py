"""Resource, status and template models.

All models serialize with camelCase names, matching the resource and index
formats consumed by the rest of the platform.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003
from enum import StrEnum
from typing import Any, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from arena_templates_config.sources import ArenaTemplateSourceSpec


class CamelModel(BaseModel):
    """Base for wire models."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        serialize_by_alias=True,
    )


class Phase(StrEnum):
    """Lifecycle phase of a template source."""

    PENDING = "Pending"
    FETCHING = "Fetching"
    READY = "Ready"
    ERROR = "Error"


class ConditionType(StrEnum):
    READY = "Ready"
    FETCHING = "Fetching"
    TEMPLATES_SCANNED = "TemplatesScanned"
    ARTIFACT_AVAILABLE = "ArtifactAvailable"


class EventReason(StrEnum):
    FETCH_STARTED = "FetchStarted"
    FETCH_SUCCEEDED = "FetchSucceeded"
    FETCH_FAILED = "FetchFailed"
    TEMPLATE_SCAN_SUCCEEDED = "TemplateScanSucceeded"
    TEMPLATE_SCAN_FAILED = "TemplateScanFailed"


ConditionStatus = Literal["True", "False", "Unknown"]
VariableType = Literal["string", "number", "boolean", "enum"]


class SourceKey(NamedTuple):
    """Identity of a template source."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ObjectMeta(CamelModel):
    name: str
    """Resource name, unique within the namespace."""

    namespace: str = "default"
    """Namespace the resource lives in."""

    generation: int = 1
    """Incremented on every spec change."""


class Condition(CamelModel):
    """Typed, reason coded status entry. Unique per type within a status."""

    type: str
    status: ConditionStatus
    reason: str
    message: str = ""
    observed_generation: int = 0
    last_transition_time: datetime | None = None


class ArtifactStatus(CamelModel):
    """Stored artifact of the last successful sync."""

    revision: str
    """Origin revision."""

    content_path: str = ""
    """Namespace relative path of the stored version."""

    version: str = ""
    """Version identifier of the stored content."""

    checksum: str = ""
    """Checksum of the fetched content."""

    size: int = 0
    """Size of the fetched content in bytes."""

    last_update_time: datetime | None = None
    """When the artifact was last replaced."""


class TemplateVariable(CamelModel):
    """Input variable of a template."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    name: str = Field(pattern=r"^[a-zA-Z][a-zA-Z0-9_]*$")
    type: VariableType = "string"
    description: str = ""
    required: bool = False
    default: str | None = None
    pattern: str | None = None
    options: list[str] = Field(default_factory=list)
    min: str | None = None
    max: str | None = None

    @field_validator("default", "min", "max", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return str(value).lower()
        return value


class TemplateFileSpec(CamelModel):
    """File belonging to a template."""

    path: str
    """Path relative to the template directory. Directories end with a slash."""

    render: bool = True
    """Whether the file goes through variable substitution."""


class Template(CamelModel):
    """Parsed template metadata, persisted in the index and projected into status."""

    name: str
    version: str = ""
    display_name: str = ""
    description: str = ""
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    variables: list[TemplateVariable] = Field(default_factory=list)
    files: list[TemplateFileSpec] = Field(default_factory=list)
    path: str = ""
    """Template directory relative to the fetched content root."""


class ArenaTemplateSourceStatus(CamelModel):
    """Observed state of a template source. Owned by the reconciler."""

    phase: Phase | None = None
    conditions: list[Condition] = Field(default_factory=list)
    observed_generation: int = 0
    templates: list[Template] = Field(default_factory=list)
    template_count: int = 0
    last_fetch_time: datetime | None = None
    next_fetch_time: datetime | None = None
    head_version: str | None = None
    artifact: ArtifactStatus | None = None
    message: str = ""


class ArenaTemplateSource(CamelModel):
    """A user declared source of templates."""

    api_version: str = "omnia.altairalabs.ai/v1alpha1"
    kind: Literal["ArenaTemplateSource"] = "ArenaTemplateSource"
    metadata: ObjectMeta
    spec: ArenaTemplateSourceSpec
    status: ArenaTemplateSourceStatus = Field(default_factory=ArenaTemplateSourceStatus)

    @property
    def key(self) -> SourceKey:
        return SourceKey(self.metadata.namespace, self.metadata.name)
