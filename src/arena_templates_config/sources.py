"""Template source configuration models."""

from __future__ import annotations

from datetime import timedelta
from enum import StrEnum

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel
from schemez import Schema

from arena_templates_config.durations import parse_duration


DEFAULT_SYNC_INTERVAL = "1h"
DEFAULT_TIMEOUT = "60s"
DEFAULT_TEMPLATES_PATH = "templates/"


class SourceType(StrEnum):
    """Origin kinds a template source can be fetched from."""

    CONFIG_STORE = "configmap"
    VERSION_CONTROL = "git"
    REGISTRY = "oci"


class _SourceSchema(Schema):
    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        serialize_by_alias=True,
    )


class SecretRef(_SourceSchema):
    """Reference to a secret in the source's namespace."""

    name: str = Field(title="Secret name")
    """Name of the secret holding the credentials."""


class GitRefConfig(_SourceSchema):
    """Which git reference to check out. Commit wins over tag, tag over branch."""

    branch: str | None = Field(default=None, examples=["main"], title="Branch")
    """Branch to track."""

    tag: str | None = Field(default=None, examples=["v1.0.0"], title="Tag")
    """Tag to check out."""

    commit: str | None = Field(default=None, title="Commit")
    """Exact commit SHA to check out."""


class GitSourceConfig(_SourceSchema):
    """Version control source."""

    url: str = Field(
        examples=["https://github.com/org/templates.git", "git@github.com:org/templates.git"],
        title="Repository URL",
    )
    """Clone URL of the repository."""

    ref: GitRefConfig | None = Field(default=None, title="Reference")
    """Reference to check out. Defaults to the remote's default branch."""

    path: str | None = Field(default=None, title="Sub-path")
    """Only expose this directory of the repository."""

    secret_ref: SecretRef | None = Field(default=None, title="Credentials secret")
    """Secret with ``username``/``password`` or ``identity``/``known_hosts``."""


class OCISourceConfig(_SourceSchema):
    """Registry source holding the templates as an OCI artifact."""

    url: str = Field(
        examples=["oci://ghcr.io/org/templates:v1"],
        title="Artifact URL",
    )
    """Artifact reference, ``oci://registry/repository(:tag|@digest)``."""

    secret_ref: SecretRef | None = Field(default=None, title="Credentials secret")
    """Secret with ``username``/``password`` or ``.dockerconfigjson``."""

    insecure: bool = Field(default=False, title="Insecure")
    """Talk plain HTTP to the registry."""


class ConfigMapSourceConfig(_SourceSchema):
    """Config store source."""

    name: str = Field(title="ConfigMap name")
    """Name of the config entry in the source's namespace."""


class ArenaTemplateSourceSpec(_SourceSchema):
    """Desired state of a template source."""

    type: str = Field(
        examples=[t.value for t in SourceType],
        title="Source type",
    )
    """Source kind. Validated when the fetcher is selected, not on load."""

    git: GitSourceConfig | None = Field(default=None, title="Git source")
    """Configuration for ``git`` sources."""

    oci: OCISourceConfig | None = Field(default=None, title="OCI source")
    """Configuration for ``oci`` sources."""

    config_map: ConfigMapSourceConfig | None = Field(default=None, title="ConfigMap source")
    """Configuration for ``configmap`` sources."""

    sync_interval: str = Field(
        default=DEFAULT_SYNC_INTERVAL,
        examples=["1h", "30m", "90s"],
        title="Sync interval",
    )
    """How often the origin is checked for new content."""

    suspend: bool = Field(default=False, title="Suspend")
    """Stop syncing without removing already stored content."""

    timeout: str = Field(default=DEFAULT_TIMEOUT, examples=["60s", "5m"], title="Timeout")
    """Upper bound for a single fetch."""

    templates_path: str = Field(default=DEFAULT_TEMPLATES_PATH, title="Templates path")
    """Directory inside the fetched content holding one sub-directory per template."""

    def sync_interval_delta(self) -> timedelta:
        """Parsed sync interval. Empty means the default."""
        return parse_duration(self.sync_interval or DEFAULT_SYNC_INTERVAL)

    def timeout_delta(self) -> timedelta:
        """Parsed fetch timeout. Empty means the default."""
        return parse_duration(self.timeout or DEFAULT_TIMEOUT)
