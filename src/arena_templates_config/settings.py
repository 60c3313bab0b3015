"""Engine settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Literal, Self

from platformdirs import user_data_dir
from pydantic import Field, field_validator
from schemez import Schema
import yaml

from arena_templates_config.durations import parse_duration


if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import timedelta


APP_NAME: Final = "arena-templates"
APP_AUTHOR: Final = "arena"
DATA_DIR: Final = Path(user_data_dir(APP_NAME, APP_AUTHOR))
ENV_PREFIX: Final = "ARENA_"

LogLevelName = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class EngineSettings(Schema):
    """Settings for the template source engine."""

    workspace_content_path: Path | None = Field(
        default=DATA_DIR / "workspace-content",
        title="Workspace content root",
    )
    """Root of the per-workspace content tree. None disables persistence."""

    max_versions_per_source: int = Field(default=10, ge=0, title="Max versions per source")
    """Number of version directories kept per source. 0 means the default of 10."""

    index_dir: str = Field(default="arena/template-indexes", title="Index directory")
    """Namespace-relative directory holding the per-source index files."""

    target_path_prefix: str = Field(
        default="arena/template-sources",
        title="Target path prefix",
    )
    """Namespace-relative directory under which each source gets its target path."""

    work_dir: Path | None = Field(default=None, title="Work directory")
    """Scratch space for fetches. Defaults to the system temp dir."""

    workers: int = Field(default=4, ge=1, title="Workers")
    """Number of sources reconciled concurrently."""

    poll_interval: str = Field(default="5s", title="Poll interval")
    """Requeue delay while a fetch is in flight."""

    index_retry_interval: str = Field(default="30s", title="Index retry interval")
    """Requeue delay after a failed index write."""

    cleanup_on_delete: bool = Field(default=False, title="Cleanup on delete")
    """Remove stored versions and the index file when a source is deleted."""

    workspaces: dict[str, str] = Field(default_factory=dict, title="Workspaces")
    """Namespace to workspace mapping. Unmapped namespaces use their own name."""

    log_level: LogLevelName = Field(default="INFO", title="Log level")
    """Log level for the engine."""

    json_logs: bool = Field(default=False, title="JSON logs")
    """Render logs as JSON lines."""

    @field_validator("poll_interval", "index_retry_interval")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    def poll_interval_delta(self) -> timedelta:
        return parse_duration(self.poll_interval)

    def index_retry_interval_delta(self) -> timedelta:
        return parse_duration(self.index_retry_interval)

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> Self:
        """Load settings from a YAML file."""
        content = Path(path).read_text(encoding="utf-8")
        data = yaml.safe_load(content) or {}
        if not isinstance(data, dict):
            msg = f"Settings file {path} must contain a mapping"
            raise ValueError(msg)  # noqa: TRY004
        return cls.model_validate(data)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Self:
        """Load settings from ``ARENA_*`` environment variables.

        ``ARENA_WORKSPACES`` uses ``namespace=workspace`` pairs separated by commas.
        """
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {}
        for name in cls.model_fields:
            value = env.get(f"{ENV_PREFIX}{name.upper()}")
            if value is None:
                continue
            if name == "workspaces":
                pairs = (item.split("=", 1) for item in value.split(",") if "=" in item)
                data[name] = {ns.strip(): ws.strip() for ns, ws in pairs}
            elif name == "workspace_content_path" and not value:
                data[name] = None
            else:
                data[name] = value
        return cls.model_validate(data)
