from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic import ValidationError
import pytest

from arena_templates_config import ArenaTemplateSourceSpec, EngineSettings, SourceType


def test_defaults():
    settings = EngineSettings()
    assert settings.max_versions_per_source == 10  # noqa: PLR2004
    assert settings.index_dir == "arena/template-indexes"
    assert settings.target_path_prefix == "arena/template-sources"
    assert settings.poll_interval_delta() == timedelta(seconds=5)
    assert settings.index_retry_interval_delta() == timedelta(seconds=30)
    assert settings.workspace_content_path is not None
    assert not settings.cleanup_on_delete


def test_from_file(tmp_path: Path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "workspace_content_path: /data/content\n"
        "max_versions_per_source: 3\n"
        "workspaces:\n"
        "  team-a: ws-a\n"
        "poll_interval: 2s\n"
    )
    settings = EngineSettings.from_file(path)
    assert settings.workspace_content_path == Path("/data/content")
    assert settings.max_versions_per_source == 3  # noqa: PLR2004
    assert settings.workspaces == {"team-a": "ws-a"}
    assert settings.poll_interval_delta() == timedelta(seconds=2)


def test_from_file_rejects_non_mapping(tmp_path: Path):
    path = tmp_path / "settings.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError, match="mapping"):
        EngineSettings.from_file(path)


def test_invalid_interval_is_rejected():
    with pytest.raises(ValidationError):
        EngineSettings(poll_interval="soon")


def test_from_env():
    env = {
        "ARENA_WORKSPACE_CONTENT_PATH": "/srv/content",
        "ARENA_WORKERS": "8",
        "ARENA_WORKSPACES": "team-a=ws-a, team-b = ws-b",
        "ARENA_CLEANUP_ON_DELETE": "true",
        "UNRELATED": "x",
    }
    settings = EngineSettings.from_env(env)
    assert settings.workspace_content_path == Path("/srv/content")
    assert settings.workers == 8  # noqa: PLR2004
    assert settings.workspaces == {"team-a": "ws-a", "team-b": "ws-b"}
    assert settings.cleanup_on_delete


def test_from_env_empty_content_path_disables_persistence():
    settings = EngineSettings.from_env({"ARENA_WORKSPACE_CONTENT_PATH": ""})
    assert settings.workspace_content_path is None


def test_source_spec_wire_names():
    spec = ArenaTemplateSourceSpec.model_validate({
        "type": "git",
        "git": {
            "url": "https://example.com/repo.git",
            "ref": {"branch": "main"},
            "secretRef": {"name": "git-creds"},
        },
        "syncInterval": "30m",
        "templatesPath": "catalog/",
    })
    assert spec.git is not None
    assert spec.git.secret_ref is not None
    assert spec.git.secret_ref.name == "git-creds"
    assert spec.sync_interval_delta() == timedelta(minutes=30)
    assert spec.timeout_delta() == timedelta(seconds=60)
    dumped = spec.model_dump(exclude_none=True)
    assert dumped["syncInterval"] == "30m"
    assert dumped["templatesPath"] == "catalog/"


def test_source_spec_accepts_unknown_type():
    spec = ArenaTemplateSourceSpec(type="s3")
    assert spec.type == "s3"
    assert SourceType.REGISTRY.value == "oci"
