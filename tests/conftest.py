"""Test configuration and shared fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest
import yaml

from arena_templates.events import MemoryEventRecorder
from arena_templates.models import ArenaTemplateSource
from arena_templates.reconciler import ArenaTemplateSourceReconciler
from arena_templates.store import MemorySourceStore, WorkspaceResolver
from arena_templates_sync.artifacts import FetcherOptions
from arena_templates_sync.credentials import MemorySecretStore
from arena_templates_sync.fetchers import MemoryConfigStore
from arena_templates_sync.index import TemplateIndexWriter
from arena_templates_sync.selection import FetcherFactory
from arena_templates_sync.syncer import FilesystemSyncer


if TYPE_CHECKING:
    from pathlib import Path


WORKSPACE = "ws-default"

BASIC_TEMPLATE = """\
metadata:
  name: basic-chatbot
  version: 1.0.0
spec:
  displayName: Basic Chatbot
  description: A simple conversational agent
  category: chatbot
  tags: [starter, chat]
  variables:
    - name: projectName
      type: string
      required: true
    - name: temperature
      type: number
      default: 0.7
      min: 0
      max: 1
"""

EVAL_TEMPLATE = """\
metadata:
  name: eval-suite
spec:
  description: Evaluation scenarios
  category: evaluation
  tags: [eval]
"""


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def template_config_data() -> dict[str, str]:
    """Config store data holding two templates below ``templates/``."""
    return {
        "templates__basic__template.yaml": BASIC_TEMPLATE,
        "templates__basic__config.yaml": "name: {{ .projectName }}\n",
        "templates__eval__template.yaml": EVAL_TEMPLATE,
        "templates__eval__scenario.md": "# Scenario\n",
    }


def make_source(
    name: str = "templates",
    namespace: str = "default",
    **spec: Any,
) -> ArenaTemplateSource:
    """Build a config store backed source, spec keys in wire (camelCase) form."""
    data: dict[str, Any] = {
        "type": "configmap",
        "configMap": {"name": "template-data"},
        "syncInterval": "1h",
    }
    data.update(spec)
    return ArenaTemplateSource.model_validate({
        "metadata": {"name": name, "namespace": namespace},
        "spec": data,
    })


def write_template(directory: Path, content: str, **files: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "template.yaml").write_text(content)
    for name, text in files.items():
        (directory / name).write_text(text)
    return directory


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config_store() -> MemoryConfigStore:
    store = MemoryConfigStore()
    store.put("default", "template-data", data=template_config_data())
    return store


@pytest.fixture
def secret_store() -> MemorySecretStore:
    return MemorySecretStore()


@pytest.fixture
def source_store() -> MemorySourceStore:
    return MemorySourceStore()


@pytest.fixture
def recorder() -> MemoryEventRecorder:
    return MemoryEventRecorder()


@pytest.fixture
def content_root(tmp_path: Path) -> Path:
    return tmp_path / "content"


@pytest.fixture
def reconciler(
    source_store: MemorySourceStore,
    config_store: MemoryConfigStore,
    secret_store: MemorySecretStore,
    recorder: MemoryEventRecorder,
    content_root: Path,
    tmp_path: Path,
    clock: FakeClock,
) -> ArenaTemplateSourceReconciler:
    options = FetcherOptions(work_dir=tmp_path / "work")
    return ArenaTemplateSourceReconciler(
        source_store,
        FetcherFactory(config_store, secret_store, options),
        FilesystemSyncer(content_root, max_versions=3),
        TemplateIndexWriter(content_root),
        workspaces=WorkspaceResolver({"default": WORKSPACE}),
        recorder=recorder,
        poll_interval=timedelta(milliseconds=10),
        index_retry_interval=timedelta(seconds=30),
        clock=clock,
    )


@pytest.fixture
def source_yaml(tmp_path: Path) -> Path:
    """A source manifest file as accepted by the CLI."""
    path = tmp_path / "source.yaml"
    manifest = make_source().model_dump(mode="json", exclude={"status"})
    path.write_text(yaml.safe_dump(manifest))
    return path
