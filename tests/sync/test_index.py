from __future__ import annotations

from pathlib import Path
from unittest import mock

import anyenv
import pytest

from arena_templates.exceptions import IndexWriteError
from arena_templates.models import Template, TemplateFileSpec, TemplateVariable
from arena_templates_sync.index import TemplateIndexWriter, read_index


TEMPLATES = [
    Template(
        name="basic-chatbot",
        version="1.0.0",
        display_name="Basic Chatbot",
        category="chatbot",
        tags=["starter"],
        variables=[TemplateVariable(name="projectName", required=True)],
        files=[TemplateFileSpec(path="config.yaml")],
        path="templates/basic",
    ),
    Template(name="eval-suite", display_name="eval-suite", path="templates/eval"),
]


def test_write_uses_camel_case(tmp_path: Path):
    writer = TemplateIndexWriter(tmp_path)
    path = writer.write("ws", "ns", "demo", TEMPLATES)
    assert path == tmp_path / "ws" / "ns" / "arena" / "template-indexes" / "demo.json"
    data = anyenv.load_json(path.read_text())
    assert data[0]["displayName"] == "Basic Chatbot"
    assert data[0]["variables"][0]["name"] == "projectName"
    assert data[1]["tags"] == []
    assert data[1]["files"] == []


def test_roundtrip_preserves_templates(tmp_path: Path):
    writer = TemplateIndexWriter(tmp_path, index_dir="custom/idx")
    path = writer.write("ws", "ns", "demo", TEMPLATES)
    assert path is not None
    assert read_index(path) == TEMPLATES


def test_empty_list_writes_empty_array(tmp_path: Path):
    path = TemplateIndexWriter(tmp_path).write("ws", "ns", "demo", [])
    assert path is not None
    assert anyenv.load_json(path.read_text()) == []


def test_disabled_writer_is_noop():
    writer = TemplateIndexWriter(None)
    assert writer.write("ws", "ns", "demo", TEMPLATES) is None
    assert not writer.remove("ws", "ns", "demo")


def test_write_failure_raises_index_error(tmp_path: Path):
    writer = TemplateIndexWriter(tmp_path)
    with (
        mock.patch(
            "arena_templates_sync.index.atomic_write_text",
            side_effect=PermissionError("read-only"),
        ),
        pytest.raises(IndexWriteError, match="failed to write template index"),
    ):
        writer.write("ws", "ns", "demo", TEMPLATES)


def test_remove(tmp_path: Path):
    writer = TemplateIndexWriter(tmp_path)
    writer.write("ws", "ns", "demo", TEMPLATES)
    assert writer.remove("ws", "ns", "demo")
    assert not writer.remove("ws", "ns", "demo")
