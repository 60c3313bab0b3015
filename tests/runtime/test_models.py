from __future__ import annotations

from pydantic import ValidationError
import pytest

from arena_templates.models import (
    ArenaTemplateSource,
    ArenaTemplateSourceStatus,
    ArtifactStatus,
    Phase,
    SourceKey,
    TemplateVariable,
)


def test_source_from_wire_format():
    source = ArenaTemplateSource.model_validate({
        "apiVersion": "omnia.altairalabs.ai/v1alpha1",
        "kind": "ArenaTemplateSource",
        "metadata": {"name": "demo", "namespace": "team-a"},
        "spec": {"type": "configmap", "configMap": {"name": "cm"}},
    })
    assert source.key == SourceKey("team-a", "demo")
    assert str(source.key) == "team-a/demo"
    assert source.status.phase is None


def test_status_serializes_camel_case():
    status = ArenaTemplateSourceStatus(
        phase=Phase.READY,
        template_count=2,
        head_version="abcdef012345",
        artifact=ArtifactStatus(revision="1", content_path="a/b", version="abcdef012345"),
    )
    data = status.model_dump(mode="json", exclude_none=True)
    assert data["phase"] == "Ready"
    assert data["templateCount"] == 2  # noqa: PLR2004
    assert data["headVersion"] == "abcdef012345"
    assert data["artifact"]["contentPath"] == "a/b"


def test_variable_values_are_strings():
    variable = TemplateVariable.model_validate({
        "name": "temperature",
        "type": "number",
        "default": 0.7,
        "min": 0,
        "max": 1,
    })
    assert (variable.default, variable.min, variable.max) == ("0.7", "0", "1")
    flag = TemplateVariable.model_validate({"name": "debug", "type": "boolean", "default": True})
    assert flag.default == "true"


@pytest.mark.parametrize("name", ["1abc", "with-dash", ""])
def test_variable_name_pattern(name: str):
    with pytest.raises(ValidationError):
        TemplateVariable(name=name)


def test_unknown_variable_type_is_rejected():
    with pytest.raises(ValidationError):
        TemplateVariable.model_validate({"name": "x", "type": "date"})
