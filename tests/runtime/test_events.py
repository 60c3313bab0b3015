from __future__ import annotations

from arena_templates.events import LoggingEventRecorder, MemoryEventRecorder
from arena_templates.models import ArenaTemplateSource


SOURCE = ArenaTemplateSource.model_validate({
    "metadata": {"name": "demo"},
    "spec": {"type": "configmap", "configMap": {"name": "cm"}},
})


def test_memory_recorder_keeps_events():
    recorder = MemoryEventRecorder()
    recorder.event(SOURCE, "Normal", "FetchStarted", "Started")
    recorder.event(SOURCE, "Warning", "FetchFailed", "boom")
    assert recorder.reasons() == ["FetchStarted", "FetchFailed"]
    assert recorder.events[1].source == "default/demo"
    assert recorder.events[1].event_type == "Warning"


def test_logging_recorder_does_not_raise():
    LoggingEventRecorder().event(SOURCE, "Warning", "FetchFailed", "boom")
