"""Event recording for template sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal, Protocol

from arena_templates.log import get_logger


if TYPE_CHECKING:
    from arena_templates.models import ArenaTemplateSource


logger = get_logger(__name__)

EventType = Literal["Normal", "Warning"]


class EventRecorder(Protocol):
    """Sink for user visible events about a source."""

    def event(
        self,
        source: ArenaTemplateSource,
        event_type: EventType,
        reason: str,
        message: str,
    ) -> None:
        """Record an event."""
        ...


class LoggingEventRecorder:
    """Writes events to the structured log."""

    def event(
        self,
        source: ArenaTemplateSource,
        event_type: EventType,
        reason: str,
        message: str,
    ) -> None:
        log = logger.warning if event_type == "Warning" else logger.info
        log(message, source=str(source.key), reason=reason, event_type=event_type)


@dataclass
class RecordedEvent:
    """An event kept by the memory recorder."""

    source: str
    event_type: EventType
    reason: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class MemoryEventRecorder:
    """Keeps events in a list."""

    events: list[RecordedEvent] = field(default_factory=list)

    def event(
        self,
        source: ArenaTemplateSource,
        event_type: EventType,
        reason: str,
        message: str,
    ) -> None:
        self.events.append(RecordedEvent(str(source.key), event_type, reason, message))

    def reasons(self) -> list[str]:
        """Reasons of all recorded events, in order."""
        return [e.reason for e in self.events]
