"""Storage of template source resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Protocol

from arena_templates.log import get_logger


if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from arena_templates.models import ArenaTemplateSource, SourceKey

    ChangeKind = Literal["applied", "deleted"]
    ChangeListener = Callable[[SourceKey, ChangeKind], None]


logger = get_logger(__name__)


class SourceStore(Protocol):
    """Access to the declared template sources."""

    async def get(self, key: SourceKey) -> ArenaTemplateSource | None:
        """Return a copy of the source, or None if it does not exist."""
        ...

    async def update_status(self, source: ArenaTemplateSource) -> None:
        """Persist the status of source. The spec is left untouched."""
        ...

    async def list(self) -> list[ArenaTemplateSource]:
        """Return copies of all sources."""
        ...


class MemorySourceStore:
    """In-process source store.

    Reads and writes deep-copy so callers never share state with the store.
    Listeners are notified about spec changes and deletions.
    """

    def __init__(self) -> None:
        self._sources: dict[SourceKey, ArenaTemplateSource] = {}
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, key: SourceKey, kind: ChangeKind) -> None:
        for listener in list(self._listeners):
            listener(key, kind)

    def apply(self, source: ArenaTemplateSource) -> ArenaTemplateSource:
        """Create or update a source.

        The generation is bumped whenever the spec differs from the stored one.
        A stored status is kept.

        Returns:
            A copy of the stored source
        """
        key = source.key
        existing = self._sources.get(key)
        stored = source.model_copy(deep=True)
        if existing is None:
            stored.metadata.generation = max(stored.metadata.generation, 1)
        else:
            stored.status = existing.status.model_copy(deep=True)
            stored.metadata.generation = existing.metadata.generation
            if existing.spec != stored.spec:
                stored.metadata.generation += 1
        self._sources[key] = stored
        logger.debug("Applied source", source=str(key), generation=stored.metadata.generation)
        self._notify(key, "applied")
        return stored.model_copy(deep=True)

    def delete(self, key: SourceKey) -> bool:
        """Remove a source. Returns whether it existed."""
        if self._sources.pop(key, None) is None:
            return False
        logger.debug("Deleted source", source=str(key))
        self._notify(key, "deleted")
        return True

    async def get(self, key: SourceKey) -> ArenaTemplateSource | None:
        source = self._sources.get(key)
        return source.model_copy(deep=True) if source is not None else None

    async def update_status(self, source: ArenaTemplateSource) -> None:
        stored = self._sources.get(source.key)
        if stored is None:
            logger.debug("Dropping status update for deleted source", source=str(source.key))
            return
        stored.status = source.status.model_copy(deep=True)

    async def list(self) -> list[ArenaTemplateSource]:
        return [s.model_copy(deep=True) for s in self._sources.values()]


@dataclass
class WorkspaceResolver:
    """Maps namespaces to workspace names. Unmapped namespaces map to themselves."""

    mapping: Mapping[str, str] = field(default_factory=dict)

    def resolve(self, namespace: str) -> str:
        return self.mapping.get(namespace) or namespace
