"""Work queue driving the reconciler."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import timedelta
from typing import TYPE_CHECKING, Self

from arena_templates.log import get_logger


if TYPE_CHECKING:
    from arena_templates.models import SourceKey
    from arena_templates.reconciler import ArenaTemplateSourceReconciler
    from arena_templates.store import ChangeKind, MemorySourceStore, SourceStore


logger = get_logger(__name__)

BASE_BACKOFF = timedelta(seconds=1)
MAX_BACKOFF = timedelta(minutes=5)


class WorkQueue:
    """Deduplicating queue of source keys.

    A key is handed out to at most one worker at a time. Adding a key that is
    currently being processed marks it dirty; it is queued again once the
    worker calls `done`.
    """

    def __init__(
        self,
        base_backoff: timedelta = BASE_BACKOFF,
        max_backoff: timedelta = MAX_BACKOFF,
    ):
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self._queue: asyncio.Queue[SourceKey] = asyncio.Queue()
        self._dirty: set[SourceKey] = set()
        self._processing: set[SourceKey] = set()
        self._timers: dict[SourceKey, asyncio.TimerHandle] = {}
        self._failures: dict[SourceKey, int] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return self._queue.qsize()

    def add(self, key: SourceKey) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: SourceKey, delay: timedelta) -> None:
        """Add key once delay has passed. An earlier pending timer wins."""
        if self._shutting_down:
            return
        seconds = delay.total_seconds()
        if seconds <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + seconds
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= when:
                return
            existing.cancel()
        self._timers[key] = loop.call_at(when, self._fire, key)

    def _fire(self, key: SourceKey) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: SourceKey) -> timedelta:
        """Add key after an exponentially growing delay. Returns the delay."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self.base_backoff * (2**failures), self.max_backoff)
        self.add_after(key, delay)
        return delay

    def forget(self, key: SourceKey) -> None:
        """Reset the backoff of key."""
        self._failures.pop(key, None)

    def failures(self, key: SourceKey) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> SourceKey:
        key = await self._queue.get()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: SourceKey) -> None:
        self._processing.discard(key)
        self._queue.task_done()
        if key in self._dirty:
            self._queue.put_nowait(key)

    def shutdown(self) -> None:
        self._shutting_down = True
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()


class Controller:
    """Runs reconciliation passes for template sources on a pool of workers."""

    def __init__(
        self,
        reconciler: ArenaTemplateSourceReconciler,
        store: SourceStore | MemorySourceStore | None = None,
        workers: int = 4,
        *,
        cleanup_on_delete: bool = False,
        queue: WorkQueue | None = None,
    ):
        """Initialize the controller.

        Args:
            reconciler: Reconciler run for each dequeued key
            store: Store listed on start. Change notifications are used when
                the store supports subscriptions.
            workers: Number of concurrent workers
            cleanup_on_delete: Finalize deleted sources
            queue: Work queue, mainly to tune the backoff
        """
        self.reconciler = reconciler
        self.store = store or reconciler.store
        self.workers = max(1, workers)
        self.cleanup_on_delete = cleanup_on_delete
        self.queue = queue or WorkQueue()
        self._tasks: list[asyncio.Task[None]] = []
        self._deleted: set[SourceKey] = set()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def enqueue(self, key: SourceKey) -> None:
        """Schedule an immediate reconciliation of key."""
        self.queue.add(key)

    def enqueue_after(self, key: SourceKey, delay: timedelta) -> None:
        """Schedule a reconciliation of key after delay."""
        self.queue.add_after(key, delay)

    def _on_change(self, key: SourceKey, kind: ChangeKind) -> None:
        if kind == "deleted" and self.cleanup_on_delete:
            self._deleted.add(key)
        self.enqueue(key)

    async def start(self) -> None:
        """Subscribe to the store, enqueue all known sources and start the workers."""
        if self.running:
            return
        if subscribe := getattr(self.store, "subscribe", None):
            subscribe(self._on_change)
        self.reconciler.on_result = self.enqueue
        for source in await self.store.list():
            self.enqueue(source.key)
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"reconcile-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info("Controller started", workers=self.workers)

    async def stop(self) -> None:
        """Stop the workers and cancel all in-flight fetches."""
        if unsubscribe := getattr(self.store, "unsubscribe", None):
            unsubscribe(self._on_change)
        self.queue.shutdown()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        if self.reconciler.on_result == self.enqueue:
            self.reconciler.on_result = None
        await self.reconciler.close()
        logger.info("Controller stopped")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def _worker(self, worker_id: int) -> None:
        log = logger.bind(worker=worker_id)
        while True:
            key = await self.queue.get()
            try:
                await self.process(key)
            except Exception:
                delay = self.queue.add_rate_limited(key)
                log.exception("Reconciliation failed", source=str(key), retry_in=str(delay))
            finally:
                self.queue.done(key)

    async def process(self, key: SourceKey) -> None:
        """Run one reconciliation of key and schedule the follow-up."""
        result = await self.reconciler.reconcile(key)
        self.queue.forget(key)
        if key in self._deleted:
            self._deleted.discard(key)
            if await self.store.get(key) is None:
                await self.reconciler.finalize(key)
                return
        if result.requeue_after is not None:
            self.enqueue_after(key, result.requeue_after)

