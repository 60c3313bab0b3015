"""Reconciliation of template sources.

A pass never waits for the network. Fetch and template discovery run in a
background task per source; its result is picked up by a later pass, which
stores the content, writes the index and updates the status.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
import shutil
import threading
from typing import TYPE_CHECKING, Self

from arena_templates.conditions import find_condition, set_condition
from arena_templates.discovery import TemplateDiscoverer
from arena_templates.exceptions import (
    ArenaError,
    ConfigurationError,
    FetchError,
    IndexWriteError,
    ParseError,
    SyncError,
)
from arena_templates.log import get_logger
from arena_templates.models import (
    ArtifactStatus,
    ConditionType,
    EventReason,
    Phase,
)
from arena_templates.store import WorkspaceResolver
from arena_templates_sync.artifacts import FetcherOptions
from arena_templates_sync.index import TemplateIndexWriter
from arena_templates_sync.selection import FetcherFactory, validate_source_spec
from arena_templates_sync.syncer import FilesystemSyncer


if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from arena_templates.events import EventRecorder, EventType
    from arena_templates.models import (
        ArenaTemplateSource,
        ConditionStatus,
        SourceKey,
        Template,
    )
    from arena_templates.store import SourceStore
    from arena_templates_config.settings import EngineSettings
    from arena_templates_config.sources import ArenaTemplateSourceSpec
    from arena_templates_sync.artifacts import Artifact
    from arena_templates_sync.credentials import SecretStore
    from arena_templates_sync.fetchers import ConfigStore


logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = timedelta(seconds=5)
DEFAULT_INDEX_RETRY_INTERVAL = timedelta(seconds=30)
DEFAULT_TARGET_PATH_PREFIX = "arena/template-sources"


@dataclass
class ReconcileResult:
    """Outcome of a reconciliation pass."""

    requeue_after: timedelta | None = None
    """Delay until the source should be reconciled again. None means no timer."""


@dataclass
class TemplateFetchResult:
    """Hand-off from a background fetch to the next reconciliation pass."""

    generation: int
    """Spec generation the fetch was started for."""

    artifact: Artifact | None = None
    """Fetched content. None for failures and unchanged revisions."""

    templates: list[Template] = field(default_factory=list)
    revision: str = ""
    error: ArenaError | None = None

    @property
    def unchanged(self) -> bool:
        return self.error is None and self.artifact is None


@dataclass
class FetchJob:
    """A background fetch in flight."""

    task: asyncio.Task[None]
    started_at: datetime
    generation: int


class ArenaTemplateSourceReconciler:
    """Drives template sources through Pending, Fetching, Ready and Error."""

    def __init__(
        self,
        store: SourceStore,
        fetchers: FetcherFactory,
        syncer: FilesystemSyncer,
        index_writer: TemplateIndexWriter,
        *,
        workspaces: WorkspaceResolver | None = None,
        recorder: EventRecorder | None = None,
        target_path_prefix: str = DEFAULT_TARGET_PATH_PREFIX,
        poll_interval: timedelta = DEFAULT_POLL_INTERVAL,
        index_retry_interval: timedelta = DEFAULT_INDEX_RETRY_INTERVAL,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the reconciler.

        Args:
            store: Source store read and status-updated by every pass
            fetchers: Factory creating the fetcher for a source
            syncer: Versioned content store
            index_writer: Writer for the per-source template index
            workspaces: Namespace to workspace mapping
            recorder: Optional event sink
            target_path_prefix: Directory below which each source gets its target path
            poll_interval: Requeue delay while a fetch is in flight
            index_retry_interval: Requeue delay after a failed index write
            clock: Source of the current time
        """
        self.store = store
        self.fetchers = fetchers
        self.syncer = syncer
        self.index_writer = index_writer
        self.workspaces = workspaces or WorkspaceResolver()
        self.recorder = recorder
        self.target_path_prefix = target_path_prefix.strip("/")
        self.poll_interval = poll_interval
        self.index_retry_interval = index_retry_interval
        self.clock = clock or (lambda: datetime.now(UTC))
        self.on_result: Callable[[SourceKey], None] | None = None
        self._lock = threading.Lock()
        self._jobs: dict[SourceKey, FetchJob] = {}
        self._results: dict[SourceKey, TemplateFetchResult] = {}

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        store: SourceStore,
        config_store: ConfigStore,
        secret_store: SecretStore,
        recorder: EventRecorder | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> Self:
        """Wire up a reconciler from engine settings."""
        options = FetcherOptions(work_dir=settings.work_dir)
        return cls(
            store,
            FetcherFactory(config_store, secret_store, options, http_transport),
            FilesystemSyncer(settings.workspace_content_path, settings.max_versions_per_source),
            TemplateIndexWriter(settings.workspace_content_path, settings.index_dir),
            workspaces=WorkspaceResolver(settings.workspaces),
            recorder=recorder,
            target_path_prefix=settings.target_path_prefix,
            poll_interval=settings.poll_interval_delta(),
            index_retry_interval=settings.index_retry_interval_delta(),
            clock=clock,
        )

    def target_path(self, name: str) -> str:
        """Namespace relative directory the content of source name is synced to."""
        return f"{self.target_path_prefix}/{name}"

    def is_fetching(self, key: SourceKey) -> bool:
        """Whether a fetch for key is in flight or its result not yet consumed."""
        with self._lock:
            return key in self._jobs

    async def reconcile(self, key: SourceKey) -> ReconcileResult:
        """Run one reconciliation pass for the source identified by key."""
        log = logger.bind(source=str(key))
        source = await self.store.get(key)
        if source is None:
            self._cancel(key)
            log.debug("Source not found, ignoring")
            return ReconcileResult()

        status = source.status
        generation = source.metadata.generation
        if status.phase is None:
            status.phase = Phase.PENDING
        status.observed_generation = generation

        if source.spec.suspend:
            self._cancel(key)
            log.info("Source is suspended, skipping reconciliation")
            self._set(source, ConditionType.READY, "False", "Suspended", "Reconciliation is suspended")
            await self.store.update_status(source)
            return ReconcileResult()

        try:
            validate_source_spec(source.spec)
        except ConfigurationError as e:
            self._cancel(key)
            log.warning("Invalid source configuration", error=str(e))
            self._fail(source, e)
            await self.store.update_status(source)
            return ReconcileResult()
        sync_interval = source.spec.sync_interval_delta()

        result = self._take_result(key)
        if result is not None:
            if result.generation == generation:
                return await self._consume(source, result, sync_interval)
            log.info("Discarding fetch result of outdated spec", generation=result.generation)
            _discard_artifact(result.artifact)
        elif self.is_fetching(key):
            log.debug("Fetch already in progress")
            return ReconcileResult(requeue_after=self.poll_interval)

        now = self.clock()
        if not self._needs_fetch(source, now):
            next_fetch = source.status.next_fetch_time
            delay = next_fetch - now if next_fetch is not None else sync_interval
            return ReconcileResult(requeue_after=delay if delay > timedelta(0) else sync_interval)

        status.phase = Phase.FETCHING
        status.last_fetch_time = now
        self._set(source, ConditionType.FETCHING, "True", "FetchInProgress", "Fetching templates")
        await self.store.update_status(source)
        self._event(source, "Normal", EventReason.FETCH_STARTED, "Started fetching templates")
        self._dispatch(source)
        return ReconcileResult(requeue_after=self.poll_interval)

    def _needs_fetch(self, source: ArenaTemplateSource, now: datetime) -> bool:
        status = source.status
        if status.artifact is None or status.phase in (Phase.PENDING, Phase.FETCHING):
            return True
        available = find_condition(status.conditions, ConditionType.ARTIFACT_AVAILABLE)
        if available is None or available.observed_generation != source.metadata.generation:
            return True
        return status.next_fetch_time is None or now >= status.next_fetch_time

    def _dispatch(self, source: ArenaTemplateSource) -> None:
        key = source.key
        generation = source.metadata.generation
        current_revision = source.status.artifact.revision if source.status.artifact else ""
        task = asyncio.create_task(
            self._run_fetch(key, source.spec.model_copy(deep=True), generation, current_revision),
            name=f"fetch-{key}",
        )
        job = FetchJob(task=task, started_at=self.clock(), generation=generation)
        with self._lock:
            self._jobs[key] = job
        logger.debug("Dispatched fetch", source=str(key), generation=generation)

    async def _run_fetch(
        self,
        key: SourceKey,
        spec: ArenaTemplateSourceSpec,
        generation: int,
        current_revision: str,
    ) -> None:
        timeout = spec.timeout_delta()
        try:
            async with asyncio.timeout(timeout.total_seconds()):
                result = await self._fetch(key, spec, generation, current_revision)
        except ArenaError as e:
            result = TemplateFetchResult(generation=generation, error=e)
        except TimeoutError:
            msg = f"fetch timed out after {timeout}"
            result = TemplateFetchResult(generation=generation, error=FetchError(msg))
        except asyncio.CancelledError:
            msg = "fetch was canceled"
            self._deliver(key, TemplateFetchResult(generation=generation, error=FetchError(msg)))
            raise
        except Exception as e:
            logger.exception("Fetch terminated unexpectedly", source=str(key))
            msg = f"fetch terminated unexpectedly: {e}"
            result = TemplateFetchResult(generation=generation, error=FetchError(msg))
        self._deliver(key, result)

    async def _fetch(
        self,
        key: SourceKey,
        spec: ArenaTemplateSourceSpec,
        generation: int,
        current_revision: str,
    ) -> TemplateFetchResult:
        fetcher = await self.fetchers.create(spec, key.namespace)
        revision = await fetcher.latest_revision()
        if current_revision and revision == current_revision:
            logger.debug("Content already up to date", source=str(key), revision=revision)
            return TemplateFetchResult(generation=generation, revision=revision)

        artifact = await fetcher.fetch(revision)
        discoverer = TemplateDiscoverer(artifact.path, spec.templates_path)
        try:
            templates = await asyncio.to_thread(discoverer.discover)
        except BaseException:
            _discard_artifact(artifact)
            raise
        logger.info(
            "Fetch completed",
            source=str(key),
            revision=artifact.revision,
            template_count=len(templates),
        )
        return TemplateFetchResult(
            generation=generation,
            artifact=artifact,
            templates=templates,
            revision=artifact.revision,
        )

    def _deliver(self, key: SourceKey, result: TemplateFetchResult) -> None:
        """Publish the result unless the job was canceled in the meantime."""
        current = asyncio.current_task()
        with self._lock:
            job = self._jobs.get(key)
            accepted = job is not None and job.task is current
            if accepted:
                self._results[key] = result
        if not accepted:
            _discard_artifact(result.artifact)
            return
        if self.on_result is not None:
            self.on_result(key)

    def _take_result(self, key: SourceKey) -> TemplateFetchResult | None:
        with self._lock:
            result = self._results.pop(key, None)
            if result is not None:
                self._jobs.pop(key, None)
        return result

    def _cancel(self, key: SourceKey) -> None:
        with self._lock:
            job = self._jobs.pop(key, None)
            result = self._results.pop(key, None)
        if job is not None and not job.task.done():
            job.task.cancel()
            logger.info("Canceled in-flight fetch", source=str(key))
        if result is not None:
            _discard_artifact(result.artifact)

    async def _consume(
        self,
        source: ArenaTemplateSource,
        result: TemplateFetchResult,
        sync_interval: timedelta,
    ) -> ReconcileResult:
        status = source.status
        if result.error is not None:
            self._fail(source, result.error)
            await self.store.update_status(source)
            return ReconcileResult(requeue_after=self._retry_after(result.error, sync_interval))

        namespace = source.metadata.namespace
        workspace = self.workspaces.resolve(namespace)
        now = self.clock()
        if (artifact := result.artifact) is None:
            # unchanged revision, keep serving the stored version
            if status.artifact is None:
                msg = f"no stored artifact for unchanged revision {result.revision!r}"
                self._fail(source, SyncError(msg))
                await self.store.update_status(source)
                return ReconcileResult(requeue_after=sync_interval)
            templates = list(status.templates)
            version = status.artifact.version
        else:
            templates = result.templates
            try:
                content_path, version = await asyncio.to_thread(
                    self.syncer.sync,
                    workspace,
                    namespace,
                    self.target_path(source.metadata.name),
                    artifact,
                )
            except ArenaError as e:
                self._fail(source, e)
                await self.store.update_status(source)
                return ReconcileResult(requeue_after=sync_interval)
            finally:
                _discard_artifact(artifact)
            status.artifact = ArtifactStatus(
                revision=artifact.revision,
                content_path=content_path,
                version=version,
                checksum=artifact.checksum,
                size=artifact.size,
                last_update_time=now,
            )
            self._event(
                source,
                "Normal",
                EventReason.TEMPLATE_SCAN_SUCCEEDED,
                f"Discovered {len(templates)} templates",
            )

        status.templates = templates
        status.template_count = len(templates)
        try:
            await asyncio.to_thread(
                self.index_writer.write,
                workspace,
                namespace,
                source.metadata.name,
                templates,
            )
        except IndexWriteError as e:
            self._fail(source, e)
            await self.store.update_status(source)
            return ReconcileResult(requeue_after=self.index_retry_interval)

        revision = status.artifact.revision if status.artifact else result.revision
        status.head_version = version or None
        status.phase = Phase.READY
        status.message = ""
        status.next_fetch_time = now + sync_interval
        self._set(source, ConditionType.FETCHING, "False", "FetchComplete", "Successfully fetched content")
        self._set(
            source,
            ConditionType.TEMPLATES_SCANNED,
            "True",
            "ScanComplete",
            f"Discovered {len(templates)} templates",
        )
        self._set(
            source,
            ConditionType.ARTIFACT_AVAILABLE,
            "True",
            "ArtifactAvailable",
            f"Content synced at revision {revision}",
        )
        self._set(source, ConditionType.READY, "True", "Ready", "Template source is ready")
        await self.store.update_status(source)
        self._event(
            source,
            "Normal",
            EventReason.FETCH_SUCCEEDED,
            f"Successfully fetched {len(templates)} templates at revision {revision}",
        )
        logger.info(
            "Reconciled template source",
            source=str(source.key),
            revision=revision,
            version=version,
            template_count=len(templates),
        )
        return ReconcileResult(requeue_after=sync_interval)

    def _retry_after(self, error: ArenaError, sync_interval: timedelta) -> timedelta | None:
        match error:
            case ConfigurationError():
                return None
            case IndexWriteError():
                return self.index_retry_interval
            case _:
                return sync_interval

    def _fail(self, source: ArenaTemplateSource, error: ArenaError) -> None:
        message = str(error)
        source.status.phase = Phase.ERROR
        source.status.message = message
        self._set(source, ConditionType.FETCHING, "False", "FetchFailed", message)
        self._set(source, ConditionType.READY, "False", error.reason, message)
        reason = EventReason.FETCH_FAILED
        if isinstance(error, ParseError):
            self._set(source, ConditionType.TEMPLATES_SCANNED, "False", "ScanFailed", message)
            reason = EventReason.TEMPLATE_SCAN_FAILED
        logger.warning("Template source failed", source=str(source.key), reason=error.reason)
        self._event(source, "Warning", reason, message)

    def _set(
        self,
        source: ArenaTemplateSource,
        condition_type: str,
        status: ConditionStatus,
        reason: str,
        message: str,
    ) -> None:
        set_condition(
            source.status.conditions,
            source.metadata.generation,
            condition_type,
            status,
            reason,
            message,
            now=self.clock(),
        )

    def _event(
        self,
        source: ArenaTemplateSource,
        event_type: EventType,
        reason: str,
        message: str,
    ) -> None:
        if self.recorder is None:
            return
        try:
            self.recorder.event(source, event_type, reason, message)
        except Exception:
            logger.exception("Failed to record event", source=str(source.key), reason=reason)

    async def finalize(self, key: SourceKey) -> None:
        """Remove stored versions and the index file of a deleted source."""
        self._cancel(key)
        workspace = self.workspaces.resolve(key.namespace)
        await asyncio.to_thread(
            self.syncer.remove_target, workspace, key.namespace, self.target_path(key.name)
        )
        await asyncio.to_thread(self.index_writer.remove, workspace, key.namespace, key.name)
        logger.info("Finalized template source", source=str(key))

    async def close(self) -> None:
        """Cancel all in-flight fetches and drop undelivered results."""
        with self._lock:
            jobs = list(self._jobs.values())
            results = list(self._results.values())
            self._jobs.clear()
            self._results.clear()
        for job in jobs:
            job.task.cancel()
        for job in jobs:
            with suppress(asyncio.CancelledError):
                await job.task
        for result in results:
            _discard_artifact(result.artifact)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def _discard_artifact(artifact: Artifact | None) -> None:
    if artifact is not None:
        shutil.rmtree(artifact.path, ignore_errors=True)
