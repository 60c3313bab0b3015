"""Fetcher for templates stored in a config store entry (ConfigMap)."""

from __future__ import annotations

from dataclasses import dataclass, field
import shutil
from typing import TYPE_CHECKING, Protocol

from arena_templates.exceptions import FetchError
from arena_templates.log import get_logger
from arena_templates_config.sources import SourceType
from arena_templates_sync.artifacts import FetcherOptions
from arena_templates_sync.fetchers.base import build_artifact, safe_join


if TYPE_CHECKING:
    from pathlib import Path

    from arena_templates_sync.artifacts import Artifact


logger = get_logger(__name__)

PATH_SEPARATOR_ENCODING = "__"


@dataclass
class ConfigData:
    """Contents of a config store entry."""

    data: dict[str, str] = field(default_factory=dict)
    binary_data: dict[str, bytes] = field(default_factory=dict)
    resource_version: str = "1"


class ConfigStore(Protocol):
    """Read access to namespaced config entries."""

    async def get_config(self, namespace: str, name: str) -> ConfigData | None:
        """Return the entry, or None if it does not exist."""
        ...


@dataclass
class MemoryConfigStore:
    """Config store backed by a dict. Every put bumps the resource version."""

    entries: dict[tuple[str, str], ConfigData] = field(default_factory=dict)
    _counter: int = 0

    def put(
        self,
        namespace: str,
        name: str,
        data: dict[str, str] | None = None,
        binary_data: dict[str, bytes] | None = None,
    ) -> ConfigData:
        self._counter += 1
        entry = ConfigData(
            data=dict(data or {}),
            binary_data=dict(binary_data or {}),
            resource_version=str(self._counter),
        )
        self.entries[namespace, name] = entry
        return entry

    def remove(self, namespace: str, name: str) -> None:
        self.entries.pop((namespace, name), None)

    async def get_config(self, namespace: str, name: str) -> ConfigData | None:
        return self.entries.get((namespace, name))


def decode_key(key: str) -> str:
    """Turn ``a__b__file.yaml`` into ``a/b/file.yaml``."""
    return key.replace(PATH_SEPARATOR_ENCODING, "/")


class ConfigMapFetcher:
    """Materializes every key of a config entry as a file."""

    def __init__(
        self,
        store: ConfigStore,
        namespace: str,
        name: str,
        options: FetcherOptions | None = None,
    ):
        self.store = store
        self.namespace = namespace
        self.name = name
        self.options = options or FetcherOptions()

    @property
    def type(self) -> str:
        return SourceType.CONFIG_STORE.value

    async def _get(self) -> ConfigData:
        entry = await self.store.get_config(self.namespace, self.name)
        if entry is None:
            msg = f"failed to get ConfigMap {self.namespace}/{self.name}: not found"
            raise FetchError(msg)
        return entry

    async def latest_revision(self) -> str:
        """Resource version of the entry."""
        entry = await self._get()
        return entry.resource_version

    async def fetch(self, revision: str) -> Artifact:
        entry = await self._get()
        if revision and entry.resource_version != revision:
            msg = (
                f"revision mismatch for ConfigMap {self.namespace}/{self.name}: "
                f"expected {revision}, got {entry.resource_version}"
            )
            raise FetchError(msg)

        output = self.options.make_work_dir("configmap-")
        try:
            self._write(entry, output)
        except OSError as e:
            shutil.rmtree(output, ignore_errors=True)
            msg = f"failed to write ConfigMap content: {e}"
            raise FetchError(msg) from e
        except FetchError:
            shutil.rmtree(output, ignore_errors=True)
            raise
        return await build_artifact(output, entry.resource_version)

    def _write(self, entry: ConfigData, output: Path) -> None:
        files: dict[str, bytes] = dict(entry.binary_data)
        files.update({k: v.encode() for k, v in entry.data.items()})
        for key, content in files.items():
            rel = decode_key(key)
            if not rel or rel.endswith("/"):
                logger.warning("Skipping ConfigMap key without file name", key=key)
                continue
            target = safe_join(output, rel)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
