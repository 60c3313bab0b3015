from __future__ import annotations

from pathlib import Path

import pytest

from arena_templates.exceptions import FetchError
from arena_templates_sync.artifacts import FetcherOptions
from arena_templates_sync.fetchers import ConfigMapFetcher, MemoryConfigStore
from arena_templates_sync.fetchers import base
from arena_templates_sync.fetchers.configmap import decode_key
from arena_templates_sync.hashing import compute_checksum


@pytest.fixture
def store() -> MemoryConfigStore:
    return MemoryConfigStore()


@pytest.fixture
def options(tmp_path: Path) -> FetcherOptions:
    return FetcherOptions(work_dir=tmp_path / "work")


def test_decode_key():
    assert decode_key("templates__basic__template.yaml") == "templates/basic/template.yaml"
    assert decode_key("plain.txt") == "plain.txt"


@pytest.mark.asyncio
async def test_revision_is_resource_version(store: MemoryConfigStore, options: FetcherOptions):
    store.put("ns", "cm", data={"a.txt": "1"})
    fetcher = ConfigMapFetcher(store, "ns", "cm", options)
    assert fetcher.type == "configmap"
    first = await fetcher.latest_revision()
    store.put("ns", "cm", data={"a.txt": "2"})
    assert await fetcher.latest_revision() != first


@pytest.mark.asyncio
async def test_fetch_writes_nested_files(store: MemoryConfigStore, options: FetcherOptions):
    store.put(
        "ns",
        "cm",
        data={"templates__basic__template.yaml": "metadata:\n  name: basic\n", "same.txt": "text"},
        binary_data={"logo.png": b"\x89PNG", "same.txt": b"binary"},
    )
    fetcher = ConfigMapFetcher(store, "ns", "cm", options)
    revision = await fetcher.latest_revision()
    artifact = await fetcher.fetch(revision)

    assert artifact.revision == revision
    assert (artifact.path / "templates" / "basic" / "template.yaml").exists()
    assert (artifact.path / "logo.png").read_bytes() == b"\x89PNG"
    assert (artifact.path / "same.txt").read_text() == "text"
    assert artifact.checksum == compute_checksum(artifact.path)
    assert artifact.size > 0
    assert artifact.path.parent == options.work_dir


@pytest.mark.asyncio
async def test_skips_keys_without_file_name(store: MemoryConfigStore, options: FetcherOptions):
    store.put("ns", "cm", data={"dir__": "ignored", "ok.txt": "x"})
    fetcher = ConfigMapFetcher(store, "ns", "cm", options)
    artifact = await fetcher.fetch(await fetcher.latest_revision())
    assert [p.name for p in artifact.path.iterdir()] == ["ok.txt"]


@pytest.mark.asyncio
async def test_revision_mismatch(store: MemoryConfigStore, options: FetcherOptions):
    store.put("ns", "cm", data={"a.txt": "1"})
    fetcher = ConfigMapFetcher(store, "ns", "cm", options)
    revision = await fetcher.latest_revision()
    store.put("ns", "cm", data={"a.txt": "2"})
    with pytest.raises(FetchError, match="revision mismatch"):
        await fetcher.fetch(revision)


@pytest.mark.asyncio
async def test_missing_entry(store: MemoryConfigStore, options: FetcherOptions):
    fetcher = ConfigMapFetcher(store, "ns", "missing", options)
    with pytest.raises(FetchError, match="failed to get ConfigMap ns/missing"):
        await fetcher.latest_revision()


@pytest.mark.asyncio
async def test_rejects_escaping_keys(store: MemoryConfigStore, options: FetcherOptions):
    store.put("ns", "cm", data={"..__evil.txt": "x"})
    fetcher = ConfigMapFetcher(store, "ns", "cm", options)
    with pytest.raises(FetchError, match="escapes"):
        await fetcher.fetch(await fetcher.latest_revision())


@pytest.mark.asyncio
async def test_checksum_failure_removes_output(
    store: MemoryConfigStore, options: FetcherOptions, monkeypatch: pytest.MonkeyPatch
):
    def unreadable(path):
        msg = "permission denied"
        raise PermissionError(msg)

    monkeypatch.setattr(base, "compute_checksum", unreadable)
    store.put("ns", "cm", data={"a.txt": "1"})
    fetcher = ConfigMapFetcher(store, "ns", "cm", options)
    with pytest.raises(FetchError, match="failed to calculate checksum"):
        await fetcher.fetch(await fetcher.latest_revision())
    assert list(options.work_dir.iterdir()) == []
