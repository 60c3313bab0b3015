"""Fetchers retrieving template content from the supported origins."""

from __future__ import annotations

from arena_templates_sync.fetchers.base import Fetcher, build_artifact
from arena_templates_sync.fetchers.configmap import (
    ConfigData,
    ConfigMapFetcher,
    ConfigStore,
    MemoryConfigStore,
)
from arena_templates_sync.fetchers.git import GitError, GitFetcher
from arena_templates_sync.fetchers.oci import OCIFetcher, OCIReference


__all__ = [
    "ConfigData",
    "ConfigMapFetcher",
    "ConfigStore",
    "Fetcher",
    "GitError",
    "GitFetcher",
    "MemoryConfigStore",
    "OCIFetcher",
    "OCIReference",
    "build_artifact",
]
