"""Fetching, versioned storage and indexing of template content."""

from __future__ import annotations

from arena_templates_sync.artifacts import Artifact, FetcherOptions
from arena_templates_sync.credentials import (
    GitCredentials,
    MemorySecretStore,
    OCICredentials,
    SecretStore,
    load_git_credentials,
    load_oci_credentials,
)
from arena_templates_sync.gc import DEFAULT_MAX_VERSIONS, gc, list_versions
from arena_templates_sync.hashing import (
    calculate_directory_hash,
    calculate_directory_size,
    compute_version,
)
from arena_templates_sync.index import TemplateIndexWriter, read_index
from arena_templates_sync.selection import FetcherFactory, validate_source_spec
from arena_templates_sync.syncer import FilesystemSyncer, read_head_file


__all__ = [
    "DEFAULT_MAX_VERSIONS",
    "Artifact",
    "FetcherFactory",
    "FetcherOptions",
    "FilesystemSyncer",
    "GitCredentials",
    "MemorySecretStore",
    "OCICredentials",
    "SecretStore",
    "TemplateIndexWriter",
    "calculate_directory_hash",
    "calculate_directory_size",
    "compute_version",
    "gc",
    "list_versions",
    "load_git_credentials",
    "load_oci_credentials",
    "read_head_file",
    "read_index",
    "validate_source_spec",
]
