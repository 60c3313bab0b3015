"""Fetcher protocol and shared helpers."""

from __future__ import annotations

import asyncio
import shutil
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Protocol

from arena_templates.exceptions import FetchError
from arena_templates_sync.artifacts import Artifact
from arena_templates_sync.hashing import calculate_directory_size, compute_checksum


if TYPE_CHECKING:
    from arena_templates_sync.artifacts import FetcherOptions


class Fetcher(Protocol):
    """Retrieves template content from one origin."""

    options: FetcherOptions

    @property
    def type(self) -> str:
        """Source type this fetcher handles."""
        ...

    async def latest_revision(self) -> str:
        """Revision the origin currently serves.

        Uses the same notation as ``Artifact.revision`` so both can be compared.
        """
        ...

    async def fetch(self, revision: str) -> Artifact:
        """Download the content at revision into a fresh local directory."""
        ...


def _describe(path: Path) -> tuple[str, int]:
    return compute_checksum(path), calculate_directory_size(path)


async def build_artifact(
    path: Path,
    revision: str,
    last_modified: datetime | None = None,
) -> Artifact:
    """Checksum and measure a fetched directory, removing it on failure."""
    try:
        checksum, size = await asyncio.to_thread(_describe, path)
    except OSError as e:
        shutil.rmtree(path, ignore_errors=True)
        msg = f"failed to calculate checksum of {path}: {e}"
        raise FetchError(msg) from e
    except BaseException:
        shutil.rmtree(path, ignore_errors=True)
        raise
    return Artifact(
        path=path,
        checksum=checksum,
        revision=revision,
        size=size,
        last_modified=last_modified or datetime.now(UTC),
    )


def safe_join(root: Path, name: str) -> Path:
    """Join a relative posix path onto root, refusing anything that escapes it.

    Raises:
        FetchError: For absolute paths or ``..`` components
    """
    rel = PurePosixPath(name)
    if rel.is_absolute() or ".." in rel.parts:
        msg = f"path {name!r} escapes the artifact directory"
        raise FetchError(msg)
    return root.joinpath(*rel.parts)
