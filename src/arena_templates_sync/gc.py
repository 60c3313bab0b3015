"""Retention of stored version directories."""

from __future__ import annotations

import os
from pathlib import Path
import shutil
from typing import TYPE_CHECKING

from arena_templates.exceptions import SyncError
from arena_templates.log import get_logger


if TYPE_CHECKING:
    from collections.abc import Collection


logger = get_logger(__name__)

DEFAULT_MAX_VERSIONS = 10
ARENA_DIR = ".arena"
VERSIONS_DIR = "versions"


def versions_dir(root: str | os.PathLike[str]) -> Path:
    """Directory holding the version snapshots of a target path."""
    return Path(root) / ARENA_DIR / VERSIONS_DIR


def list_versions(root: str | os.PathLike[str]) -> list[Path]:
    """Version directories of root, oldest first.

    Ordered by modification time, equal times by name. Entries that are not
    directories are skipped.
    """
    directory = versions_dir(root)
    if not directory.is_dir():
        return []
    entries = [(p.stat().st_mtime_ns, p.name, p) for p in directory.iterdir() if p.is_dir()]
    entries.sort(key=lambda entry: (entry[0], entry[1]))
    return [path for _, _, path in entries]


def gc(
    root: str | os.PathLike[str],
    max_versions: int = DEFAULT_MAX_VERSIONS,
    protect: Collection[str] = (),
) -> list[str]:
    """Delete the oldest version directories beyond max_versions.

    Args:
        root: Target path whose ``.arena/versions`` is collected
        max_versions: Number of directories to keep, values <= 0 mean the default
        protect: Version names that are never collected, e.g. the HEAD version.
            They still count towards max_versions.

    Returns:
        Names of the deleted versions

    Raises:
        SyncError: If any candidate could not be removed. Every candidate is
            attempted before raising.
    """
    if max_versions <= 0:
        max_versions = DEFAULT_MAX_VERSIONS
    try:
        versions = list_versions(root)
    except OSError as e:
        msg = f"failed to list versions under {root}: {e}"
        raise SyncError(msg) from e
    if len(versions) <= max_versions:
        return []

    # protected versions sort as newest
    ordered = [p for p in versions if p.name not in protect]
    ordered += [p for p in versions if p.name in protect]
    candidates = [p for p in ordered[: len(ordered) - max_versions] if p.name not in protect]
    removed: list[str] = []
    failures: list[str] = []
    for path in candidates:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning("Failed to remove old version", version=path.name, error=str(e))
            failures.append(f"{path.name}: {e}")
        else:
            logger.debug("Removed old version", version=path.name, root=str(root))
            removed.append(path.name)
    if failures:
        msg = f"failed to remove {len(failures)} old version(s): {'; '.join(failures)}"
        raise SyncError(msg)
    return removed
