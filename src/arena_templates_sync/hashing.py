"""Content hashing and version identifiers."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import TYPE_CHECKING

from arena_templates_sync.artifacts import CHECKSUM_PREFIX


if TYPE_CHECKING:
    from arena_templates_sync.artifacts import Artifact


VERSION_LENGTH = 12
_CHUNK_SIZE = 64 * 1024


def _walk_sorted(root: Path) -> list[Path]:
    """All entries below root in a traversal-order independent sequence."""
    entries: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        entries.extend(base / name for name in dirnames)
        entries.extend(base / name for name in filenames)
    return sorted(entries, key=lambda p: p.relative_to(root).as_posix())


def calculate_directory_hash(path: str | os.PathLike[str]) -> str:
    """Hash a directory tree by structure and file contents.

    Each entry contributes its kind, its posix path relative to the root and
    either its bytes (files) or its link target (symlinks). Modification
    times are ignored.

    Returns:
        Hex encoded sha256 digest
    """
    root = Path(path)
    digest = hashlib.sha256()
    for entry in _walk_sorted(root):
        rel = entry.relative_to(root).as_posix()
        if entry.is_symlink():
            digest.update(f"L {rel} -> {os.readlink(entry)}\0".encode())
        elif entry.is_dir():
            digest.update(f"D {rel}\0".encode())
        elif entry.is_file():
            digest.update(f"F {rel}\0".encode())
            with entry.open("rb") as f:
                while chunk := f.read(_CHUNK_SIZE):
                    digest.update(chunk)
            digest.update(b"\0")
    return digest.hexdigest()


def calculate_directory_size(path: str | os.PathLike[str]) -> int:
    """Sum of all regular file sizes below path. Symlinks are not followed."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            file_path = Path(dirpath) / name
            if not file_path.is_symlink():
                total += file_path.stat().st_size
    return total


def compute_checksum(path: str | os.PathLike[str]) -> str:
    """Checksum of a directory tree, ``sha256:<hex>``."""
    return f"{CHECKSUM_PREFIX}{calculate_directory_hash(path)}"


def compute_version(artifact: Artifact) -> str:
    """Derive the version identifier of an artifact.

    Uses the leading characters of a ``sha256:`` checksum when it is long
    enough, otherwise hashes the fetched content.
    """
    checksum = artifact.checksum
    if checksum.startswith(CHECKSUM_PREFIX):
        hex_digest = checksum.removeprefix(CHECKSUM_PREFIX)
        if len(hex_digest) >= VERSION_LENGTH:
            return hex_digest[:VERSION_LENGTH]
    return calculate_directory_hash(artifact.path)[:VERSION_LENGTH]
