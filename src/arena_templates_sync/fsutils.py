"""Filesystem helpers for moving content around."""

from __future__ import annotations

from contextlib import suppress
import errno
import fnmatch
import os
from pathlib import Path
import shutil
import tempfile
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Iterable


def _is_excluded(name: str, rel: str, exclude: Iterable[str]) -> bool:
    return any(fnmatch.fnmatch(name, pat) or fnmatch.fnmatch(rel, pat) for pat in exclude)


def copy_directory(
    src: str | os.PathLike[str],
    dst: str | os.PathLike[str],
    exclude: Iterable[str] = (),
) -> None:
    """Recursively copy src into dst, preserving file modes and symlinks.

    Args:
        src: Source directory
        dst: Destination directory, created if missing
        exclude: Patterns matched against base names or relative paths;
            excluded directories are not descended into
    """
    src_root = Path(src)
    dst_root = Path(dst)
    patterns = tuple(exclude)
    dst_root.mkdir(parents=True, exist_ok=True)
    for dirpath, dirnames, filenames in os.walk(src_root):
        base = Path(dirpath)
        rel_base = base.relative_to(src_root)
        kept_dirs = []
        for name in dirnames:
            rel = (rel_base / name).as_posix()
            if _is_excluded(name, rel, patterns):
                continue
            source = base / name
            target = dst_root / rel
            if source.is_symlink():
                target.symlink_to(os.readlink(source))
                continue
            target.mkdir(exist_ok=True)
            shutil.copymode(source, target)
            kept_dirs.append(name)
        dirnames[:] = kept_dirs
        for name in filenames:
            rel = (rel_base / name).as_posix()
            if _is_excluded(name, rel, patterns):
                continue
            source = base / name
            target = dst_root / rel
            if source.is_symlink():
                target.symlink_to(os.readlink(source))
            else:
                shutil.copy2(source, target)


def move_directory(src: str | os.PathLike[str], dst: str | os.PathLike[str]) -> None:
    """Move src to dst, renaming when possible and copying across filesystems.

    On copy failure the partially written destination is removed and the
    source is left in place.
    """
    source = Path(src)
    target = Path(dst)
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        source.rename(target)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
    else:
        return
    try:
        copy_directory(source, target)
    except BaseException:
        shutil.rmtree(target, ignore_errors=True)
        raise
    shutil.rmtree(source, ignore_errors=True)


def atomic_write_text(path: str | os.PathLike[str], content: str) -> None:
    """Write content to path via a temp file in the same directory and a rename."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        Path(tmp_name).replace(target)
    except BaseException:
        with suppress(FileNotFoundError):
            Path(tmp_name).unlink()
        raise
