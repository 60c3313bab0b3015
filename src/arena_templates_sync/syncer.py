"""Versioned content store with a HEAD pointer per target path.

Layout below the configured base path::

    {base}/{workspace}/{namespace}/{target_path}/.arena/HEAD
    {base}/{workspace}/{namespace}/{target_path}/.arena/versions/{version}/...

Writers are expected to be serialized per target path; nothing here locks.
"""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
import shutil
from typing import TYPE_CHECKING

from arena_templates.exceptions import SyncError
from arena_templates.log import get_logger
from arena_templates_sync.fsutils import atomic_write_text, move_directory
from arena_templates_sync.gc import ARENA_DIR, DEFAULT_MAX_VERSIONS, VERSIONS_DIR, gc
from arena_templates_sync.hashing import compute_version


if TYPE_CHECKING:
    from arena_templates_sync.artifacts import Artifact


logger = get_logger(__name__)

HEAD_FILE = "HEAD"


class FilesystemSyncer:
    """Stores artifacts as immutable, content addressed version directories."""

    def __init__(
        self,
        base_path: str | os.PathLike[str] | None,
        max_versions: int = DEFAULT_MAX_VERSIONS,
    ):
        """Initialize the syncer.

        Args:
            base_path: Root of the workspace content tree. None turns every
                operation into a no-op.
            max_versions: Versions kept per target path
        """
        self.base_path = Path(base_path) if base_path is not None else None
        self.max_versions = max_versions

    @property
    def enabled(self) -> bool:
        return self.base_path is not None

    def target_root(self, workspace: str, namespace: str, target_path: str) -> Path:
        """Absolute directory of a target path."""
        if self.base_path is None:
            msg = "no workspace content path configured"
            raise SyncError(msg)
        rel = PurePosixPath(target_path)
        if rel.is_absolute() or ".." in rel.parts:
            msg = f"invalid target path {target_path!r}"
            raise SyncError(msg)
        return self.base_path / workspace / namespace / rel

    def sync(
        self,
        workspace: str,
        namespace: str,
        target_path: str,
        artifact: Artifact,
    ) -> tuple[str, str]:
        """Store the artifact content and point HEAD at it.

        Content already stored under the same version is not touched again,
        the artifact directory is left as is and only HEAD moves.

        Returns:
            Tuple of (content path relative to the namespace, version). Both
            are empty when persistence is disabled.

        Raises:
            SyncError: If the content could not be stored or HEAD not written
        """
        if self.base_path is None:
            logger.debug("Persistence disabled, skipping sync", target=target_path)
            return "", ""
        try:
            version = compute_version(artifact)
        except OSError as e:
            msg = f"failed to compute version of {artifact.path}: {e}"
            raise SyncError(msg) from e
        root = self.target_root(workspace, namespace, target_path)
        version_dir = root / ARENA_DIR / VERSIONS_DIR / version
        content_path = f"{PurePosixPath(target_path)}/{ARENA_DIR}/{VERSIONS_DIR}/{version}"

        if version_dir.exists():
            logger.info("Version already stored", target=target_path, version=version)
        else:
            try:
                move_directory(artifact.path, version_dir)
            except OSError as e:
                msg = f"failed to store version {version} for {target_path}: {e}"
                raise SyncError(msg) from e
            logger.info("Stored new version", target=target_path, version=version)

        self.update_head(root, version)
        # HEAD's version must be the newest directory so gc never collects it
        try:
            os.utime(version_dir)
        except OSError as e:
            logger.warning("Failed to touch version", version=version, error=str(e))
        try:
            gc(root, self.max_versions, protect=(version,))
        except SyncError:
            logger.exception("Garbage collection failed", target=target_path)
        return content_path, version

    def update_head(self, root: Path, version: str) -> None:
        """Point HEAD of the target root at version."""
        try:
            atomic_write_text(root / ARENA_DIR / HEAD_FILE, version)
        except OSError as e:
            msg = f"failed to update HEAD under {root}: {e}"
            raise SyncError(msg) from e

    def read_head(self, workspace: str, namespace: str, target_path: str) -> str | None:
        """Current HEAD version of a target path, None if nothing was synced."""
        if self.base_path is None:
            return None
        return read_head_file(self.target_root(workspace, namespace, target_path))

    def remove_target(self, workspace: str, namespace: str, target_path: str) -> bool:
        """Delete all stored versions and HEAD of a target path.

        Returns:
            Whether anything was removed
        """
        if self.base_path is None:
            return False
        root = self.target_root(workspace, namespace, target_path)
        if not root.exists():
            return False
        try:
            shutil.rmtree(root)
        except OSError as e:
            msg = f"failed to remove {root}: {e}"
            raise SyncError(msg) from e
        logger.info("Removed stored content", target=target_path, namespace=namespace)
        return True


def read_head_file(root: str | os.PathLike[str]) -> str | None:
    """Read ``.arena/HEAD`` below root."""
    head = Path(root) / ARENA_DIR / HEAD_FILE
    try:
        return head.read_text(encoding="utf-8").strip() or None
    except FileNotFoundError:
        return None
