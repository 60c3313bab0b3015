"""Fetched artifacts and fetch options."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
import tempfile
from typing import Any

from arena_templates.log import get_logger


logger = get_logger(__name__)

CHECKSUM_PREFIX = "sha256:"
DEFAULT_FETCH_TIMEOUT = timedelta(seconds=60)


@dataclass(frozen=True)
class Artifact:
    """Content retrieved from an origin, placed in a local directory."""

    path: Path
    """Local directory holding the fetched content."""

    checksum: str
    """Content checksum, ``algo:hex``."""

    revision: str
    """Origin revision the content was taken from."""

    size: int = 0
    """Total size of the fetched files in bytes."""

    last_modified: datetime = field(default_factory=lambda: datetime.now(UTC))
    """When the content was fetched."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict."""
        return {
            "path": str(self.path),
            "checksum": self.checksum,
            "revision": self.revision,
            "size": self.size,
            "last_modified": self.last_modified.isoformat(),
        }


@dataclass
class FetcherOptions:
    """Options shared by all fetchers."""

    timeout: timedelta = DEFAULT_FETCH_TIMEOUT
    """Upper bound for a single fetch."""

    work_dir: Path | None = None
    """Parent directory for fetch scratch space. Defaults to the system temp dir."""

    def make_work_dir(self, prefix: str) -> Path:
        """Create a fresh scratch directory for one fetch."""
        parent = self.work_dir
        if parent is not None:
            parent.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=prefix, dir=parent))
        logger.debug("Created fetch work dir", path=str(path))
        return path
