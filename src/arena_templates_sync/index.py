"""Per-source template index files."""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

import anyenv
from pydantic import TypeAdapter

from arena_templates.exceptions import IndexWriteError
from arena_templates.log import get_logger
from arena_templates.models import Template
from arena_templates_sync.fsutils import atomic_write_text


if TYPE_CHECKING:
    from collections.abc import Sequence


logger = get_logger(__name__)

DEFAULT_INDEX_DIR = "arena/template-indexes"
_TEMPLATE_LIST = TypeAdapter(list[Template])


class TemplateIndexWriter:
    """Writes ``{base}/{workspace}/{namespace}/{index_dir}/{source}.json``."""

    def __init__(
        self,
        base_path: str | os.PathLike[str] | None,
        index_dir: str = DEFAULT_INDEX_DIR,
    ):
        self.base_path = Path(base_path) if base_path is not None else None
        self.index_dir = PurePosixPath(index_dir)

    def index_path(self, workspace: str, namespace: str, source_name: str) -> Path:
        if self.base_path is None:
            msg = "no workspace content path configured"
            raise IndexWriteError(msg)
        return self.base_path / workspace / namespace / self.index_dir / f"{source_name}.json"

    def write(
        self,
        workspace: str,
        namespace: str,
        source_name: str,
        templates: Sequence[Template],
    ) -> Path | None:
        """Serialize templates as a JSON array. An empty list still writes ``[]``.

        Returns:
            Path of the index file, None when persistence is disabled

        Raises:
            IndexWriteError: If the file could not be written
        """
        if self.base_path is None:
            return None
        path = self.index_path(workspace, namespace, source_name)
        data = [t.model_dump(mode="json", by_alias=True) for t in templates]
        try:
            atomic_write_text(path, anyenv.dump_json(data, indent=True))
        except OSError as e:
            msg = f"failed to write template index {path}: {e}"
            raise IndexWriteError(msg) from e
        logger.info("Wrote template index", path=str(path), count=len(data))
        return path

    def remove(self, workspace: str, namespace: str, source_name: str) -> bool:
        """Delete the index file of a source. Returns whether it existed."""
        if self.base_path is None:
            return False
        path = self.index_path(workspace, namespace, source_name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            msg = f"failed to remove template index {path}: {e}"
            raise IndexWriteError(msg) from e
        return True


def read_index(path: str | os.PathLike[str]) -> list[Template]:
    """Load templates from an index file.

    Raises:
        anyenv.JsonLoadError: If the file is not valid JSON
        pydantic.ValidationError: If an entry is not a template
    """
    content = Path(path).read_text(encoding="utf-8")
    return _TEMPLATE_LIST.validate_python(anyenv.load_json(content))
