"""Discovery of templates inside fetched content."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
import yaml

from arena_templates.exceptions import FetchError, ParseError
from arena_templates.log import get_logger
from arena_templates.models import Template, TemplateFileSpec, TemplateVariable
from arena_templates_sync.fetchers.base import safe_join


if TYPE_CHECKING:
    from collections.abc import Sequence


logger = get_logger(__name__)

DEFAULT_TEMPLATES_PATH = "templates"
TEMPLATE_FILE = "template.yaml"
INDEX_FILE = "arena-templates.yaml"
RENDERED_EXTENSIONS = frozenset({".yaml", ".yml", ".json", ".txt", ".md"})


def should_render(filename: str) -> bool:
    """Whether a file is a text format that goes through variable substitution."""
    return Path(filename).suffix.lower() in RENDERED_EXTENSIONS


class TemplateDiscoverer:
    """Finds and parses ``template.yaml`` files below a content root."""

    def __init__(self, source_path: str | os.PathLike[str], templates_path: str = ""):
        """Initialize the discoverer.

        Args:
            source_path: Root of the fetched content
            templates_path: Directory holding one sub-directory per template,
                relative to source_path
        """
        self.source_path = Path(source_path)
        self.templates_path = templates_path.strip().rstrip("/") or DEFAULT_TEMPLATES_PATH

    def discover(self) -> list[Template]:
        """Discover all templates.

        Raises:
            ParseError: If a template or the index file is malformed
        """
        index_file = self.source_path / INDEX_FILE
        if index_file.is_file():
            templates = self._discover_from_index(index_file)
        else:
            templates = self._auto_discover()
        if not templates and (self.source_path / TEMPLATE_FILE).is_file():
            templates = [self.load_template(self.source_path)]
        logger.debug("Discovered templates", count=len(templates), root=str(self.source_path))
        return templates

    def _discover_from_index(self, index_file: Path) -> list[Template]:
        data = _read_yaml(index_file)
        entries = data.get("templates") or []
        if not isinstance(entries, list):
            msg = f"{index_file}: 'templates' must be a list"
            raise ParseError(msg)
        templates = []
        for entry in entries:
            path = entry.get("path") if isinstance(entry, dict) else None
            if not path or not isinstance(path, str):
                msg = f"{index_file}: every entry needs a path string"
                raise ParseError(msg)
            try:
                template_dir = safe_join(self.source_path, path)
            except FetchError as e:
                msg = f"{index_file}: {e}"
                raise ParseError(msg) from e
            templates.append(self.load_template(template_dir))
        return templates

    def _auto_discover(self) -> list[Template]:
        root = self.source_path / self.templates_path
        if not root.is_dir():
            return []
        return [
            self.load_template(entry)
            for entry in sorted(root.iterdir(), key=lambda p: p.name)
            if entry.is_dir() and (entry / TEMPLATE_FILE).is_file()
        ]

    def load_template(self, template_dir: str | os.PathLike[str]) -> Template:
        """Parse the ``template.yaml`` of a template directory.

        Raises:
            ParseError: If the file is missing, not valid YAML or incomplete
        """
        directory = Path(template_dir)
        data = _read_yaml(directory / TEMPLATE_FILE)
        metadata = data.get("metadata") or {}
        spec = data.get("spec") or {}
        if not isinstance(metadata, dict) or not isinstance(spec, dict):
            msg = f"{directory / TEMPLATE_FILE}: metadata and spec must be mappings"
            raise ParseError(msg)
        name = metadata.get("name")
        if not name:
            msg = f"{directory / TEMPLATE_FILE}: metadata.name is required"
            raise ParseError(msg)
        try:
            variables = [TemplateVariable.model_validate(v) for v in spec.get("variables") or []]
            if spec.get("files"):
                files = [TemplateFileSpec.model_validate(f) for f in spec["files"]]
            else:
                files = default_files(directory)
            return Template(
                name=name,
                version=str(metadata.get("version") or ""),
                display_name=spec.get("displayName") or name,
                description=spec.get("description") or "",
                category=spec.get("category") or "",
                tags=spec.get("tags") or [],
                variables=variables,
                files=files,
                path=self._relative(directory),
            )
        except ValidationError as e:
            msg = f"{directory / TEMPLATE_FILE}: invalid template: {e}"
            raise ParseError(msg) from e

    def _relative(self, directory: Path) -> str:
        try:
            rel = directory.resolve().relative_to(self.source_path.resolve())
        except ValueError:
            return directory.as_posix()
        return rel.as_posix()


def default_files(template_dir: Path) -> list[TemplateFileSpec]:
    """Every visible entry of a template directory except ``template.yaml``."""
    files = []
    for entry in sorted(template_dir.iterdir(), key=lambda p: p.name):
        if entry.name.startswith(".") or entry.name == TEMPLATE_FILE:
            continue
        if entry.is_dir():
            files.append(TemplateFileSpec(path=f"{entry.name}/", render=False))
        else:
            files.append(TemplateFileSpec(path=entry.name, render=should_render(entry.name)))
    return files


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        msg = f"failed to read {path}: {e}"
        raise ParseError(msg) from e
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        msg = f"failed to parse {path}: {e}"
        raise ParseError(msg) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{path}: expected a mapping"
        raise ParseError(msg)
    return data


def get_template_by_name(templates: Sequence[Template], name: str) -> Template | None:
    return next((t for t in templates if t.name == name), None)


def filter_by_category(templates: Sequence[Template], category: str) -> list[Template]:
    """Templates of a category, compared case-insensitively. Empty returns all."""
    if not category:
        return list(templates)
    wanted = category.lower()
    return [t for t in templates if t.category.lower() == wanted]


def filter_by_tags(templates: Sequence[Template], tags: Sequence[str]) -> list[Template]:
    """Templates carrying any of the tags, compared case-insensitively. Empty returns all."""
    if not tags:
        return list(templates)
    wanted = {tag.lower() for tag in tags}
    return [t for t in templates if wanted & {tag.lower() for tag in t.tags}]


def search_templates(templates: Sequence[Template], query: str) -> list[Template]:
    """Substring search over name, display name and description."""
    if not query:
        return list(templates)
    needle = query.lower()
    return [
        t
        for t in templates
        if needle in t.name.lower()
        or needle in t.display_name.lower()
        or needle in t.description.lower()
    ]
