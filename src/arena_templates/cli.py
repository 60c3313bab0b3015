"""Command line interface for the template source engine."""

from __future__ import annotations

import asyncio
import base64
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import anyenv
from pydantic import ValidationError
import typer as t
import yaml

from arena_templates.exceptions import ArenaError
from arena_templates.log import configure_logging, get_logger


if TYPE_CHECKING:
    from arena_templates.models import ArenaTemplateSource, ArenaTemplateSourceStatus
    from arena_templates_config.settings import EngineSettings
    from arena_templates_sync.credentials import MemorySecretStore
    from arena_templates_sync.fetchers import MemoryConfigStore


logger = get_logger(__name__)

cli = t.Typer(
    name="arena-templates",
    help="Fetch, version and index Arena template sources",
    no_args_is_help=True,
)

OUTPUT_FORMAT_HELP = "Output format. One of: text, json, yaml"
OUTPUT_FORMAT_CMDS = "-o", "--output-format"
VERBOSE_HELP = "Enable debug logging"
VERBOSE_CMDS = "-v", "--verbose"
SETTINGS_HELP = "Engine settings YAML file (defaults to ARENA_* environment variables)"
FIXTURES_HELP = "YAML file with configMaps and secrets available to the source"
TIMEOUT_HELP = "Seconds to wait for the source to leave the Fetching phase"

POLL_SECONDS = 0.05


def complete_output_formats() -> list[str]:
    """Complete output format options."""
    return ["text", "json", "yaml"]


def format_output(data: Any, output_format: str) -> str:
    """Render data as json or yaml."""
    match output_format:
        case "json":
            return anyenv.dump_json(data, indent=True)
        case "yaml" | "text":
            return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
        case _:
            msg = f"Unsupported output format: {output_format}"
            raise t.BadParameter(msg)


def load_settings(path: Path | None) -> EngineSettings:
    from arena_templates_config.settings import EngineSettings

    try:
        return EngineSettings.from_file(path) if path else EngineSettings.from_env()
    except (OSError, ValueError, yaml.YAMLError) as e:
        msg = f"Invalid settings: {e}"
        raise t.BadParameter(msg) from e


def load_source(path: Path) -> ArenaTemplateSource:
    from arena_templates.models import ArenaTemplateSource

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        return ArenaTemplateSource.model_validate(data)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        msg = f"Invalid source file {path}: {e}"
        raise t.BadParameter(msg) from e


def load_fixtures(
    path: Path | None,
    default_namespace: str,
) -> tuple[MemoryConfigStore, MemorySecretStore]:
    """Build config and secret stores from a fixtures file.

    The file holds ``configMaps`` and ``secrets`` lists of entries with
    ``name``, an optional ``namespace`` and ``data``. Config map entries may
    also carry base64 encoded ``binaryData``.
    """
    from arena_templates_sync.credentials import MemorySecretStore
    from arena_templates_sync.fetchers import MemoryConfigStore

    config_store = MemoryConfigStore()
    secret_store = MemorySecretStore()
    if path is None:
        return config_store, secret_store
    try:
        fixtures = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        for entry in fixtures.get("configMaps") or []:
            binary = {
                key: base64.b64decode(value)
                for key, value in (entry.get("binaryData") or {}).items()
            }
            config_store.put(
                entry.get("namespace", default_namespace),
                entry["name"],
                data={k: str(v) for k, v in (entry.get("data") or {}).items()},
                binary_data=binary,
            )
        for entry in fixtures.get("secrets") or []:
            secret_store.put(
                entry.get("namespace", default_namespace),
                entry["name"],
                {k: str(v) for k, v in (entry.get("data") or {}).items()},
            )
    except (OSError, yaml.YAMLError, KeyError, AttributeError, ValueError) as e:
        msg = f"Invalid fixtures file {path}: {e}"
        raise t.BadParameter(msg) from e
    return config_store, secret_store


async def run_source(
    source: ArenaTemplateSource,
    settings: EngineSettings,
    config_store: MemoryConfigStore,
    secret_store: MemorySecretStore,
    timeout: float,
) -> ArenaTemplateSourceStatus:
    """Reconcile a single source until it settles and return its status."""
    from arena_templates.controller import Controller
    from arena_templates.events import LoggingEventRecorder
    from arena_templates.models import Phase
    from arena_templates.reconciler import ArenaTemplateSourceReconciler
    from arena_templates.store import MemorySourceStore

    store = MemorySourceStore()
    key = store.apply(source).key
    reconciler = ArenaTemplateSourceReconciler.from_settings(
        settings,
        store,
        config_store,
        secret_store,
        recorder=LoggingEventRecorder(),
    )
    controller = Controller(
        reconciler,
        store,
        settings.workers,
        cleanup_on_delete=settings.cleanup_on_delete,
    )
    async with controller:
        async with asyncio.timeout(timeout):
            while True:
                current = await store.get(key)
                if current is None:
                    msg = f"source {key} disappeared from the store"
                    raise RuntimeError(msg)
                phase = current.status.phase
                if source.spec.suspend and phase is not None:
                    return current.status
                if phase in (Phase.READY, Phase.ERROR) and not reconciler.is_fetching(key):
                    return current.status
                await asyncio.sleep(POLL_SECONDS)


@cli.command("sync")
def sync_command(
    source_file: Annotated[Path, t.Argument(help="ArenaTemplateSource YAML file")],
    settings_file: Annotated[
        Path | None, t.Option("--settings", "-s", help=SETTINGS_HELP)
    ] = None,
    fixtures_file: Annotated[
        Path | None, t.Option("--fixtures", "-f", help=FIXTURES_HELP)
    ] = None,
    timeout: Annotated[float, t.Option("--timeout", help=TIMEOUT_HELP)] = 300.0,
    output_format: Annotated[
        str,
        t.Option(
            *OUTPUT_FORMAT_CMDS,
            help=OUTPUT_FORMAT_HELP,
            autocompletion=complete_output_formats,
        ),
    ] = "yaml",
    verbose: Annotated[bool, t.Option(*VERBOSE_CMDS, help=VERBOSE_HELP)] = False,
) -> None:
    """Fetch a template source once and print its resulting status.

    Exits with status 1 when the source ends up in the Error phase.
    """
    from arena_templates.models import Phase
    from arena_templates_config.durations import format_duration

    settings = load_settings(settings_file)
    configure_logging("DEBUG" if verbose else settings.log_level, json_logs=settings.json_logs)
    source = load_source(source_file)
    config_store, secret_store = load_fixtures(fixtures_file, source.metadata.namespace)
    try:
        status = asyncio.run(run_source(source, settings, config_store, secret_store, timeout))
    except TimeoutError as e:
        t.echo(f"Timed out after {timeout}s waiting for {source.key}", err=True)
        raise t.Exit(2) from e

    data = status.model_dump(mode="json", exclude_none=True)
    t.echo(format_output(data, output_format))
    if status.phase == Phase.ERROR:
        raise t.Exit(1)
    if status.phase == Phase.READY:
        interval = format_duration(source.spec.sync_interval_delta())
        t.echo(f"{status.template_count} templates ready, next fetch in {interval}", err=True)


@cli.command("gc")
def gc_command(
    target_dir: Annotated[Path, t.Argument(help="Target directory of a source")],
    max_versions: Annotated[
        int, t.Option("--max-versions", "-n", help="Number of versions to keep")
    ] = 10,
) -> None:
    """Remove the oldest stored versions of a source. The HEAD version is kept."""
    from arena_templates_sync.gc import gc
    from arena_templates_sync.syncer import read_head_file

    head = read_head_file(target_dir)
    try:
        removed = gc(target_dir, max_versions, protect=[head] if head else [])
    except ArenaError as e:
        t.echo(f"Garbage collection failed: {e}", err=True)
        raise t.Exit(1) from e
    for version in removed:
        t.echo(f"Removed {version}")
    t.echo(f"Removed {len(removed)} versions")


@cli.command("version")
def version_command(
    target_dir: Annotated[Path, t.Argument(help="Target directory of a source")],
) -> None:
    """Print the version HEAD points at."""
    from arena_templates_sync.syncer import read_head_file

    version = read_head_file(target_dir)
    if version is None:
        t.echo(f"No HEAD found in {target_dir}", err=True)
        raise t.Exit(1)
    t.echo(version)


@cli.command("index-show")
def index_show_command(
    index_file: Annotated[Path, t.Argument(help="Template index JSON file")],
    category: Annotated[str, t.Option("--category", "-c", help="Only this category")] = "",
    tags: Annotated[
        list[str] | None, t.Option("--tag", "-t", help="Only templates with any of these tags")
    ] = None,
    query: Annotated[str, t.Option("--search", "-q", help="Substring to search for")] = "",
    output_format: Annotated[
        str,
        t.Option(
            *OUTPUT_FORMAT_CMDS,
            help=OUTPUT_FORMAT_HELP,
            autocompletion=complete_output_formats,
        ),
    ] = "text",
) -> None:
    """List the templates of an index file."""
    from arena_templates.discovery import filter_by_category, filter_by_tags, search_templates
    from arena_templates_sync.index import read_index

    try:
        templates = read_index(index_file)
    except (OSError, anyenv.JsonLoadError, ValidationError) as e:
        t.echo(f"Cannot read index {index_file}: {e}", err=True)
        raise t.Exit(1) from e
    templates = filter_by_category(templates, category)
    templates = filter_by_tags(templates, tags or [])
    templates = search_templates(templates, query)
    if output_format != "text":
        data = [tpl.model_dump(mode="json") for tpl in templates]
        t.echo(format_output(data, output_format))
        return
    if not templates:
        t.echo("No templates found.")
        return
    t.echo("| Name | Version | Category | Description |")
    t.echo("|------|---------|----------|-------------|")
    for tpl in templates:
        t.echo(f"| {tpl.name} | {tpl.version} | {tpl.category} | {tpl.description} |")


if __name__ == "__main__":
    cli()
