"""Selection of the fetcher matching a source spec."""

from __future__ import annotations

from typing import TYPE_CHECKING

from arena_templates.exceptions import ConfigurationError
from arena_templates.log import get_logger
from arena_templates_config.sources import SourceType
from arena_templates_sync.artifacts import FetcherOptions
from arena_templates_sync.credentials import load_git_credentials, load_oci_credentials
from arena_templates_sync.fetchers import ConfigMapFetcher, GitFetcher, OCIFetcher


if TYPE_CHECKING:
    import httpx

    from arena_templates_config.sources import ArenaTemplateSourceSpec
    from arena_templates_sync.credentials import SecretStore
    from arena_templates_sync.fetchers import ConfigStore, Fetcher


logger = get_logger(__name__)


def validate_source_spec(spec: ArenaTemplateSourceSpec) -> SourceType:
    """Check that the spec names a supported type and carries its configuration.

    Performs no I/O.

    Raises:
        ConfigurationError: For unknown types, a missing type specific block
            or malformed durations
    """
    try:
        source_type = SourceType(spec.type)
    except ValueError as e:
        msg = f"unsupported source type: {spec.type!r}"
        raise ConfigurationError(msg) from e
    match source_type:
        case SourceType.VERSION_CONTROL if spec.git is None:
            msg = "git configuration is required for git source type"
            raise ConfigurationError(msg)
        case SourceType.REGISTRY if spec.oci is None:
            msg = "oci configuration is required for oci source type"
            raise ConfigurationError(msg)
        case SourceType.CONFIG_STORE if spec.config_map is None:
            msg = "configMap configuration is required for configmap source type"
            raise ConfigurationError(msg)
    try:
        interval = spec.sync_interval_delta()
        timeout = spec.timeout_delta()
    except ValueError as e:
        msg = f"invalid duration in source spec: {e}"
        raise ConfigurationError(msg) from e
    if interval.total_seconds() <= 0 or timeout.total_seconds() <= 0:
        msg = "syncInterval and timeout must be positive"
        raise ConfigurationError(msg)
    return source_type


class FetcherFactory:
    """Builds fetchers for source specs, loading credentials as needed."""

    def __init__(
        self,
        config_store: ConfigStore,
        secret_store: SecretStore,
        options: FetcherOptions | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the factory.

        Args:
            config_store: Store backing config store sources
            secret_store: Store holding credential secrets
            options: Base options; the timeout is replaced per source
            http_transport: Transport for registry requests
        """
        self.config_store = config_store
        self.secret_store = secret_store
        self.options = options or FetcherOptions()
        self.http_transport = http_transport

    async def create(self, spec: ArenaTemplateSourceSpec, namespace: str) -> Fetcher:
        """Create the fetcher for spec.

        Raises:
            ConfigurationError: If the spec is invalid
            FetchError: If referenced credentials cannot be loaded
        """
        source_type = validate_source_spec(spec)
        logger.debug("Creating fetcher", type=source_type.value, namespace=namespace)
        options = FetcherOptions(timeout=spec.timeout_delta(), work_dir=self.options.work_dir)
        git, oci, config_map = spec.git, spec.oci, spec.config_map
        match source_type:
            case SourceType.VERSION_CONTROL if git is not None:
                git_creds = None
                if git.secret_ref:
                    git_creds = await load_git_credentials(
                        self.secret_store, namespace, git.secret_ref.name
                    )
                return GitFetcher(
                    url=git.url,
                    ref=git.ref,
                    path=git.path,
                    credentials=git_creds,
                    options=options,
                )
            case SourceType.REGISTRY if oci is not None:
                oci_creds = None
                if oci.secret_ref:
                    oci_creds = await load_oci_credentials(
                        self.secret_store, namespace, oci.secret_ref.name
                    )
                return OCIFetcher(
                    url=oci.url,
                    credentials=oci_creds,
                    insecure=oci.insecure,
                    options=options,
                    transport=self.http_transport,
                )
            case SourceType.CONFIG_STORE if config_map is not None:
                return ConfigMapFetcher(
                    self.config_store,
                    namespace,
                    config_map.name,
                    options=options,
                )
            case _:
                msg = f"no configuration block for {source_type.value} source type"
                raise ConfigurationError(msg)
