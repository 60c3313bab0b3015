"""Fetcher for templates published as an OCI artifact."""

from __future__ import annotations

import base64
from dataclasses import dataclass
import hashlib
from pathlib import Path, PurePosixPath
import re
import shutil
import tarfile
import tempfile
from typing import TYPE_CHECKING, Any

import anyenv
import httpx

from arena_templates.exceptions import FetchError
from arena_templates.log import get_logger
from arena_templates_config.sources import SourceType
from arena_templates_sync.artifacts import FetcherOptions
from arena_templates_sync.fetchers.base import build_artifact, safe_join


if TYPE_CHECKING:
    from arena_templates_sync.artifacts import Artifact
    from arena_templates_sync.credentials import OCICredentials


logger = get_logger(__name__)

DEFAULT_REGISTRY = "registry-1.docker.io"
DEFAULT_TAG = "latest"
TITLE_ANNOTATION = "org.opencontainers.image.title"
MANIFEST_MEDIA_TYPES = (
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
)
INDEX_MEDIA_TYPES = frozenset(MANIFEST_MEDIA_TYPES[2:])
_AUTH_PARAM = re.compile(r'(\w+)="([^"]*)"')


@dataclass(frozen=True)
class OCIReference:
    """Parsed ``registry/repository(:tag|@digest)``."""

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    @classmethod
    def parse(cls, url: str) -> OCIReference:
        """Parse an artifact URL. The ``oci://`` prefix is optional.

        Raises:
            FetchError: If the URL has no repository
        """
        ref = url.removeprefix("oci://").strip("/")
        digest = None
        if "@" in ref:
            ref, digest = ref.split("@", 1)
        tag = None
        last = ref.rsplit("/", 1)[-1]
        if ":" in last:
            ref, tag = ref.rsplit(":", 1)
        parts = ref.split("/", 1)
        if len(parts) == 1 or not _looks_like_host(parts[0]):
            registry, repository = DEFAULT_REGISTRY, ref
        else:
            registry, repository = parts
        if not repository:
            msg = f"failed to parse OCI reference {url!r}"
            raise FetchError(msg)
        if not tag and not digest:
            tag = DEFAULT_TAG
        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def reference(self) -> str:
        return self.digest or self.tag or DEFAULT_TAG


def _looks_like_host(part: str) -> bool:
    return "." in part or ":" in part or part == "localhost"


def format_revision(ref: OCIReference, digest: str) -> str:
    """``<tag>@<digest>`` for tag references, the bare digest otherwise."""
    if ref.tag and not ref.digest:
        return f"{ref.tag}@{digest}"
    return digest


def parse_revision(revision: str) -> str | None:
    """Manifest digest from a formatted revision."""
    digest = revision.rpartition("@")[2]
    return digest if digest.startswith("sha256:") else None


class OCIFetcher:
    """Pulls artifact layers via the OCI distribution API."""

    def __init__(
        self,
        url: str,
        credentials: OCICredentials | None = None,
        insecure: bool = False,
        options: FetcherOptions | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the fetcher.

        Args:
            url: Artifact reference, ``oci://registry/repository(:tag|@digest)``
            credentials: Basic auth or docker config credentials
            insecure: Use plain HTTP
            options: Shared fetch options
            transport: Custom httpx transport
        """
        self.url = url
        self.ref = OCIReference.parse(url)
        self.credentials = credentials
        self.insecure = insecure
        self.options = options or FetcherOptions()
        self._transport = transport
        self._token: str | None = None

    @property
    def type(self) -> str:
        return SourceType.REGISTRY.value

    @property
    def base_url(self) -> str:
        scheme = "http" if self.insecure else "https"
        return f"{scheme}://{self.ref.registry}/v2/{self.ref.repository}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.options.timeout.total_seconds(),
            follow_redirects=True,
        )

    async def latest_revision(self) -> str:
        """Digest of the manifest the reference points at."""
        async with self._client() as client:
            response = await self._request(
                client,
                "HEAD",
                f"/manifests/{self.ref.reference}",
                headers={"Accept": ", ".join(MANIFEST_MEDIA_TYPES)},
            )
            digest = response.headers.get("Docker-Content-Digest")
            if not digest:
                response = await self._request(
                    client,
                    "GET",
                    f"/manifests/{self.ref.reference}",
                    headers={"Accept": ", ".join(MANIFEST_MEDIA_TYPES)},
                )
                digest = f"sha256:{hashlib.sha256(response.content).hexdigest()}"
        return format_revision(self.ref, digest)

    async def fetch(self, revision: str) -> Artifact:
        """Download and extract all layers of the manifest."""
        reference = parse_revision(revision) or self.ref.reference
        output = self.options.make_work_dir("artifact-")
        try:
            async with self._client() as client:
                manifest, digest = await self._get_manifest(client, reference)
                for layer in manifest.get("layers") or []:
                    await self._pull_layer(client, layer, output)
        except httpx.HTTPError as e:
            shutil.rmtree(output, ignore_errors=True)
            msg = f"failed to pull {self.url}: {e}"
            raise FetchError(msg) from e
        except BaseException:
            shutil.rmtree(output, ignore_errors=True)
            raise
        artifact = await build_artifact(output, format_revision(self.ref, digest))
        logger.info("Fetched OCI artifact", url=self.url, revision=artifact.revision)
        return artifact

    async def _get_manifest(
        self,
        client: httpx.AsyncClient,
        reference: str,
    ) -> tuple[dict[str, Any], str]:
        headers = {"Accept": ", ".join(MANIFEST_MEDIA_TYPES)}
        response = await self._request(client, "GET", f"/manifests/{reference}", headers=headers)
        digest = response.headers.get("Docker-Content-Digest") or (
            f"sha256:{hashlib.sha256(response.content).hexdigest()}"
        )
        try:
            manifest = anyenv.load_json(response.text)
        except anyenv.JsonLoadError as e:
            msg = f"invalid manifest for {self.url}: {e}"
            raise FetchError(msg) from e
        media_type = manifest.get("mediaType") or response.headers.get("Content-Type", "")
        if media_type in INDEX_MEDIA_TYPES or "manifests" in manifest:
            entries = manifest.get("manifests") or []
            if not entries:
                msg = f"image index of {self.url} lists no manifests"
                raise FetchError(msg)
            child = entries[0]["digest"]
            response = await self._request(client, "GET", f"/manifests/{child}", headers=headers)
            manifest = anyenv.load_json(response.text)
        return manifest, digest

    async def _pull_layer(
        self,
        client: httpx.AsyncClient,
        layer: dict[str, Any],
        output: Path,
    ) -> None:
        digest = layer["digest"]
        media_type: str = layer.get("mediaType", "")
        title = (layer.get("annotations") or {}).get(TITLE_ANNOTATION)
        with tempfile.TemporaryFile(dir=self.options.work_dir) as blob:
            hasher = hashlib.sha256()
            request = client.build_request("GET", f"{self.base_url}/blobs/{digest}")
            response = await self._send(client, request, stream=True)
            try:
                async for chunk in response.aiter_bytes():
                    hasher.update(chunk)
                    blob.write(chunk)
            finally:
                await response.aclose()
            if digest.startswith("sha256:") and hasher.hexdigest() != digest[7:]:
                msg = f"digest mismatch for layer {digest}"
                raise FetchError(msg)
            blob.seek(0)
            if "tar" in media_type or not title:
                _extract_tar(blob, output)
            else:
                target = safe_join(output, PurePosixPath(title).as_posix())
                target.parent.mkdir(parents=True, exist_ok=True)
                with target.open("wb") as f:
                    shutil.copyfileobj(blob, f)

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        request = client.build_request(method, f"{self.base_url}{path}", headers=headers)
        return await self._send(client, request)

    async def _send(
        self,
        client: httpx.AsyncClient,
        request: httpx.Request,
        stream: bool = False,
    ) -> httpx.Response:
        """Send a request, answering one authentication challenge."""
        self._authorize(request)
        response = await client.send(request, stream=stream)
        if response.status_code == 401:  # noqa: PLR2004
            challenge = response.headers.get("WWW-Authenticate", "")
            await response.aclose()
            await self._authenticate(client, challenge)
            self._authorize(request)
            response = await client.send(request, stream=stream)
        if response.is_error:
            if stream:
                await response.aread()
            msg = f"registry returned HTTP {response.status_code} for {request.url}"
            raise FetchError(msg)
        return response

    def _authorize(self, request: httpx.Request) -> None:
        if self._token:
            request.headers["Authorization"] = f"Bearer {self._token}"
        elif basic := self._basic_auth():
            request.headers["Authorization"] = f"Basic {basic}"

    def _basic_auth(self) -> str | None:
        """Base64 ``user:password`` from the credentials, if any."""
        creds = self.credentials
        if creds is None:
            return None
        if creds.username or creds.password:
            return base64.b64encode(f"{creds.username}:{creds.password}".encode()).decode()
        if creds.docker_config:
            return docker_config_auth(creds.docker_config, self.ref.registry)
        return None

    async def _authenticate(self, client: httpx.AsyncClient, challenge: str) -> None:
        scheme, _, params_text = challenge.partition(" ")
        if scheme.lower() != "bearer":
            msg = f"registry {self.ref.registry} rejected the credentials"
            raise FetchError(msg)
        params = dict(_AUTH_PARAM.findall(params_text))
        realm = params.pop("realm", None)
        if not realm:
            msg = f"registry {self.ref.registry} sent a bearer challenge without realm"
            raise FetchError(msg)
        params.setdefault("scope", f"repository:{self.ref.repository}:pull")
        headers = {}
        if basic := self._basic_auth():
            headers["Authorization"] = f"Basic {basic}"
        response = await client.get(realm, params=params, headers=headers)
        if response.is_error:
            msg = f"token request to {realm} failed with HTTP {response.status_code}"
            raise FetchError(msg)
        data = anyenv.load_json(response.text)
        token = data.get("token") or data.get("access_token")
        if not token:
            msg = f"token response from {realm} contained no token"
            raise FetchError(msg)
        self._token = token


def docker_config_auth(docker_config: bytes, registry: str) -> str | None:
    """Base64 ``user:password`` for registry from a ``.dockerconfigjson`` blob."""
    try:
        config = anyenv.load_json(docker_config.decode())
    except (anyenv.JsonLoadError, UnicodeDecodeError) as e:
        msg = f"invalid docker config: {e}"
        raise FetchError(msg) from e
    auths: dict[str, Any] = config.get("auths") or {}
    for host, entry in auths.items():
        host_name = host.removeprefix("https://").removeprefix("http://").split("/")[0]
        if host_name != registry:
            continue
        if entry.get("auth"):
            return str(entry["auth"])
        if entry.get("username") or entry.get("password"):
            userpass = f"{entry.get('username', '')}:{entry.get('password', '')}"
            return base64.b64encode(userpass.encode()).decode()
    return None


def _extract_tar(fileobj: Any, output: Path) -> None:
    """Extract a (gzipped) tar stream, rejecting entries that leave output."""
    try:
        with tarfile.open(fileobj=fileobj, mode="r:*") as tar:
            members = [m for m in tar.getmembers() if not Path(m.name).name.startswith("._")]
            tar.extractall(output, members=members, filter="data")
    except tarfile.TarError as e:
        msg = f"failed to extract layer: {e}"
        raise FetchError(msg) from e
