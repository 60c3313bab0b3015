"""Credential loading from the secret store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from arena_templates.exceptions import FetchError


class SecretStore(Protocol):
    """Read access to namespaced secrets."""

    async def get_secret(self, namespace: str, name: str) -> dict[str, bytes] | None:
        """Return the secret data, or None if the secret does not exist."""
        ...


@dataclass
class MemorySecretStore:
    """Secret store backed by a dict, keyed by (namespace, name)."""

    secrets: dict[tuple[str, str], dict[str, bytes]] = field(default_factory=dict)

    def put(self, namespace: str, name: str, data: dict[str, str | bytes]) -> None:
        self.secrets[namespace, name] = {
            k: v.encode() if isinstance(v, str) else v for k, v in data.items()
        }

    async def get_secret(self, namespace: str, name: str) -> dict[str, bytes] | None:
        data = self.secrets.get((namespace, name))
        return dict(data) if data is not None else None


@dataclass
class GitCredentials:
    """Credentials for a git remote. Empty fields are not used."""

    username: str = ""
    password: str = ""
    private_key: bytes = b""
    known_hosts: bytes = b""

    @property
    def uses_ssh(self) -> bool:
        return bool(self.private_key)

    @property
    def uses_basic_auth(self) -> bool:
        return bool(self.username or self.password)


@dataclass
class OCICredentials:
    """Credentials for an OCI registry. Empty fields are not used."""

    username: str = ""
    password: str = ""
    docker_config: bytes = b""


async def _load(store: SecretStore, namespace: str, name: str) -> dict[str, bytes]:
    data = await store.get_secret(namespace, name)
    if data is None:
        msg = f"failed to get secret {namespace}/{name}: not found"
        raise FetchError(msg)
    return data


async def load_git_credentials(store: SecretStore, namespace: str, name: str) -> GitCredentials:
    """Read ``username``/``password`` and ``identity``/``known_hosts`` from a secret.

    Raises:
        FetchError: If the secret does not exist
    """
    data = await _load(store, namespace, name)
    return GitCredentials(
        username=data.get("username", b"").decode(),
        password=data.get("password", b"").decode(),
        private_key=data.get("identity", b""),
        known_hosts=data.get("known_hosts", b""),
    )


async def load_oci_credentials(store: SecretStore, namespace: str, name: str) -> OCICredentials:
    """Read ``username``/``password`` and ``.dockerconfigjson`` from a secret.

    Raises:
        FetchError: If the secret does not exist
    """
    data = await _load(store, namespace, name)
    return OCICredentials(
        username=data.get("username", b"").decode(),
        password=data.get("password", b"").decode(),
        docker_config=data.get(".dockerconfigjson", b""),
    )
