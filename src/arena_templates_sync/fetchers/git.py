"""Fetcher for templates stored in a git repository."""

from __future__ import annotations

import asyncio
import base64
from datetime import datetime
import os
from pathlib import Path
import shlex
import shutil
from typing import TYPE_CHECKING

from arena_templates.exceptions import FetchError
from arena_templates.log import get_logger
from arena_templates_config.sources import GitRefConfig, SourceType
from arena_templates_sync.artifacts import FetcherOptions
from arena_templates_sync.fetchers.base import build_artifact, safe_join
from arena_templates_sync.fsutils import copy_directory


if TYPE_CHECKING:
    from arena_templates_sync.artifacts import Artifact
    from arena_templates_sync.credentials import GitCredentials


logger = get_logger(__name__)

SHORT_SHA_LENGTH = 12


class GitError(FetchError):
    """Git operation failed."""


def format_revision(ref: GitRefConfig, commit_sha: str) -> str:
    """``<branch|tag>@sha1:<short sha>``, or ``sha1:<short sha>`` without a named ref."""
    short_sha = commit_sha[:SHORT_SHA_LENGTH]
    if ref.branch:
        return f"{ref.branch}@sha1:{short_sha}"
    if ref.tag:
        return f"{ref.tag}@sha1:{short_sha}"
    return f"sha1:{short_sha}"


def parse_revision(revision: str) -> str:
    """Commit (prefix) from a formatted revision."""
    return revision.rpartition("sha1:")[2]


class GitFetcher:
    """Clones a repository with the git executable."""

    def __init__(
        self,
        url: str,
        ref: GitRefConfig | None = None,
        path: str | None = None,
        credentials: GitCredentials | None = None,
        options: FetcherOptions | None = None,
    ):
        """Initialize the fetcher.

        Args:
            url: Clone URL
            ref: Branch, tag or commit. Defaults to the remote HEAD
            path: Only expose this directory of the repository
            credentials: Basic auth or SSH credentials
            options: Shared fetch options
        """
        self.url = url
        self.ref = ref or GitRefConfig()
        self.path = path.strip("/") if path else None
        self.credentials = credentials
        self.options = options or FetcherOptions()

    @property
    def type(self) -> str:
        return SourceType.VERSION_CONTROL.value

    def _remote_ref(self) -> str:
        if self.ref.branch:
            return f"refs/heads/{self.ref.branch}"
        if self.ref.tag:
            return f"refs/tags/{self.ref.tag}"
        return "HEAD"

    async def latest_revision(self) -> str:
        """Resolve the configured ref on the remote without cloning."""
        if self.ref.commit:
            return format_revision(self.ref, self.ref.commit)
        remote_ref = self._remote_ref()
        async with _GitAuth(self.credentials, self.options) as auth:
            output = await self._run(
                "ls-remote", self.url, remote_ref, f"{remote_ref}^{{}}", auth=auth
            )
        refs: dict[str, str] = {}
        for line in output.splitlines():
            sha, _, name = line.partition("\t")
            refs[name.strip()] = sha.strip()
        # annotated tags resolve to the peeled commit
        sha = refs.get(f"{remote_ref}^{{}}") or refs.get(remote_ref)
        if not sha:
            msg = f"reference {remote_ref} not found in {self.url}"
            raise GitError(msg)
        return format_revision(self.ref, sha)

    async def fetch(self, revision: str) -> Artifact:
        """Check out the repository and copy it (without ``.git``) into an artifact dir."""
        tmp_dir = self.options.make_work_dir("git-fetch-")
        try:
            clone_dir = tmp_dir / "repo"
            async with _GitAuth(self.credentials, self.options) as auth:
                if self.ref.commit:
                    await self._checkout_commit(clone_dir, self.ref.commit, auth)
                else:
                    await self._clone_ref(clone_dir, auth)
            sha = await self._run("-C", str(clone_dir), "rev-parse", "HEAD")
            committed = await self._run("-C", str(clone_dir), "log", "-1", "--format=%cI")
            if revision and not sha.startswith(parse_revision(revision)):
                logger.info("Remote moved since revision check", requested=revision, sha=sha)
            source_dir = self._source_dir(clone_dir)
            output = self.options.make_work_dir("artifact-")
            try:
                await asyncio.to_thread(copy_directory, source_dir, output, (".git",))
            except OSError as e:
                shutil.rmtree(output, ignore_errors=True)
                msg = f"failed to copy repository content: {e}"
                raise FetchError(msg) from e
            artifact = await build_artifact(
                output,
                format_revision(self.ref, sha),
                datetime.fromisoformat(committed) if committed else None,
            )
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
        logger.info("Fetched git repository", url=self.url, revision=artifact.revision)
        return artifact

    async def _clone_ref(self, clone_dir: Path, auth: _GitAuth) -> None:
        args = ["clone", "--depth", "1", "--single-branch"]
        if self.ref.branch:
            args += ["--no-tags", "--branch", self.ref.branch]
        elif self.ref.tag:
            args += ["--branch", self.ref.tag]
        else:
            args.append("--no-tags")
        await self._run(*args, self.url, str(clone_dir), auth=auth)

    async def _checkout_commit(self, clone_dir: Path, commit: str, auth: _GitAuth) -> None:
        await self._run("init", "--quiet", str(clone_dir))
        await self._run("-C", str(clone_dir), "remote", "add", "origin", self.url)
        await self._run("-C", str(clone_dir), "fetch", "--depth", "1", "origin", commit, auth=auth)
        await self._run("-C", str(clone_dir), "checkout", "--quiet", "--detach", "FETCH_HEAD")

    def _source_dir(self, clone_dir: Path) -> Path:
        if not self.path:
            return clone_dir
        source_dir = safe_join(clone_dir, self.path)
        if not source_dir.is_dir():
            msg = f"path {self.path} does not exist in repository"
            raise FetchError(msg)
        return source_dir

    async def _run(self, *args: str, auth: _GitAuth | None = None) -> str:
        """Run a git command and return stdout."""
        cmd = ["git", *(auth.config_args if auth else ()), *args]
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", **(auth.env if auth else {})}
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            msg = "Git executable not found"
            raise GitError(msg) from e
        try:
            stdout, stderr = await proc.communicate()
        except BaseException:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        if proc.returncode != 0:
            msg = f"Git command failed: git {args[0]}: {stderr.decode(errors='replace').strip()}"
            raise GitError(msg)
        return stdout.decode().strip()


class _GitAuth:
    """Per-command git configuration for the given credentials.

    Basic auth is passed as an ``http.extraHeader``, SSH keys through
    ``GIT_SSH_COMMAND`` with temporary key and known_hosts files.
    """

    def __init__(self, credentials: GitCredentials | None, options: FetcherOptions):
        self.credentials = credentials
        self.options = options
        self.config_args: list[str] = []
        self.env: dict[str, str] = {}
        self._tmp_dir: Path | None = None

    async def __aenter__(self) -> _GitAuth:
        creds = self.credentials
        if creds is None:
            return self
        if creds.uses_ssh:
            self._tmp_dir = self.options.make_work_dir("git-ssh-")
            key_file = self._tmp_dir / "identity"
            key_file.write_bytes(creds.private_key)
            key_file.chmod(0o600)
            ssh = ["ssh", "-i", str(key_file), "-o", "IdentitiesOnly=yes", "-o", "BatchMode=yes"]
            if creds.known_hosts:
                hosts_file = self._tmp_dir / "known_hosts"
                hosts_file.write_bytes(creds.known_hosts)
                ssh += ["-o", f"UserKnownHostsFile={hosts_file}", "-o", "StrictHostKeyChecking=yes"]
            self.env["GIT_SSH_COMMAND"] = shlex.join(ssh)
        elif creds.uses_basic_auth:
            token = base64.b64encode(f"{creds.username}:{creds.password}".encode()).decode()
            self.config_args = ["-c", f"http.extraHeader=Authorization: Basic {token}"]
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        if self._tmp_dir is not None:
            shutil.rmtree(self._tmp_dir, ignore_errors=True)
            self._tmp_dir = None
