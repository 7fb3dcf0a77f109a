"""Git repository URL rewriting and the git-CLI push transport."""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, urlsplit, urlunsplit

from ..errors import TransportError
from ..shared.logging import get_logger
from .images import crc32

log = get_logger(__name__)

_GIT_URL = re.compile(
    r"^(?P<proto>[a-z]+://)(?P<host_path>.+?)/(?P<repo>[\w\-.]+?)?(?P<git>\.git)?/?"
    r"(?P<at_ref>@(?P<force>\+)?(?P<ref>[/+\w\-.]+))?"
    r"(?P<git_path>/(?:info/.*|git-upload-pack|git-receive-pack))?$"
)


def _match(url: str) -> re.Match[str]:
    match = _GIT_URL.match(url)
    if not match or not match.group("repo"):
        raise ValueError(f"unable to parse git url {url!r}")
    return match


def split_ref(url: str) -> tuple[str, str]:
    """Separate ``https://host/repo.git@ref`` into the plain URL and the ref."""
    m = _match(url)
    plain = f"{m.group('proto')}{m.group('host_path')}/{m.group('repo')}{m.group('git') or ''}"
    return plain, m.group("ref") or ""


def repo_folder_name(url: str) -> str:
    """Directory name of a repository inside a package (distinct per ref)."""
    m = _match(url)
    full = (
        f"{m.group('proto')}{m.group('host_path')}/{m.group('repo')}"
        f"{m.group('git') or ''}{m.group('at_ref') or ''}"
    )
    return f"{m.group('repo')}-{crc32(full)}"


def repo_name(url: str) -> str:
    """Name of the repository on the air-gapped git server.

    Protocol and ``.git`` suffix do not affect the name, so equivalent URLs
    map to the same repository.
    """
    m = _match(url)
    return f"{m.group('repo')}-{crc32(m.group('host_path') + '/' + m.group('repo'))}"


def rewrite_url(target_base_url: str, url: str, push_user: str) -> str:
    """Map a source repository URL onto the air-gapped git server."""
    m = _match(url)
    return f"{target_base_url.rstrip('/')}/{push_user}/{repo_name(url)}{m.group('git') or ''}{m.group('git_path') or ''}"


@dataclass
class GitTarget:
    """Where and as whom repositories are pushed."""

    address: str
    username: str = ""
    password: str = ""


class GitTransport(Protocol):
    """Pushes a local repository to the air-gapped git server."""

    def push(self, repo_dir: Path, source_url: str, target: GitTarget) -> str: ...


def _with_credentials(url: str, username: str, password: str) -> str:
    if not username:
        return url
    parts = urlsplit(url)
    netloc = f"{quote(username, safe='')}:{quote(password, safe='')}@{parts.hostname}"
    if parts.port:
        netloc += f":{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class GitCLITransport:
    """GitTransport that shells out to ``git push``."""

    def __init__(self, binary: str = "git"):
        self.binary = binary

    def _run(self, args: list[str], cwd: Path) -> tuple[bool, str]:
        """Run git in ``cwd``.

        Returns:
            Tuple of (success, message).
        """
        try:
            result = subprocess.run(
                [self.binary, *args],
                capture_output=True,
                text=True,
                cwd=cwd,
            )
        except FileNotFoundError:
            return False, f"{self.binary} not found. Is git installed?"
        if result.returncode != 0:
            return False, result.stderr.strip() or f"{self.binary} {args[0]} failed"
        return True, result.stdout.strip()

    def push(self, repo_dir: Path, source_url: str, target: GitTarget) -> str:
        """Push all branches and tags of ``repo_dir``.

        Returns:
            The rewritten repository URL (without credentials).

        Raises:
            TransportError: If the repository is missing or the push fails.
        """
        if not repo_dir.is_dir():
            raise TransportError(f"repository {source_url} is missing from the package", retryable=False)

        remote = rewrite_url(target.address, source_url, target.username)
        authed = _with_credentials(remote, target.username, target.password)

        log.debug("git.push", source=source_url, target=remote)
        for refspec in ("refs/heads/*:refs/heads/*", "refs/tags/*:refs/tags/*"):
            ok, message = self._run(["push", "--force", authed, refspec], cwd=repo_dir)
            if not ok:
                raise TransportError(f"unable to push {source_url} to {remote}: {message.replace(authed, remote)}")
        return remote
