"""Ephemeral git working copies of the GitOps repository.

A working copy is a shallow clone in a fresh temporary directory, owned by a
single reconciliation call and removed when the `clone` context exits. Commands
that talk to the remote (clone, fetch, ls-remote, push) run as subprocesses
with credentials supplied through `GIT_ASKPASS` so that they never appear on a
command line or in the remote URL. Local operations use GitPython.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
import os
from pathlib import Path
import shutil
import stat
import tempfile

import aiofiles
import aiofiles.os
from aiofiles.ospath import exists, isdir
import git
from slugify import slugify

from . import command
from .credentials import Credentials
from .exceptions import GitException, PathEscapeError
from .metrics import Metrics
from .sanitize import sanitize, sanitize_error

__all__ = [
    "WorkingCopy",
    "clone",
]

_LOGGER = logging.getLogger(__name__)

GIT_BIN = "git"
REMOTE = "origin"
REPO_DIR = "repo"
ASKPASS_FILE = "askpass.sh"
YAML_SUFFIX = ".yaml"

_ASKPASS_SCRIPT = """#!/bin/sh
case "$1" in
  Username*) printf '%s\\n' "$GIT_HTTP_USER" ;;
  *) printf '%s\\n' "$GIT_HTTP_PASSWORD" ;;
esac
"""


def git_env(credentials: Credentials, askpass: Path, tls_verify: bool) -> dict[str, str]:
    """Return the environment for git commands that contact the remote."""
    env = {
        "GIT_HTTP_USER": credentials.username,
        "GIT_HTTP_PASSWORD": credentials.token,
        "GIT_ASKPASS": str(askpass),
        "GIT_TERMINAL_PROMPT": "0",
    }
    if not tls_verify:
        env["GIT_SSL_NO_VERIFY"] = "true"
    return env


class WorkingCopy:
    """A cloned repository with file primitives scoped to its root."""

    def __init__(
        self,
        repo: git.Repo,
        credentials: Credentials,
        env: dict[str, str],
        metrics: Metrics | None = None,
    ) -> None:
        """Initialize WorkingCopy."""
        self._repo = repo
        self._credentials = credentials
        self._env = env
        self._metrics = metrics
        self._root = Path(repo.working_tree_dir).resolve()

    @property
    def root(self) -> Path:
        """Return the root directory of the working copy."""
        return self._root

    def resolve(self, rel_path: str) -> Path:
        """Return the absolute path for a repository path, refusing to escape the root."""
        full = (self._root / rel_path).resolve()
        if full != self._root and not full.is_relative_to(self._root):
            raise PathEscapeError(f"Path '{rel_path}' is outside of the working copy")
        return full

    async def read_file(self, rel_path: str) -> str:
        """Read a file from the working copy."""
        async with aiofiles.open(self.resolve(rel_path), encoding="utf-8") as f:
            return await f.read()

    async def write_file(self, rel_path: str, content: str) -> None:
        """Write a file, creating parent directories as needed."""
        full = self.resolve(rel_path)
        await aiofiles.os.makedirs(full.parent, exist_ok=True)
        async with aiofiles.open(full, "w", encoding="utf-8") as f:
            await f.write(content)

    async def exists(self, rel_path: str) -> bool:
        """Return true if the path exists in the working copy."""
        return await exists(self.resolve(rel_path))

    async def list_yaml_files(self, rel_dir: str) -> list[str]:
        """Return the sorted names of the YAML files directly in a directory."""
        full = self.resolve(rel_dir)
        if not await isdir(full):
            return []
        names = await aiofiles.os.listdir(full)
        return sorted(
            name
            for name in names
            if name.endswith(YAML_SUFFIX) and (full / name).is_file()
        )

    async def remove_file(self, rel_path: str) -> bool:
        """Remove a file, returning false if it did not exist."""
        full = self.resolve(rel_path)
        if not await exists(full):
            return False
        await aiofiles.os.remove(full)
        return True

    async def remove_empty_dir(self, rel_dir: str) -> bool:
        """Remove a directory if it exists and is empty."""
        full = self.resolve(rel_dir)
        if not await isdir(full) or await aiofiles.os.listdir(full):
            return False
        await aiofiles.os.rmdir(full)
        return True

    def current_branch(self) -> str | None:
        """Return the checked out branch, or None on a detached HEAD."""
        try:
            return self._repo.active_branch.name
        except TypeError:
            return None

    def checkout_branch(self, branch: str, create: bool = False) -> None:
        """Check out a branch, optionally creating it from the current HEAD."""
        if self.current_branch() == branch:
            _LOGGER.debug("Already on branch %s", branch)
            return
        local = {head.name for head in self._repo.heads}
        try:
            if branch in local or not create:
                self._repo.git.checkout(branch)
            else:
                self._repo.git.checkout("-b", branch)
        except git.exc.GitCommandError as err:
            raise GitException(
                sanitize(f"Failed to checkout branch {branch}: {err}", self._credentials)
            ) from None

    async def _run(self, *args: str) -> str:
        return await command.run(
            command.Command(
                [GIT_BIN, *args], cwd=self._root, exc=GitException, env=self._env
            )
        )

    async def reset_to_base(self, base_branch: str) -> None:
        """Move to the latest remote base branch, tolerating missing refs."""
        try:
            await self._run("fetch", "--depth", "1", REMOTE, base_branch)
        except GitException as err:
            _LOGGER.debug(
                "Fetching %s failed, continuing: %s",
                base_branch,
                sanitize(str(err), self._credentials),
            )
        try:
            self._repo.git.checkout("-B", base_branch, f"{REMOTE}/{base_branch}")
        except git.exc.GitCommandError as err:
            _LOGGER.debug(
                "Reset to %s failed, continuing: %s",
                base_branch,
                sanitize(str(err), self._credentials),
            )

    async def _remote_branch_exists(self, branch: str) -> bool:
        try:
            out = await self._run("ls-remote", "--heads", REMOTE, branch)
        except GitException:
            return False
        return bool(out.strip())

    async def commit_and_push(self, branch: str, message: str) -> bool:
        """Stage everything, commit and push the branch.

        Returns false without committing when the working tree has no changes.
        An existing remote branch is overwritten with a force push.
        """
        try:
            self._repo.git.add("-A")
            if not self._repo.git.status("--porcelain").strip():
                _LOGGER.debug("No changes to commit on %s", branch)
                return False
            actor = git.Actor(self._credentials.username, self._credentials.email)
            self._repo.index.commit(message, author=actor, committer=actor)
        except (git.exc.GitCommandError, OSError) as err:
            raise GitException(
                sanitize(f"Failed to commit to branch {branch}: {err}", self._credentials)
            ) from None

        try:
            await self._run("fetch", REMOTE)
        except GitException as err:
            _LOGGER.debug(
                "Fetch before push failed, continuing: %s",
                sanitize(str(err), self._credentials),
            )
        try:
            if await self._remote_branch_exists(branch):
                _LOGGER.debug("Branch %s exists on the remote, force pushing", branch)
                try:
                    await self._run("fetch", REMOTE, branch)
                except GitException as err:
                    _LOGGER.debug(
                        "Fetching %s failed, continuing: %s",
                        branch,
                        sanitize(str(err), self._credentials),
                    )
                await self._run("push", "--force", REMOTE, f"HEAD:refs/heads/{branch}")
            else:
                await self._run("push", "-u", REMOTE, branch)
        except GitException as err:
            if self._metrics:
                self._metrics.git_operation("push", False)
            raise sanitize_error(err, self._credentials) from None
        if self._metrics:
            self._metrics.git_operation("push", True)
        _LOGGER.info("Pushed changes to remote branch %s", branch)
        return True


@asynccontextmanager
async def clone(
    url: str,
    credentials: Credentials,
    tls_verify: bool = True,
    metrics: Metrics | None = None,
    name: str = "",
) -> AsyncIterator[WorkingCopy]:
    """Clone the repository into a temporary directory removed on exit.

    The clone is shallow but fetches all branch heads.
    """
    root = Path(tempfile.mkdtemp(prefix=f"netpol-gitops-{slugify(name, max_length=40)}-"))
    try:
        askpass = root / ASKPASS_FILE
        askpass.write_text(_ASKPASS_SCRIPT)
        os.chmod(askpass, stat.S_IRWXU)
        env = git_env(credentials, askpass, tls_verify)
        repo_dir = root / REPO_DIR
        _LOGGER.debug("Cloning %s into %s", sanitize(url, credentials), repo_dir)
        try:
            await command.run(
                command.Command(
                    [
                        GIT_BIN,
                        "clone",
                        "--depth",
                        "1",
                        "--no-single-branch",
                        url,
                        str(repo_dir),
                    ],
                    exc=GitException,
                    env=env,
                )
            )
        except GitException as err:
            if metrics:
                metrics.git_operation("clone", False)
            raise sanitize_error(err, credentials) from None
        if metrics:
            metrics.git_operation("clone", True)
        with git.Repo(repo_dir) as repo:
            yield WorkingCopy(repo, credentials, env, metrics)
    finally:
        shutil.rmtree(root, ignore_errors=True)
