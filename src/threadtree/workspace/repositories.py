"""Repository store: named git checkouts under ``<base>/repos``."""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from ..errors import (
    DefaultBranchNotFound,
    InvalidRepositoryName,
    RepositoryAlreadyExists,
    RepositoryCloneFailed,
    RepositoryNotFound,
    RepositoryUpdateFailed,
    classify_failure,
)
from ..git import GitCommandError, GitRunner
from .models import PullOutcome, WorktreeEntry

logger = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
_ORIGIN_HEAD_PREFIX = "refs/remotes/origin/"


def parse_worktree_porcelain(text: str) -> list[WorktreeEntry]:
    """Parse ``git worktree list --porcelain`` into entries."""

    entries: list[WorktreeEntry] = []
    current: WorktreeEntry | None = None
    for line in text.splitlines():
        if not line.strip():
            if current is not None:
                entries.append(current)
                current = None
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            if current is not None:
                entries.append(current)
            current = WorktreeEntry(path=Path(value))
        elif current is None:
            continue
        elif key == "HEAD":
            current.head = value
        elif key == "branch":
            current.branch = value.removeprefix("refs/heads/")
        elif key == "bare":
            current.bare = True
        elif key == "detached":
            current.detached = True
    if current is not None:
        entries.append(current)
    return entries


class RepositoryStore:
    """Filesystem + git wrapper for the repositories directory.

    A repository exists exactly when a directory is present at its derived
    path; there is no separate metadata record.
    """

    def __init__(self, base_dir: Path, *, git: GitRunner | None = None) -> None:
        self._base_dir = Path(base_dir)
        self._repos_dir = self._base_dir / "repos"
        self._git = git or GitRunner()

    @property
    def repos_dir(self) -> Path:
        return self._repos_dir

    @property
    def git(self) -> GitRunner:
        return self._git

    @staticmethod
    def validate_name(name: str) -> str:
        if not _NAME_PATTERN.match(name or ""):
            raise InvalidRepositoryName(
                "Repository names may only contain letters, digits, underscores and hyphens"
            )
        return name

    @staticmethod
    def infer_name(url: str) -> str:
        """Guess a directory name from a clone URL (``.../repo.git`` -> ``repo``)."""

        last = url.rstrip("/").split("/")[-1]
        # scp-style remotes such as git@host:repo.git
        last = last.split(":")[-1]
        return last.removesuffix(".git")

    def path_for(self, name: str) -> Path:
        return self._repos_dir / name

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_dir()

    def list_names(self) -> list[str]:
        if not self._repos_dir.is_dir():
            return []
        return sorted(item.name for item in self._repos_dir.iterdir() if item.is_dir())

    def require(self, name: str) -> Path:
        path = self.path_for(name)
        if not path.is_dir():
            raise RepositoryNotFound(name, path)
        return path

    async def clone(self, url: str, name: str | None = None) -> Path:
        """Clone ``url`` into ``repos/<name>`` and return the new path."""

        directory = name or self.infer_name(url)
        if not directory:
            raise InvalidRepositoryName(
                "Could not infer a repository name from the URL; pass one explicitly"
            )
        self.validate_name(directory)

        target = self.path_for(directory)
        if target.exists():
            raise RepositoryAlreadyExists(f"Directory already exists: {directory}")

        self._repos_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning repository", extra={"url": url, "path": str(target)})
        try:
            await self._git.check("clone", url, directory, cwd=self._repos_dir)
        except GitCommandError as exc:
            self._discard_partial_clone(target)
            raise RepositoryCloneFailed(str(exc), classify_failure(exc)) from exc

        logger.info("Repository cloned", extra={"path": str(target)})
        return target

    @staticmethod
    def _discard_partial_clone(target: Path) -> None:
        if not target.exists():
            return
        try:
            shutil.rmtree(target)
        except OSError as exc:
            logger.warning(
                "Could not clean up failed clone directory",
                extra={"path": str(target), "error": str(exc)},
            )

    async def default_branch(self, name: str) -> str:
        """Resolve the base branch: origin/HEAD, then origin/main, then origin/master."""

        path = self.require(name)
        head = await self._git.run("symbolic-ref", _ORIGIN_HEAD_PREFIX + "HEAD", cwd=path)
        if head.ok and head.stdout.strip():
            return head.stdout.strip().removeprefix(_ORIGIN_HEAD_PREFIX)

        for candidate in ("main", "master"):
            verify = await self._git.run("rev-parse", "--verify", f"origin/{candidate}", cwd=path)
            if verify.ok:
                return candidate

        raise DefaultBranchNotFound(f"No base branch (main/master) found for repository {name}")

    async def branch_exists(self, name: str, branch: str) -> bool:
        result = await self._git.run(
            "show-ref", "--verify", "--quiet", f"refs/heads/{branch}", cwd=self.require(name)
        )
        return result.ok

    async def remote_branch_exists(self, name: str, branch: str) -> bool:
        result = await self._git.run(
            "show-ref", "--verify", "--quiet", f"{_ORIGIN_HEAD_PREFIX}{branch}", cwd=self.require(name)
        )
        return result.ok

    async def current_branch(self, path: Path) -> str:
        result = await self._git.check("branch", "--show-current", cwd=path)
        return result.stdout.strip()

    async def worktree_paths(self, name: str) -> list[WorktreeEntry]:
        result = await self._git.check("worktree", "list", "--porcelain", cwd=self.require(name))
        return parse_worktree_porcelain(result.stdout)

    async def pull_base(self, name: str) -> PullOutcome:
        """Fast-forward the repository's base branch from origin.

        The checkout is returned to whatever branch it was on beforehand.
        """

        path = self.require(name)
        try:
            base = await self.default_branch(name)
        except DefaultBranchNotFound as exc:
            raise RepositoryUpdateFailed(str(exc)) from exc

        try:
            current = await self.current_branch(path)
            logger.info(
                "Pulling base branch",
                extra={"repository": name, "base_branch": base, "current_branch": current},
            )
            await self._git.check("fetch", "origin", cwd=path)
            if current != base:
                await self._git.check("checkout", base, cwd=path)
            pulled = await self._git.check("pull", "origin", base, cwd=path)
            if current and current != base:
                await self._git.check("checkout", current, cwd=path)
        except GitCommandError as exc:
            raise RepositoryUpdateFailed(str(exc)) from exc

        return PullOutcome(
            repository_name=name,
            base_branch=base,
            restored_branch=current or base,
            output=pulled.stdout.strip(),
        )


__all__ = ["RepositoryStore", "parse_worktree_porcelain"]
