"""Worktree lifecycle: per-(channel, thread) git working trees under ``<base>/trees``."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ..errors import (
    BranchCheckoutFailed,
    DefaultBranchNotFound,
    RepositoryNotFound,
    WorktreeCreationFailed,
    WorktreeNotFound,
    WorktreeRemovalFailed,
)
from ..git import GitCommandError, GitRunner
from .models import WorktreeInfo
from .repositories import RepositoryStore

logger = logging.getLogger(__name__)


class WorktreeManager:
    """Create, locate and destroy worktrees keyed by ``(channel_id, thread_id)``.

    Nothing is persisted beyond the filesystem: a worktree exists exactly when
    its derived directory does, so a restarted process sees the same state.
    """

    def __init__(
        self,
        base_dir: Path,
        *,
        git: GitRunner | None = None,
        repositories: RepositoryStore | None = None,
    ) -> None:
        self._base_dir = Path(base_dir)
        self._trees_dir = self._base_dir / "trees"
        self._repositories = repositories or RepositoryStore(self._base_dir, git=git)
        self._git = self._repositories.git
        self._creation_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_waiters: dict[tuple[str, str], int] = {}
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for directory in (self._repositories.repos_dir, self._trees_dir):
            if not directory.exists():
                directory.mkdir(parents=True, exist_ok=True)
                logger.info("Created workspace directory", extra={"path": str(directory)})

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def trees_dir(self) -> Path:
        return self._trees_dir

    @property
    def repositories(self) -> RepositoryStore:
        return self._repositories

    def get_repository_path(self, repository_name: str) -> Path:
        return self._repositories.path_for(repository_name)

    def get_worktree_path(self, channel_id: str, thread_id: str) -> Path:
        return self._trees_dir / channel_id / thread_id

    def repository_exists(self, repository_name: str) -> bool:
        return self._repositories.exists(repository_name)

    def worktree_exists(self, channel_id: str, thread_id: str) -> bool:
        return self.get_worktree_path(channel_id, thread_id).is_dir()

    def get_available_repositories(self) -> list[str]:
        return self._repositories.list_names()

    def _info(self, repository_name: str, channel_id: str, thread_id: str) -> WorktreeInfo:
        return WorktreeInfo(
            channel_id=channel_id,
            thread_id=thread_id,
            repository_name=repository_name,
            worktree_path=self.get_worktree_path(channel_id, thread_id),
            repository_path=self.get_repository_path(repository_name),
        )

    def get_worktree_info(
        self, repository_name: str, channel_id: str, thread_id: str
    ) -> WorktreeInfo | None:
        if not self.worktree_exists(channel_id, thread_id):
            return None
        return self._info(repository_name, channel_id, thread_id)

    async def create_worktree(
        self,
        repository_name: str,
        channel_id: str,
        thread_id: str,
        branch: str | None = None,
    ) -> WorktreeInfo:
        """Return the worktree for the key, creating it on first use."""

        if self.worktree_exists(channel_id, thread_id):
            return self._info(repository_name, channel_id, thread_id)

        key = (channel_id, thread_id)
        lock = self._creation_locks.setdefault(key, asyncio.Lock())
        self._lock_waiters[key] = self._lock_waiters.get(key, 0) + 1
        try:
            async with lock:
                # A concurrent caller may have finished creation while we waited.
                if self.worktree_exists(channel_id, thread_id):
                    logger.info(
                        "Worktree already exists, reusing",
                        extra={"channel_id": channel_id, "thread_id": thread_id},
                    )
                    return self._info(repository_name, channel_id, thread_id)
                return await self._create_locked(repository_name, channel_id, thread_id, branch)
        finally:
            self._release_lock(key)

    def _release_lock(self, key: tuple[str, str]) -> None:
        remaining = self._lock_waiters[key] - 1
        if remaining:
            self._lock_waiters[key] = remaining
        else:
            del self._lock_waiters[key]
            del self._creation_locks[key]

    async def _create_locked(
        self,
        repository_name: str,
        channel_id: str,
        thread_id: str,
        branch: str | None,
    ) -> WorktreeInfo:
        repository_path = self.get_repository_path(repository_name)
        if not self.repository_exists(repository_name):
            raise RepositoryNotFound(repository_name, repository_path)

        worktree_path = self.get_worktree_path(channel_id, thread_id)
        branch = branch or thread_id

        try:
            worktree_path.parent.mkdir(parents=True, exist_ok=True)
            args = await self._worktree_add_args(repository_name, branch, worktree_path)
            logger.info(
                "Creating worktree",
                extra={
                    "repository": repository_name,
                    "branch": branch,
                    "worktree_path": str(worktree_path),
                },
            )
            await self._git.check(*args, cwd=repository_path)
        except (GitCommandError, DefaultBranchNotFound, OSError) as exc:
            logger.error(
                "Worktree creation failed",
                extra={"worktree_path": str(worktree_path), "error": str(exc)},
            )
            raise WorktreeCreationFailed(f"Failed to create worktree: {exc}") from exc

        return self._info(repository_name, channel_id, thread_id)

    async def _worktree_add_args(
        self, repository_name: str, branch: str, worktree_path: Path
    ) -> tuple[str, ...]:
        store = self._repositories
        if await store.branch_exists(repository_name, branch):
            return ("worktree", "add", str(worktree_path), branch)
        if await store.remote_branch_exists(repository_name, branch):
            return ("worktree", "add", "--track", "-b", branch, str(worktree_path), f"origin/{branch}")

        base = await store.default_branch(repository_name)
        start_point = base if await store.branch_exists(repository_name, base) else f"origin/{base}"
        return ("worktree", "add", "-b", branch, str(worktree_path), start_point)

    async def remove_worktree(
        self,
        repository_name: str,
        channel_id: str,
        thread_id: str,
        *,
        force: bool = False,
    ) -> None:
        """Remove the worktree if present; absent worktrees are a no-op."""

        worktree_path = self.get_worktree_path(channel_id, thread_id)
        if not self.worktree_exists(channel_id, thread_id):
            logger.info("Worktree does not exist", extra={"worktree_path": str(worktree_path)})
            return

        repository_path = self.get_repository_path(repository_name)
        if not self.repository_exists(repository_name):
            raise RepositoryNotFound(repository_name, repository_path)

        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(worktree_path))
        logger.info("Removing worktree", extra={"worktree_path": str(worktree_path)})
        try:
            await self._git.check(*args, cwd=repository_path)
        except GitCommandError as exc:
            raise WorktreeRemovalFailed(f"Failed to remove worktree: {exc}") from exc

        prune = await self._git.run("worktree", "prune", cwd=repository_path)
        if not prune.ok:
            logger.warning(
                "git worktree prune failed",
                extra={"repository": repository_name, "error": prune.message},
            )
        self._prune_empty_parent(worktree_path.parent)

    @staticmethod
    def _prune_empty_parent(parent: Path) -> None:
        try:
            if parent.is_dir() and not any(parent.iterdir()):
                parent.rmdir()
        except OSError as exc:
            logger.warning(
                "Could not remove parent directory",
                extra={"path": str(parent), "error": str(exc)},
            )

    async def list_channel_worktrees(self, channel_id: str) -> list[WorktreeInfo]:
        """Enumerate worktrees under a channel and attribute each to its repository."""

        channel_dir = self._trees_dir / channel_id
        if not channel_dir.is_dir():
            return []

        registries: dict[str, set[Path]] = {}
        for repository_name in self._repositories.list_names():
            try:
                entries = await self._repositories.worktree_paths(repository_name)
            except GitCommandError as exc:
                logger.warning(
                    "Could not list worktrees",
                    extra={"repository": repository_name, "error": str(exc)},
                )
                continue
            registries[repository_name] = {entry.path.resolve() for entry in entries}

        try:
            thread_dirs = sorted(channel_dir.iterdir())
        except OSError as exc:
            logger.warning(
                "Could not read channel directory",
                extra={"path": str(channel_dir), "error": str(exc)},
            )
            return []

        worktrees: list[WorktreeInfo] = []
        for thread_dir in thread_dirs:
            if not thread_dir.is_dir():
                continue
            resolved = thread_dir.resolve()
            owner = next(
                (name for name, paths in registries.items() if resolved in paths),
                None,
            )
            if owner is None:
                logger.warning(
                    "Worktree directory not registered with any repository",
                    extra={"worktree_path": str(thread_dir)},
                )
                continue
            worktrees.append(self._info(owner, channel_id, thread_dir.name))
        return worktrees

    async def current_branch(self, channel_id: str, thread_id: str) -> str:
        worktree_path = self.get_worktree_path(channel_id, thread_id)
        if not worktree_path.is_dir():
            raise WorktreeNotFound(f"Worktree does not exist: {worktree_path}")
        return await self._repositories.current_branch(worktree_path)

    async def switch_branch(
        self,
        channel_id: str,
        thread_id: str,
        branch: str,
        *,
        create: bool = False,
    ) -> None:
        worktree_path = self.get_worktree_path(channel_id, thread_id)
        if not worktree_path.is_dir():
            raise WorktreeNotFound(f"Worktree does not exist: {worktree_path}")

        args = ("checkout", "-b", branch) if create else ("checkout", branch)
        logger.info(
            "Switching branch",
            extra={"worktree_path": str(worktree_path), "branch": branch, "create": create},
        )
        try:
            await self._git.check(*args, cwd=worktree_path)
        except GitCommandError as exc:
            raise BranchCheckoutFailed(f"Failed to switch to branch {branch}: {exc}") from exc


__all__ = ["WorktreeManager"]
