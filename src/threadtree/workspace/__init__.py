"""Repository store and worktree lifecycle management."""

from .models import PullOutcome, Workspace, WorktreeEntry, WorktreeInfo
from .repositories import RepositoryStore, parse_worktree_porcelain
from .worktrees import WorktreeManager

__all__ = [
    "PullOutcome",
    "RepositoryStore",
    "Workspace",
    "WorktreeEntry",
    "WorktreeInfo",
    "WorktreeManager",
    "parse_worktree_porcelain",
]
