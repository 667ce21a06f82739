"""Data models for repositories and worktrees."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal


@dataclass(slots=True, frozen=True)
class WorktreeInfo:
    channel_id: str
    thread_id: str
    repository_name: str
    worktree_path: Path
    repository_path: Path

    def as_dict(self) -> dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "thread_id": self.thread_id,
            "repository_name": self.repository_name,
            "worktree_path": str(self.worktree_path),
            "repository_path": str(self.repository_path),
        }


@dataclass(slots=True)
class WorktreeEntry:
    """One block of ``git worktree list --porcelain`` output."""

    path: Path
    head: str | None = None
    branch: str | None = None
    bare: bool = False
    detached: bool = False


@dataclass(slots=True)
class PullOutcome:
    repository_name: str
    base_branch: str
    restored_branch: str
    output: str

    @property
    def already_up_to_date(self) -> bool:
        return "already up to date" in self.output.lower()


WorkspaceKind = Literal["worktree", "repository", "base"]


@dataclass(slots=True)
class Workspace:
    """Where an agent run should execute for a given conversation."""

    path: Path
    kind: WorkspaceKind
    repository_name: str | None = None
    worktree: WorktreeInfo | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "kind": self.kind,
            "repository_name": self.repository_name,
            "worktree": self.worktree.as_dict() if self.worktree else None,
        }


__all__ = ["PullOutcome", "Workspace", "WorkspaceKind", "WorktreeEntry", "WorktreeInfo"]
