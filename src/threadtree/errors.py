"""Error taxonomy shared by the workspace, agent and orchestration layers."""

from __future__ import annotations

from enum import Enum


class ThreadtreeError(RuntimeError):
    """Base class for all threadtree errors."""


class ConfigurationInvalid(ThreadtreeError):
    """Raised when runtime configuration is missing or malformed."""


class RepositoryNotFound(ThreadtreeError):
    """Raised when a named repository has no checkout under the repos directory."""

    def __init__(self, name: str, path: object | None = None) -> None:
        location = f" in {path}" if path is not None else ""
        super().__init__(f"Repository {name} does not exist{location}")
        self.name = name


class InvalidRepositoryName(ThreadtreeError, ValueError):
    """Raised when a repository name falls outside [A-Za-z0-9_-]."""


class RepositoryAlreadyExists(ThreadtreeError):
    """Raised when cloning into a directory that is already present."""


class RepositoryCloneFailed(ThreadtreeError):
    """Raised when git clone fails."""

    def __init__(self, message: str, category: "FailureCategory") -> None:
        super().__init__(message)
        self.category = category


class RepositoryUpdateFailed(ThreadtreeError):
    """Raised when fetching or pulling a repository fails."""


class DefaultBranchNotFound(ThreadtreeError):
    """Raised when neither origin/HEAD, origin/main nor origin/master resolve."""


class WorktreeNotFound(ThreadtreeError):
    """Raised when an operation needs a worktree that is not on disk."""


class WorktreeCreationFailed(ThreadtreeError):
    """Raised when git worktree add fails."""


class WorktreeRemovalFailed(ThreadtreeError):
    """Raised when git worktree remove fails."""


class BranchCheckoutFailed(ThreadtreeError):
    """Raised when checking out a branch inside a worktree fails."""


class AgentProcessFailed(ThreadtreeError):
    """Raised inside the agent runner when the CLI cannot be spawned or decoded."""


class FailureCategory(str, Enum):
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    NETWORK = "network"
    UNKNOWN = "unknown"


_CATEGORY_MARKERS: tuple[tuple[FailureCategory, tuple[str, ...]], ...] = (
    (FailureCategory.NOT_FOUND, ("not found", "404", "does not exist")),
    (FailureCategory.PERMISSION, ("permission", "authentication", "denied")),
    (FailureCategory.NETWORK, ("network", "connection", "could not resolve")),
)


def classify_failure(message: str | BaseException | None) -> FailureCategory:
    """Best-effort categorization of git/process error text.

    The wrapped tools only expose human-readable messages, so this is a
    heuristic for user-facing wording and never a correctness signal.
    """

    if message is None:
        return FailureCategory.UNKNOWN
    text = str(message).lower()
    for category, markers in _CATEGORY_MARKERS:
        if any(marker in text for marker in markers):
            return category
    return FailureCategory.UNKNOWN


__all__ = [
    "AgentProcessFailed",
    "BranchCheckoutFailed",
    "ConfigurationInvalid",
    "DefaultBranchNotFound",
    "FailureCategory",
    "InvalidRepositoryName",
    "RepositoryAlreadyExists",
    "RepositoryCloneFailed",
    "RepositoryNotFound",
    "RepositoryUpdateFailed",
    "ThreadtreeError",
    "WorktreeCreationFailed",
    "WorktreeNotFound",
    "WorktreeRemovalFailed",
    "classify_failure",
]
