"""Git CLI orchestration utilities."""

from .runner import FakeGitRunner, GitCommandError, GitExecutionResult, GitRunner
from .utils import sanitize_environment

__all__ = [
    "FakeGitRunner",
    "GitCommandError",
    "GitExecutionResult",
    "GitRunner",
    "sanitize_environment",
]
