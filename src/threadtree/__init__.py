"""Chat-driven coding agent orchestration over per-thread git worktrees."""

__version__ = "0.1.0"

__all__ = ["__version__"]
