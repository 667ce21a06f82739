"""Thread-to-session bookkeeping shared across concurrent message handlers."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol


class SessionRegistry(Protocol):
    """Narrow keyed store binding a conversation thread to an agent session id."""

    def get(self, thread_id: str) -> str | None:
        ...

    def set(self, thread_id: str, session_id: str) -> None:
        ...


@dataclass(slots=True)
class SessionEntry:
    session_id: str
    created_at: datetime
    updated_at: datetime
    runs: int = 1


class InMemorySessionRegistry:
    """Process-lifetime registry; entries are never evicted.

    Every operation touches a single key, so one lock around the dict is all
    the coordination concurrent handlers need.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._entries: dict[str, SessionEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, thread_id: str) -> str | None:
        with self._lock:
            entry = self._entries.get(thread_id)
            return entry.session_id if entry else None

    def set(self, thread_id: str, session_id: str) -> None:
        now = self._clock()
        with self._lock:
            existing = self._entries.get(thread_id)
            if existing is None:
                self._entries[thread_id] = SessionEntry(session_id, created_at=now, updated_at=now)
                return
            existing.session_id = session_id
            existing.updated_at = now
            existing.runs += 1

    def discard(self, thread_id: str) -> str | None:
        with self._lock:
            entry = self._entries.pop(thread_id, None)
            return entry.session_id if entry else None

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                thread_id: {
                    "session_id": entry.session_id,
                    "created_at": entry.created_at.isoformat(),
                    "updated_at": entry.updated_at.isoformat(),
                    "runs": entry.runs,
                }
                for thread_id, entry in self._entries.items()
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, thread_id: object) -> bool:
        with self._lock:
            return thread_id in self._entries


def describe_tool_use(tool_name: str, details: Any) -> str:
    """One-line summary of a tool invocation, e.g. ``Read -> "src/app.py"``."""

    summary = tool_name
    if not isinstance(details, dict):
        return summary
    if details.get("file_path"):
        summary += f' -> "{details["file_path"]}"'
    elif details.get("path"):
        summary += f' -> "{details["path"]}"'
    elif details.get("pattern"):
        summary += f' -> search: "{details["pattern"]}"'
    elif details.get("command"):
        summary += f' -> "{details["command"]}"'
    return summary


class ToolActivityTracker:
    """Keeps the most recent tool summaries per thread."""

    def __init__(self, limit: int = 3) -> None:
        self._limit = limit
        self._activity: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def record(self, thread_id: str, summary: str) -> list[str]:
        with self._lock:
            entries = self._activity.setdefault(thread_id, [])
            entries.append(summary)
            del entries[: -self._limit]
            return list(entries)

    def recent(self, thread_id: str) -> list[str]:
        with self._lock:
            return list(self._activity.get(thread_id, ()))

    def clear(self, thread_id: str) -> None:
        with self._lock:
            self._activity.pop(thread_id, None)


__all__ = [
    "InMemorySessionRegistry",
    "SessionEntry",
    "SessionRegistry",
    "ToolActivityTracker",
    "describe_tool_use",
]
