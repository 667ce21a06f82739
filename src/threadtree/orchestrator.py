"""Per-message orchestration: workspace resolution, session continuity, agent runs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from .agent import TOOL_RESULT_NAME, AgentResult, ClaudeRunner, StreamCallbacks
from .config import ThreadtreeSettings, get_settings
from .errors import ConfigurationInvalid, RepositoryNotFound
from .sessions import InMemorySessionRegistry, SessionRegistry, ToolActivityTracker, describe_tool_use
from .workspace import Workspace, WorktreeInfo, WorktreeManager

logger = logging.getLogger(__name__)

HISTORY_PREAMBLE = "The following is the earlier conversation in this thread:"


@dataclass(slots=True)
class ChatMessage:
    author: str
    content: str
    created_at: datetime | None = None
    message_id: str | None = None


@dataclass(slots=True)
class ConversationContext:
    """What the chat gateway knows about an inbound message.

    ``channel_id``/``channel_name`` always describe the top-level channel; for a
    message inside a thread they are the thread's parent.
    """

    channel_id: str
    channel_name: str
    thread_id: str | None = None
    message_id: str | None = None
    history: Sequence[ChatMessage] = field(default_factory=tuple)

    @property
    def in_thread(self) -> bool:
        return self.thread_id is not None


@dataclass(slots=True)
class MessageOutcome:
    workspace: Workspace
    result: AgentResult
    resumed_session: str | None = None
    history_included: bool = False
    tool_activity: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "workspace": self.workspace.as_dict(),
            "result": self.result.as_dict(),
            "resumed_session": self.resumed_session,
            "history_included": self.history_included,
            "tool_activity": list(self.tool_activity),
        }


def format_history(
    messages: Sequence[ChatMessage],
    *,
    exclude_message_id: str | None = None,
    max_messages: int = 20,
    max_chars: int = 4000,
) -> str:
    """Render recent thread messages oldest-first as ``author: content`` lines.

    Only the newest ``max_messages`` are considered; rendering stops before
    the message that would push the text past ``max_chars``.
    """

    ordered = sorted(
        (message for message in messages if message.created_at is not None),
        key=lambda message: message.created_at,  # type: ignore[arg-type, return-value]
    ) + [message for message in messages if message.created_at is None]
    recent = ordered[-max_messages:]

    lines: list[str] = []
    total = 0
    for message in recent:
        if exclude_message_id is not None and message.message_id == exclude_message_id:
            continue
        if not message.content or not message.content.strip():
            continue
        line = f"{message.author}: {message.content}\n"
        if total + len(line) > max_chars:
            break
        lines.append(line)
        total += len(line)
    return "".join(lines).strip()


class Orchestrator:
    """Glue between the chat gateway and the core components."""

    def __init__(
        self,
        settings: ThreadtreeSettings | None = None,
        *,
        worktrees: WorktreeManager | None = None,
        runner: ClaudeRunner | None = None,
        sessions: SessionRegistry | None = None,
        tool_activity: ToolActivityTracker | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._worktrees = worktrees or WorktreeManager(self._settings.base_work_dir)
        self._runner = runner or ClaudeRunner(
            Path(self._settings.claude_path) if self._settings.claude_path else None,
            settings_provider=lambda: self._settings,
        )
        self._sessions = sessions if sessions is not None else InMemorySessionRegistry()
        self._tool_activity = tool_activity or ToolActivityTracker()

    @property
    def settings(self) -> ThreadtreeSettings:
        return self._settings

    @property
    def worktrees(self) -> WorktreeManager:
        return self._worktrees

    @property
    def runner(self) -> ClaudeRunner:
        return self._runner

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    @property
    def tool_activity(self) -> ToolActivityTracker:
        return self._tool_activity

    def repository_for_channel(self, channel_name: str) -> str | None:
        prefix = self._settings.repo_channel_prefix
        if channel_name.startswith(prefix) and len(channel_name) > len(prefix):
            return channel_name[len(prefix):]
        return None

    async def setup_workspace(self, context: ConversationContext) -> Workspace:
        """Pick the directory an agent run for this message should use.

        Raises RepositoryNotFound, WorktreeCreationFailed or ConfigurationInvalid.
        """

        repository_name = self.repository_for_channel(context.channel_name)
        if repository_name is None:
            base_dir = self._settings.base_work_dir
            if not base_dir.is_dir():
                raise ConfigurationInvalid(f"Base workspace directory not found: {base_dir}")
            logger.info("Using base workspace", extra={"workspace": str(base_dir)})
            return Workspace(path=base_dir, kind="base")

        if not self._worktrees.repository_exists(repository_name):
            raise RepositoryNotFound(repository_name, self._worktrees.get_repository_path(repository_name))

        if context.thread_id is None:
            repository_path = self._worktrees.get_repository_path(repository_name)
            logger.info("Using main repository checkout", extra={"workspace": str(repository_path)})
            return Workspace(path=repository_path, kind="repository", repository_name=repository_name)

        info = await self._worktrees.create_worktree(
            repository_name, context.channel_id, context.thread_id
        )
        return Workspace(
            path=info.worktree_path,
            kind="worktree",
            repository_name=repository_name,
            worktree=info,
        )

    async def run_agent(
        self,
        prompt: str,
        thread_id: str | None,
        workspace_path: Path,
        callbacks: StreamCallbacks | None = None,
        *,
        abort: asyncio.Event | None = None,
    ) -> AgentResult:
        """Run the agent, resuming the thread's session when one is tracked."""

        session_id = self._sessions.get(thread_id) if thread_id else None
        result = await self._runner.execute(
            prompt,
            session_id,
            callbacks,
            workspace_path,
            abort=abort,
        )
        if thread_id and result.session_id:
            self._sessions.set(thread_id, result.session_id)
        logger.info(
            "Agent run completed",
            extra={
                "thread_id": thread_id,
                "resumed": session_id is not None,
                "session_id": result.session_id,
                "exit_code": result.exit_code,
            },
        )
        return result

    async def handle_message(
        self,
        context: ConversationContext,
        prompt: str,
        callbacks: StreamCallbacks | None = None,
        *,
        abort: asyncio.Event | None = None,
    ) -> MessageOutcome:
        workspace = await self.setup_workspace(context)
        thread_id = context.thread_id
        existing = self._sessions.get(thread_id) if thread_id else None

        final_prompt = prompt
        history_included = False
        if thread_id and existing is None and context.history:
            history = format_history(
                context.history,
                exclude_message_id=context.message_id,
                max_messages=self._settings.history_max_messages,
                max_chars=self._settings.history_max_chars,
            )
            if history:
                final_prompt = f"{HISTORY_PREAMBLE}\n\n{history}\n\n---\n\n{prompt}"
                history_included = True
                logger.info(
                    "Seeded prompt with thread history",
                    extra={"thread_id": thread_id, "history_chars": len(history)},
                )

        result = await self.run_agent(
            final_prompt,
            thread_id,
            workspace.path,
            self._track_tool_activity(thread_id, callbacks),
            abort=abort,
        )
        return MessageOutcome(
            workspace=workspace,
            result=result,
            resumed_session=existing,
            history_included=history_included,
            tool_activity=self._tool_activity.recent(thread_id) if thread_id else [],
        )

    def _track_tool_activity(
        self, thread_id: str | None, callbacks: StreamCallbacks | None
    ) -> StreamCallbacks:
        callbacks = callbacks or StreamCallbacks()
        if thread_id is None:
            return callbacks
        downstream = callbacks.on_tool_use
        tracker = self._tool_activity

        async def on_tool_use(tool_name: str, details: Any) -> None:
            if tool_name != TOOL_RESULT_NAME:
                tracker.record(thread_id, describe_tool_use(tool_name, details))
            if downstream is not None:
                await downstream(tool_name, details)

        return StreamCallbacks(
            on_assistant_message=callbacks.on_assistant_message,
            on_tool_use=on_tool_use,
            on_thinking=callbacks.on_thinking,
            on_update=callbacks.on_update,
        )

    def get_available_repositories(self) -> list[str]:
        return self._worktrees.get_available_repositories()

    async def list_threads_for_channel(self, channel_id: str) -> list[WorktreeInfo]:
        return await self._worktrees.list_channel_worktrees(channel_id)


__all__ = [
    "ChatMessage",
    "ConversationContext",
    "MessageOutcome",
    "Orchestrator",
    "format_history",
]
