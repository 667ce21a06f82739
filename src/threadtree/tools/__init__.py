"""Tool registration for the threadtree MCP server."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from fastmcp import Context, FastMCP

from ..agent import StreamCallbacks
from ..commands import CommandHandler
from ..orchestrator import ChatMessage, ConversationContext, Orchestrator
from ..sessions import describe_tool_use

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    setup_workspace: Any
    run_agent: Any
    handle_message: Any
    list_repositories: Any
    list_threads: Any
    run_command: Any
    commands: CommandHandler


def _conversation(
    channel_id: str,
    channel_name: str,
    thread_id: str | None,
    message_id: str | None = None,
    history: list[dict[str, Any]] | None = None,
) -> ConversationContext:
    messages = []
    for item in history or []:
        created_at = item.get("created_at")
        messages.append(
            ChatMessage(
                author=str(item.get("author", "unknown")),
                content=str(item.get("content", "")),
                created_at=datetime.fromisoformat(created_at) if created_at else None,
                message_id=item.get("message_id"),
            )
        )
    return ConversationContext(
        channel_id=channel_id,
        channel_name=channel_name,
        thread_id=thread_id,
        message_id=message_id,
        history=tuple(messages),
    )


def _stream_callbacks(context: Context | None) -> StreamCallbacks:
    """Forward agent progress to the MCP client log as it happens."""

    async def on_assistant_message(text: str) -> None:
        await _emit_log(context, "info", text, extra={"stream": "assistant"})

    async def on_tool_use(tool_name: str, details: Any) -> None:
        await _emit_log(
            context,
            "debug",
            describe_tool_use(tool_name, details),
            extra={"stream": "tool_use", "tool": tool_name},
        )

    async def on_thinking(text: str) -> None:
        await _emit_log(context, "debug", text, extra={"stream": "thinking"})

    async def on_update(text: str) -> None:
        await _emit_log(context, "info", text, extra={"stream": "update"})

    return StreamCallbacks(
        on_assistant_message=on_assistant_message,
        on_tool_use=on_tool_use,
        on_thinking=on_thinking,
        on_update=on_update,
    )


def register_tools(server: FastMCP, *, orchestrator: Orchestrator) -> ToolHandles:
    commands = CommandHandler(orchestrator)

    async def _setup_workspace(
        channel_id: str,
        channel_name: str,
        thread_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Resolve (and create on first use) the working directory for a conversation."""

        workspace = await orchestrator.setup_workspace(
            _conversation(channel_id, channel_name, thread_id)
        )
        await _emit_log(
            context,
            "info",
            "Workspace ready",
            extra={"workspace": str(workspace.path), "kind": workspace.kind},
        )
        return workspace.as_dict()

    async def _run_agent(
        prompt: str,
        workspace_path: str,
        thread_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Run the agent in a directory, resuming the thread's session if one exists."""

        result = await orchestrator.run_agent(
            prompt,
            thread_id,
            Path(workspace_path),
            _stream_callbacks(context),
        )
        await _emit_log(
            context,
            "info" if result.ok else "warning",
            "Agent run finished",
            extra={"exit_code": result.exit_code, "session_id": result.session_id},
        )
        return result.as_dict()

    async def _handle_message(
        channel_id: str,
        channel_name: str,
        prompt: str,
        thread_id: str | None = None,
        message_id: str | None = None,
        history: list[dict[str, Any]] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Full message flow: workspace setup, history seeding and an agent run."""

        conversation = _conversation(channel_id, channel_name, thread_id, message_id, history)
        outcome = await orchestrator.handle_message(
            conversation, prompt, _stream_callbacks(context)
        )
        return outcome.as_dict()

    async def _list_repositories(context: Context | None = None) -> list[str]:
        """List repositories cloned into the workspace."""

        names = orchestrator.get_available_repositories()
        await _emit_log(context, "debug", "Listing repositories", extra={"count": len(names)})
        return names

    async def _list_threads(channel_id: str, context: Context | None = None) -> list[dict[str, Any]]:
        """List thread worktrees that belong to a channel."""

        threads = await orchestrator.list_threads_for_channel(channel_id)
        await _emit_log(
            context,
            "debug",
            "Listing channel worktrees",
            extra={"channel_id": channel_id, "count": len(threads)},
        )
        return [info.as_dict() for info in threads]

    async def _run_command(
        channel_id: str,
        channel_name: str,
        text: str,
        thread_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Execute a slash command such as ``/clone`` or ``/switch -c feature``."""

        replies: list[str] = []

        async def reply(message: str) -> None:
            replies.append(message)

        executed = await commands.handle(
            _conversation(channel_id, channel_name, thread_id), text, reply
        )
        await _emit_log(
            context,
            "info",
            "Command handled",
            extra={"executed": executed, "replies": len(replies)},
        )
        return {"executed": executed, "replies": replies}

    tool_setup = server.tool(
        name="setup_workspace",
        description="Resolve or create the working directory for a channel/thread conversation.",
    )(_setup_workspace)
    tool_run = server.tool(
        name="run_agent",
        description="Run the coding agent in a workspace and return its aggregated result.",
    )(_run_agent)
    tool_handle = server.tool(
        name="handle_message",
        description="Handle a chat message end to end: workspace, history seeding and agent run.",
    )(_handle_message)
    tool_repos = server.tool(
        name="list_repositories",
        description="List repositories available under the workspace repos directory.",
    )(_list_repositories)
    tool_threads = server.tool(
        name="list_threads",
        description="List thread worktrees that exist for a channel.",
    )(_list_threads)
    tool_command = server.tool(
        name="run_command",
        description="Run a slash command (clone, switch, quit, pull, list-repos, list-branches).",
    )(_run_command)

    return ToolHandles(
        setup_workspace=tool_setup,
        run_agent=tool_run,
        handle_message=tool_handle,
        list_repositories=tool_repos,
        list_threads=tool_threads,
        run_command=tool_command,
        commands=commands,
    )


async def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_method = getattr(context, level, None)
        if callable(ctx_method):
            result = ctx_method(message, extra=payload)
            if inspect.isawaitable(result):
                await result
            return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["register_tools", "ToolHandles"]
