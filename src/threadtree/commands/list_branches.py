"""``/list-branches``: show which branch each thread worktree in the channel is on."""

from __future__ import annotations

import logging

from ..errors import ThreadtreeError
from .base import BaseCommand, CommandContext, require_repository_channel

logger = logging.getLogger(__name__)


class ListBranchesCommand(BaseCommand):
    name = "list-branches"
    usage = "/list-branches"
    description = "Show the branch of every thread worktree in this channel"

    async def execute(self, context: CommandContext) -> None:
        if await require_repository_channel(context) is None:
            return

        conversation = context.conversation
        worktrees = context.orchestrator.worktrees
        threads = await context.orchestrator.list_threads_for_channel(conversation.channel_id)

        if not threads:
            if conversation.in_thread:
                await context.reply("No worktree yet. One is created when you start working in this thread.")
            else:
                await context.reply("No worktrees yet. Start a thread in this channel to create one.")
            return

        lines = [f"**Worktrees** ({len(threads)} threads)"]
        for info in threads:
            try:
                branch = await worktrees.current_branch(info.channel_id, info.thread_id) or "unknown"
            except ThreadtreeError as exc:
                logger.warning(
                    "Could not read worktree branch",
                    extra={"thread_id": info.thread_id, "error": str(exc)},
                )
                branch = "unknown"
            marker = " <- current" if info.thread_id == conversation.thread_id else ""
            lines.append(f"- thread `{info.thread_id}`: `{branch}`{marker}")
        await context.reply("\n".join(lines))
