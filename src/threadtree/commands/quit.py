"""``/quit``: remove the current thread's worktree."""

from __future__ import annotations

import logging

from ..errors import FailureCategory, ThreadtreeError, classify_failure
from .base import BaseCommand, CommandContext, require_repository_channel, require_thread

logger = logging.getLogger(__name__)


class QuitCommand(BaseCommand):
    name = "quit"
    usage = "/quit"
    description = "Delete this thread's worktree"

    async def execute(self, context: CommandContext) -> None:
        thread_id = await require_thread(context)
        if thread_id is None:
            return
        repository_name = await require_repository_channel(context)
        if repository_name is None:
            return

        channel_id = context.conversation.channel_id
        worktrees = context.orchestrator.worktrees
        if not worktrees.worktree_exists(channel_id, thread_id):
            await context.reply(
                "This thread has no worktree. It was already removed or never created."
            )
            return

        worktree_path = worktrees.get_worktree_path(channel_id, thread_id)
        await context.reply(f"Removing worktree `{worktree_path}`. This cannot be undone.")
        try:
            await worktrees.remove_worktree(repository_name, channel_id, thread_id)
        except ThreadtreeError as exc:
            logger.error("Worktree removal failed", extra={"thread_id": thread_id, "error": str(exc)})
            if classify_failure(exc) is FailureCategory.NOT_FOUND:
                detail = "The worktree could not be found; it may already be gone."
            else:
                detail = f"Error: {exc}"
            await context.reply(f"**Failed to remove worktree**\n{detail}")
            return

        context.orchestrator.tool_activity.clear(thread_id)
        await context.reply(
            "**Worktree removed**\n"
            f"Path: `{worktree_path}`\n\n"
            "The next message in this thread will create a fresh worktree."
        )
