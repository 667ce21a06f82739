"""``/switch [-c] <branch>``: change the branch checked out in the thread's worktree."""

from __future__ import annotations

import re

from ..errors import BranchCheckoutFailed, WorktreeNotFound
from .base import BaseCommand, CommandContext, require_repository_channel, require_thread

_BRANCH_PATTERN = re.compile(r"^[A-Za-z0-9_/-]+$")


class SwitchCommand(BaseCommand):
    name = "switch"
    usage = "/switch [-c] <branch_name>"
    description = "Switch the thread's worktree to another branch (-c creates it)"

    async def execute(self, context: CommandContext) -> None:
        thread_id = await require_thread(context)
        if thread_id is None:
            return
        repository_name = await require_repository_channel(context)
        if repository_name is None:
            return

        conversation = context.conversation
        worktrees = context.orchestrator.worktrees
        if not worktrees.worktree_exists(conversation.channel_id, thread_id):
            await context.reply(
                "This thread has no worktree yet.\n\n"
                "Send a regular message and one will be created automatically."
            )
            return

        args = list(context.args)
        create = bool(args) and args[0] == "-c"
        if create:
            args = args[1:]
        branch = args[0] if args else ""

        if not branch:
            if create:
                await context.reply("Name the new branch.\n\nUsage: `/switch -c <new_branch_name>`")
            else:
                await context.reply(
                    "Name the branch to switch to.\n\n"
                    "Usage: `/switch <branch_name>`\n"
                    "To create a new branch: `/switch -c <new_branch_name>`"
                )
            return

        if not _BRANCH_PATTERN.match(branch):
            await context.reply(
                "Branch names may only contain letters, digits, underscores, hyphens and slashes."
            )
            return

        exists = await worktrees.repositories.branch_exists(repository_name, branch)
        if create and exists:
            await context.reply(f"Branch `{branch}` already exists.")
            return
        if not create and not exists:
            await context.reply(
                f"Branch `{branch}` does not exist.\n\nTo create it: `/switch -c {branch}`"
            )
            return

        try:
            await worktrees.switch_branch(conversation.channel_id, thread_id, branch, create=create)
        except (WorktreeNotFound, BranchCheckoutFailed) as exc:
            await context.reply(f"Failed to switch branch: {exc}")
            return

        if create:
            await context.reply(f"**Created and switched** to new branch `{branch}`.")
        else:
            await context.reply(f"**Switched** to branch `{branch}`.")
