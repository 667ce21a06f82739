"""``/pull``: update the channel repository's base branch from origin."""

from __future__ import annotations

from ..errors import RepositoryUpdateFailed
from .base import BaseCommand, CommandContext, require_repository_channel


class PullCommand(BaseCommand):
    name = "pull"
    usage = "/pull"
    description = "Pull the latest base branch for this channel's repository"

    async def execute(self, context: CommandContext) -> None:
        repository_name = await require_repository_channel(context)
        if repository_name is None:
            return

        await context.reply(f"Pulling `{repository_name}`...")
        try:
            outcome = await context.orchestrator.worktrees.repositories.pull_base(repository_name)
        except RepositoryUpdateFailed as exc:
            await context.reply(f"**git pull failed:**\n```\n{exc}\n```")
            return

        lines = [
            "**Pull complete**",
            f"Repository: `{outcome.repository_name}`",
            f"Base branch: `{outcome.base_branch}`",
            f"Restored branch: `{outcome.restored_branch}`",
            "",
        ]
        if outcome.already_up_to_date:
            lines.append("Already up to date.")
        else:
            lines.append(f"```\n{outcome.output}\n```")
        await context.reply("\n".join(lines))
