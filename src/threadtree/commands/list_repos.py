"""``/list-repos``: show cloned repositories."""

from __future__ import annotations

from .base import BaseCommand, CommandContext


class ListReposCommand(BaseCommand):
    name = "list-repos"
    usage = "/list-repos"
    description = "List cloned repositories"

    async def execute(self, context: CommandContext) -> None:
        repositories = context.orchestrator.get_available_repositories()
        prefix = context.orchestrator.settings.repo_channel_prefix
        if not repositories:
            await context.reply(
                "**Repositories**\n\nNothing cloned yet.\n\n"
                "Use `/clone <repository_url> [directory]` to add one."
            )
            return

        listing = "\n".join(f"- `{name}`" for name in repositories)
        await context.reply(
            f"**Repositories** ({len(repositories)})\n\n{listing}\n\n"
            f"Start a thread in a `{prefix}<name>` channel to work on one."
        )
