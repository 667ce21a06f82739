"""``/clone <url> [name]``: clone a repository into the workspace."""

from __future__ import annotations

import logging

from ..errors import FailureCategory, InvalidRepositoryName, RepositoryAlreadyExists, RepositoryCloneFailed
from .base import BaseCommand, CommandContext

logger = logging.getLogger(__name__)

_FAILURE_HINTS = {
    FailureCategory.NOT_FOUND: "Repository not found. Check the URL.",
    FailureCategory.PERMISSION: "Access denied. Private repositories need credentials.",
    FailureCategory.NETWORK: "Network error. Check the connection and try again.",
}


class CloneCommand(BaseCommand):
    name = "clone"
    usage = "/clone <repository_url> [directory]"
    description = "Clone a repository into the workspace repos directory"

    async def execute(self, context: CommandContext) -> None:
        if not context.args:
            await context.reply(
                "No repository URL given.\n\n"
                f"Usage: `{self.usage}`\n"
                "Example: `/clone https://github.com/user/repo.git my-repo`"
            )
            return

        url = context.args[0]
        store = context.orchestrator.worktrees.repositories
        name = context.args[1] if len(context.args) > 1 else store.infer_name(url)
        prefix = context.orchestrator.settings.repo_channel_prefix

        try:
            if not name:
                raise InvalidRepositoryName(
                    "Could not infer a repository name from the URL; pass one explicitly"
                )
            store.validate_name(name)
            if store.exists(name):
                raise RepositoryAlreadyExists(f"Directory already exists: {name}")
            await context.reply(f"Cloning `{url}` -> `{name}`...")
            await store.clone(url, name)
        except (InvalidRepositoryName, RepositoryAlreadyExists) as exc:
            await context.reply(str(exc))
            return
        except RepositoryCloneFailed as exc:
            logger.error("Clone failed", extra={"url": url, "error": str(exc)})
            hint = _FAILURE_HINTS.get(exc.category, f"Error: {exc}")
            await context.reply(f"**Clone failed**\n{hint}")
            return

        await context.reply(
            "**Clone complete**\n"
            f"Repository: `{url}`\n"
            f"Directory: `{name}`\n\n"
            f"Next: start a thread in the `{prefix}{name}` channel to begin working."
        )
