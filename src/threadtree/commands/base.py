"""Shared plumbing for slash commands."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from ..orchestrator import ConversationContext, Orchestrator

Reply = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class CommandContext:
    conversation: "ConversationContext"
    orchestrator: "Orchestrator"
    reply: Reply
    args: list[str] = field(default_factory=list)
    command_name: str = ""

    @property
    def repository_name(self) -> str | None:
        """Repository bound to the conversation's channel, if any."""

        return self.orchestrator.repository_for_channel(self.conversation.channel_name)


class BaseCommand(abc.ABC):
    name: str = ""
    usage: str = ""
    description: str = ""

    @abc.abstractmethod
    async def execute(self, context: CommandContext) -> None:
        ...

    def help_line(self) -> str:
        return f"`{self.usage}` - {self.description}"


async def require_repository_channel(context: CommandContext) -> str | None:
    """Return the channel's repository name, replying with the reason when unusable."""

    prefix = context.orchestrator.settings.repo_channel_prefix
    repository_name = context.repository_name
    if repository_name is None:
        await context.reply(
            f"This command only works in repository channels (names starting with `{prefix}`)."
        )
        return None
    if not context.orchestrator.worktrees.repository_exists(repository_name):
        await context.reply(
            f"Repository not found: `{repository_name}`\n\nClone it first with `/clone`."
        )
        return None
    return repository_name


async def require_thread(context: CommandContext) -> str | None:
    thread_id = context.conversation.thread_id
    if thread_id is None:
        prefix = context.orchestrator.settings.repo_channel_prefix
        await context.reply(
            "This command can only be used inside a thread.\n\n"
            f"Start a thread in a repository channel (`{prefix}<name>`) first."
        )
    return thread_id


__all__ = ["BaseCommand", "CommandContext", "Reply", "require_repository_channel", "require_thread"]
