"""Slash command dispatch."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..errors import ThreadtreeError
from .base import BaseCommand, CommandContext, Reply
from .clone import CloneCommand
from .list_branches import ListBranchesCommand
from .list_repos import ListReposCommand
from .pull import PullCommand
from .quit import QuitCommand
from .switch import SwitchCommand

if TYPE_CHECKING:
    from ..orchestrator import ConversationContext, Orchestrator

logger = logging.getLogger(__name__)

COMMANDS: tuple[type[BaseCommand], ...] = (
    CloneCommand,
    SwitchCommand,
    QuitCommand,
    PullCommand,
    ListReposCommand,
    ListBranchesCommand,
)


class CommandHandler:
    """Parse ``/name args...`` text and run the matching command."""

    def __init__(self, orchestrator: "Orchestrator") -> None:
        self._orchestrator = orchestrator
        self._commands: dict[str, BaseCommand] = {}
        for command_cls in COMMANDS:
            command = command_cls()
            self._commands[command.name] = command

    @property
    def available_commands(self) -> list[str]:
        return list(self._commands)

    def get(self, name: str) -> BaseCommand | None:
        return self._commands.get(name.lower())

    def help_text(self) -> str:
        lines = ["Available commands:"]
        lines.extend(f"- {command.help_line()}" for command in self._commands.values())
        return "\n".join(lines)

    @staticmethod
    def parse(text: str) -> tuple[str, list[str]] | None:
        content = text.strip()
        if not content.startswith("/"):
            return None
        parts = content[1:].split()
        if not parts:
            return "", []
        return parts[0].lower(), parts[1:]

    async def handle(self, conversation: "ConversationContext", text: str, reply: Reply) -> bool:
        """Run the command in ``text``; return False when nothing was executed."""

        parsed = self.parse(text)
        if parsed is None:
            await reply("Commands must start with `/`.\n\n" + self.help_text())
            return False

        name, args = parsed
        command = self._commands.get(name)
        if command is None:
            await reply(f"Unknown command: `{name}`\n\n" + self.help_text())
            return False

        logger.info("Processing command", extra={"command": name, "command_args": args})
        context = CommandContext(
            conversation=conversation,
            orchestrator=self._orchestrator,
            reply=reply,
            args=args,
            command_name=name,
        )
        try:
            await command.execute(context)
        except ThreadtreeError as exc:
            logger.exception("Command failed", extra={"command": name})
            await reply(f"Command `{name}` failed: {exc}")
        return True


__all__ = [
    "BaseCommand",
    "COMMANDS",
    "CloneCommand",
    "CommandContext",
    "CommandHandler",
    "ListBranchesCommand",
    "ListReposCommand",
    "PullCommand",
    "QuitCommand",
    "SwitchCommand",
]
