"""FastMCP server bootstrap for threadtree."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import ThreadtreeSettings, get_settings
from .orchestrator import Orchestrator
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the threadtree server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def build_status(orchestrator: Orchestrator, request_id: Any = None) -> dict[str, Any]:
    settings = orchestrator.settings
    sessions = orchestrator.sessions
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server_version": __version__,
        "log_level": settings.log_level,
        "workspace": {
            "base_dir": str(settings.base_work_dir),
            "repositories": orchestrator.get_available_repositories(),
            "repo_channel_prefix": settings.repo_channel_prefix,
        },
        "claude": {
            "path": settings.claude_path,
            "available": orchestrator.runner.available,
            "max_turns": settings.max_turns,
            "skip_permissions": settings.skip_permissions,
            "allowed_tools": list(settings.allowed_tool_list),
        },
        "sessions": {"count": len(sessions) if hasattr(sessions, "__len__") else None},
        "request_id": request_id,
    }


def create_server(
    settings: Optional[ThreadtreeSettings] = None,
    orchestrator: Orchestrator | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with its tools and status resource."""

    if orchestrator is None:
        orchestrator = Orchestrator(settings or get_settings())

    server = FastMCP(
        name="threadtree",
        version=__version__,
        instructions=(
            "threadtree gives every chat thread its own git worktree and a resumable "
            "Claude Code session. Use the tools to set up workspaces, run the agent "
            "and execute slash commands."
        ),
    )

    handles = register_tools(server, orchestrator=orchestrator)

    @server.resource(
        "resource://threadtree/status",
        name="threadtree_status",
        title="threadtree Status",
        description="Provides the current runtime status for the threadtree server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        return json.dumps(build_status(orchestrator, getattr(context, "request_id", None)))

    setattr(server, "orchestrator", orchestrator)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the threadtree MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    orchestrator: Orchestrator = getattr(server, "orchestrator")
    logging.getLogger(__name__).info(
        "Launching threadtree MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "base_work_dir": str(settings.base_work_dir),
            "claude_available": orchestrator.runner.available,
        },
    )
    server.run()


if __name__ == "__main__":
    main()
