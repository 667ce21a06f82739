from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from threadtree.agent import AgentResult
from threadtree.config import ThreadtreeSettings
from threadtree.git import FakeGitRunner
from threadtree.orchestrator import Orchestrator
from threadtree.tools import register_tools
from threadtree.workspace import WorktreeManager


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubContext:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    async def info(self, message: str, extra: dict[str, Any] | None = None) -> None:
        self.messages.append(("info", message))

    async def debug(self, message: str, extra: dict[str, Any] | None = None) -> None:
        self.messages.append(("debug", message))

    async def warning(self, message: str, extra: dict[str, Any] | None = None) -> None:
        self.messages.append(("warning", message))


class StreamingRunner:
    available = True

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def execute(self, prompt, session_id=None, callbacks=None, working_directory=None, *, abort=None):
        self.calls.append({"prompt": prompt, "session_id": session_id, "cwd": working_directory})
        if callbacks is not None:
            await callbacks.on_assistant_message("working on it")
            await callbacks.on_tool_use("Read", {"file_path": "README.md"})
        return AgentResult(output="done", error=None, exit_code=0, session_id="s-1")


def _register(tmp_path: Path):
    def handler(args, cwd):
        if args[:2] == ("worktree", "add"):
            Path(args[-2]).mkdir(parents=True)
        return None

    settings = ThreadtreeSettings(base_work_dir=tmp_path)
    worktrees = WorktreeManager(tmp_path, git=FakeGitRunner(handler=handler))
    (tmp_path / "repos" / "demo").mkdir()
    runner = StreamingRunner()
    orchestrator = Orchestrator(settings, worktrees=worktrees, runner=runner)
    server = StubServer()
    handles = register_tools(server, orchestrator=orchestrator)
    return server, handles, orchestrator, runner


def test_register_tools_exposes_expected_names(tmp_path: Path) -> None:
    server, handles, _, _ = _register(tmp_path)

    assert set(server._tools) == {
        "setup_workspace",
        "run_agent",
        "handle_message",
        "list_repositories",
        "list_threads",
        "run_command",
    }
    assert handles.commands.available_commands[0] == "clone"


def test_setup_workspace_and_list_threads(tmp_path: Path) -> None:
    _, handles, _, _ = _register(tmp_path)

    payload = asyncio.run(handles.setup_workspace.fn("c1", "repo_demo", "t1"))

    assert payload["kind"] == "worktree"
    assert payload["path"] == str(tmp_path / "trees" / "c1" / "t1")
    assert payload["worktree"]["thread_id"] == "t1"
    assert asyncio.run(handles.list_repositories.fn()) == ["demo"]


def test_run_agent_streams_progress_to_context(tmp_path: Path) -> None:
    _, handles, orchestrator, runner = _register(tmp_path)
    context = StubContext()

    payload = asyncio.run(handles.run_agent.fn("hello", str(tmp_path), "t1", context=context))

    assert payload == {"output": "done", "error": None, "exit_code": 0, "session_id": "s-1"}
    assert ("info", "working on it") in context.messages
    assert ("debug", 'Read -> "README.md"') in context.messages
    assert orchestrator.sessions.get("t1") == "s-1"
    assert runner.calls[0]["cwd"] == tmp_path


def test_handle_message_accepts_serialized_history(tmp_path: Path) -> None:
    _, handles, _, runner = _register(tmp_path)
    history = [
        {"author": "alice", "content": "earlier", "created_at": "2025-01-01T00:00:00+00:00", "message_id": "m1"},
        {"author": "alice", "content": "now", "created_at": "2025-01-01T00:01:00+00:00", "message_id": "m2"},
    ]

    payload = asyncio.run(
        handles.handle_message.fn("c1", "repo_demo", "now", thread_id="t1", message_id="m2", history=history)
    )

    assert payload["history_included"] is True
    assert payload["workspace"]["kind"] == "worktree"
    assert payload["tool_activity"] == ['Read -> "README.md"']
    assert "alice: earlier" in runner.calls[0]["prompt"]


def test_run_command_collects_replies(tmp_path: Path) -> None:
    _, handles, _, _ = _register(tmp_path)

    payload = asyncio.run(handles.run_command.fn("c1", "general", "/list-repos"))
    assert payload["executed"] is True
    assert "`demo`" in payload["replies"][0]

    payload = asyncio.run(handles.run_command.fn("c1", "general", "/nope"))
    assert payload["executed"] is False
