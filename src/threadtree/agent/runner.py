"""Async streaming runner for the Claude Code CLI."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

from ..config import ThreadtreeSettings, get_settings
from ..errors import AgentProcessFailed, ThreadtreeError
from ..git.utils import sanitize_environment
from .stream import (
    AssistantEvent,
    LineBuffer,
    ResultEvent,
    StreamEvent,
    SystemEvent,
    ToolResultEvent,
    decode_line,
)

logger = logging.getLogger(__name__)

TOOL_RESULT_NAME = "tool_result"
"""Reserved ``on_tool_use`` name under which tool outputs are surfaced."""

SUPPRESSED_TOOL_NAME = "result"

_READ_CHUNK_SIZE = 64 * 1024
_TERMINATE_GRACE_SECONDS = 5.0


class AgentNotFoundError(AgentProcessFailed):
    """Raised when the claude executable cannot be located."""


@dataclass(slots=True)
class AgentResult:
    """Aggregated outcome of one agent invocation."""

    output: str
    error: str | None
    exit_code: int
    session_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error is None

    @classmethod
    def failure(cls, error: str, *, output: str = "", session_id: str | None = None) -> "AgentResult":
        return cls(output=output, error=error, exit_code=1, session_id=session_id)

    def raise_for_error(self) -> "AgentResult":
        if not self.ok:
            raise AgentProcessFailed(self.error or f"Agent exited with code {self.exit_code}")
        return self

    def as_dict(self) -> dict[str, Any]:
        return {
            "output": self.output,
            "error": self.error,
            "exit_code": self.exit_code,
            "session_id": self.session_id,
        }


TextCallback = Callable[[str], Awaitable[None]]
ToolCallback = Callable[[str, Any], Awaitable[None]]


@dataclass(slots=True)
class StreamCallbacks:
    on_assistant_message: TextCallback | None = None
    on_tool_use: ToolCallback | None = None
    on_thinking: TextCallback | None = None
    on_update: TextCallback | None = None


@dataclass(slots=True, frozen=True)
class AgentPermissions:
    """Capability flags snapshotted from settings at the start of a run."""

    skip_permissions: bool = False
    allowed_tools: tuple[str, ...] = ()
    max_turns: int = 100

    @classmethod
    def from_settings(cls, settings: ThreadtreeSettings) -> "AgentPermissions":
        return cls(
            skip_permissions=settings.skip_permissions,
            allowed_tools=settings.allowed_tool_list,
            max_turns=settings.max_turns,
        )

    def flags(self) -> list[str]:
        flags = ["--max-turns", str(self.max_turns)]
        if self.skip_permissions:
            flags.extend(["--permission-mode", "bypassPermissions"])
        if self.allowed_tools:
            flags.extend(["--allowedTools", ",".join(self.allowed_tools)])
        return flags


class StreamAccumulator:
    """Feed decoded events in order; dispatch callbacks and build the final result."""

    def __init__(self, callbacks: StreamCallbacks | None = None, *, session_id: str | None = None) -> None:
        self._callbacks = callbacks or StreamCallbacks()
        self._session_id = session_id
        self._texts: list[str] = []
        self._last_text: str | None = None
        self._terminal: ResultEvent | None = None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def terminal(self) -> ResultEvent | None:
        return self._terminal

    @property
    def partial_output(self) -> str:
        return "\n".join(self._texts).strip()

    async def handle(self, event: StreamEvent) -> None:
        if event.session_id:
            self._session_id = event.session_id

        if isinstance(event, SystemEvent):
            if self._callbacks.on_update:
                await self._callbacks.on_update(f"System initialized: {event.model or 'unknown model'}")
        elif isinstance(event, AssistantEvent):
            await self._handle_assistant(event)
        elif isinstance(event, ToolResultEvent):
            if self._callbacks.on_tool_use:
                for payload in event.results():
                    await self._callbacks.on_tool_use(TOOL_RESULT_NAME, payload)
        elif isinstance(event, ResultEvent):
            if self._terminal is not None:
                logger.warning("Ignoring duplicate terminal result event")
                return
            self._terminal = event
            if event.succeeded and event.result and self._callbacks.on_update:
                await self._callbacks.on_update(event.result)

    async def _handle_assistant(self, event: AssistantEvent) -> None:
        callbacks = self._callbacks
        for block in event.message.blocks():
            if block.type == "text" and block.text:
                # The CLI re-emits identical partial messages; only forward changes.
                if block.text == self._last_text:
                    continue
                self._last_text = block.text
                self._texts.append(block.text)
                if callbacks.on_assistant_message:
                    await callbacks.on_assistant_message(block.text)
            elif block.type == "tool_use":
                name = block.name or "unknown"
                if name == SUPPRESSED_TOOL_NAME:
                    continue
                if callbacks.on_tool_use:
                    await callbacks.on_tool_use(name, block.input)
            elif block.type == "thinking" and block.thinking:
                if callbacks.on_thinking:
                    await callbacks.on_thinking(block.thinking)

    def finish(self, returncode: int | None, stderr: str = "") -> AgentResult:
        terminal = self._terminal
        if terminal is not None:
            if terminal.succeeded:
                return AgentResult(
                    output=(terminal.result or "").strip(),
                    error=None,
                    exit_code=0,
                    session_id=self._session_id,
                )
            reason = terminal.subtype if terminal.subtype != "success" else (terminal.result or "is_error")
            return AgentResult(
                output=self.partial_output,
                error=f"Error: {reason}",
                exit_code=1,
                session_id=self._session_id,
            )

        code = returncode if returncode else 1
        error = stderr.strip() or f"Agent process exited with code {returncode} before reporting a result"
        return AgentResult(
            output=self.partial_output,
            error=error,
            exit_code=code,
            session_id=self._session_id,
        )

    def failed(self, error: str) -> AgentResult:
        return AgentResult.failure(error, output=self.partial_output, session_id=self._session_id)


class ClaudeRunner:
    """Run ``claude -p`` per request and stream its events to callbacks.

    ``execute`` never raises for process or decoding problems: every failure is
    reported through :class:`AgentResult`. Task cancellation still propagates
    after the child process has been terminated.
    """

    def __init__(
        self,
        executable: Path | None = None,
        *,
        settings_provider: Callable[[], ThreadtreeSettings] | None = None,
    ) -> None:
        self._explicit_executable = Path(executable) if executable is not None else None
        self._settings_provider = settings_provider or get_settings

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise AgentNotFoundError(f"Claude executable not found at {candidate}")

        binary = shutil.which("claude")
        if binary is None:
            raise AgentNotFoundError("Claude CLI executable not found on PATH")
        return Path(binary)

    @property
    def available(self) -> bool:
        try:
            self._resolve_executable(self._explicit_executable)
        except AgentNotFoundError:
            return False
        return True

    @staticmethod
    def build_args(
        prompt: str,
        session_id: str | None,
        permissions: AgentPermissions,
    ) -> list[str]:
        args = ["-p", prompt, "--output-format", "stream-json", "--verbose"]
        if session_id:
            args.extend(["--resume", session_id])
        args.extend(permissions.flags())
        return args

    async def execute(
        self,
        prompt: str,
        session_id: str | None = None,
        callbacks: StreamCallbacks | None = None,
        working_directory: Path | None = None,
        *,
        abort: asyncio.Event | None = None,
    ) -> AgentResult:
        accumulator = StreamAccumulator(callbacks, session_id=session_id)
        try:
            process = await self._spawn(prompt, session_id, working_directory)
        except AgentProcessFailed as exc:
            logger.error("Agent process could not be started", extra={"error": str(exc)})
            return AgentResult.failure(str(exc))

        stderr_task = asyncio.create_task(self._read_stderr(process))
        try:
            aborted = await self._pump(process, accumulator, abort)
        except asyncio.CancelledError:
            await self._terminate(process)
            await self._cancel_task(stderr_task)
            raise
        except Exception as exc:
            logger.exception("Agent stream processing failed")
            await self._terminate(process)
            await self._cancel_task(stderr_task)
            return accumulator.failed(f"Agent stream processing failed: {exc}")

        if aborted:
            logger.warning("Agent run aborted", extra={"pid": process.pid})
            await self._terminate(process)
            await self._cancel_task(stderr_task)
            return accumulator.failed("Agent run aborted")

        returncode = await process.wait()
        stderr = await stderr_task
        result = accumulator.finish(returncode, stderr)
        logger.info(
            "Agent run finished",
            extra={
                "exit_code": result.exit_code,
                "session_id": result.session_id,
                "returncode": returncode,
            },
        )
        return result

    async def _spawn(
        self, prompt: str, session_id: str | None, working_directory: Path | None
    ) -> asyncio.subprocess.Process:
        executable = self._resolve_executable(self._explicit_executable)
        try:
            settings = self._settings_provider()
        except ThreadtreeError as exc:
            raise AgentProcessFailed(f"Agent settings unavailable: {exc}") from exc
        permissions = AgentPermissions.from_settings(settings)
        args = self.build_args(prompt, session_id, permissions)
        cwd = str(working_directory) if working_directory is not None else None
        logger.info(
            "Starting agent",
            extra={"cwd": cwd, "resume": session_id or "new", "flags": permissions.flags()},
        )
        try:
            return await asyncio.create_subprocess_exec(
                str(executable),
                *args,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
            )
        except OSError as exc:
            raise AgentProcessFailed(f"Failed to start {executable}: {exc}") from exc

    async def _pump(
        self,
        process: asyncio.subprocess.Process,
        accumulator: StreamAccumulator,
        abort: asyncio.Event | None,
    ) -> bool:
        """Consume stdout until EOF; return True if ``abort`` fired first."""

        reader = asyncio.create_task(self._consume(process, accumulator))
        if abort is None:
            await reader
            return False

        watcher = asyncio.create_task(abort.wait())
        try:
            done, _ = await asyncio.wait({reader, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._cancel_task(reader)
            await self._cancel_task(watcher)
            raise

        if reader in done:
            await self._cancel_task(watcher)
            reader.result()
            return False

        await self._cancel_task(reader)
        return True

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any]) -> None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @staticmethod
    async def _consume(process: asyncio.subprocess.Process, accumulator: StreamAccumulator) -> None:
        assert process.stdout is not None
        buffer = LineBuffer()
        while True:
            chunk = await process.stdout.read(_READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                event = decode_line(line)
                if event is not None:
                    await accumulator.handle(event)
        tail = buffer.flush()
        if tail.strip():
            event = decode_line(tail)
            if event is not None:
                await accumulator.handle(event)

    @staticmethod
    async def _read_stderr(process: asyncio.subprocess.Process) -> str:
        assert process.stderr is not None
        data = await process.stderr.read()
        return data.decode("utf-8", errors="replace")

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()


__all__ = [
    "AgentNotFoundError",
    "AgentPermissions",
    "AgentResult",
    "ClaudeRunner",
    "StreamAccumulator",
    "StreamCallbacks",
    "SUPPRESSED_TOOL_NAME",
    "TOOL_RESULT_NAME",
]
