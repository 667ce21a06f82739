"""Async runner for the git CLI."""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from ..errors import ThreadtreeError
from .utils import sanitize_environment


class GitCommandError(ThreadtreeError):
    """Raised when a git invocation exits non-zero or cannot be started."""

    def __init__(self, message: str, result: "GitExecutionResult | None" = None) -> None:
        super().__init__(message)
        self.result = result


@dataclass(slots=True)
class GitExecutionResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def message(self) -> str:
        """Best human-readable description of what git reported."""

        return self.stderr.strip() or self.stdout.strip() or f"git exited with code {self.returncode}"


class GitRunner:
    """Execute git commands asynchronously with a target working directory."""

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            return Path(explicit)
        binary = shutil.which("git")
        # Left unresolved so a missing git surfaces as a GitCommandError per call.
        return Path(binary) if binary else Path("git")

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def run(self, *args: str, cwd: Path) -> GitExecutionResult:
        """Run git and return the result regardless of exit status."""

        return await self._invoke(tuple(args), Path(cwd))

    async def check(self, *args: str, cwd: Path) -> GitExecutionResult:
        """Run git and raise GitCommandError on a non-zero exit."""

        result = await self.run(*args, cwd=cwd)
        if not result.ok:
            command = " ".join(("git", *args))
            raise GitCommandError(f"Command failed: {command}: {result.message}", result)
        return result

    async def _invoke(self, args: tuple[str, ...], cwd: Path) -> GitExecutionResult:
        cmd = [str(self._executable_path), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
            )
        except OSError as exc:
            raise GitCommandError(f"Unable to run git in {cwd}: {exc}") from exc
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GitExecutionResult(
            args=args,
            cwd=str(cwd),
            returncode=process.returncode,
            stdout=stdout,
            stderr=stderr,
        )


GitHandler = Callable[[tuple[str, ...], Path], "GitExecutionResult | None"]


class FakeGitRunner(GitRunner):
    """Test double that records git invocations and replays scripted results.

    A ``handler`` sees every call first; returning ``None`` falls through to the
    queued ``responses`` and finally to an empty successful result.
    """

    def __init__(  # type: ignore[override]
        self,
        responses: Iterable[GitExecutionResult] | None = None,
        *,
        handler: GitHandler | None = None,
    ) -> None:
        self._responses = list(responses or [])
        self._handler = handler
        self._invocations: list[tuple[tuple[str, ...], Path]] = []
        self._executable_path = Path("/tmp/fake-git")

    async def _invoke(self, args: tuple[str, ...], cwd: Path) -> GitExecutionResult:  # type: ignore[override]
        self._invocations.append((args, cwd))
        # Yield so concurrent callers interleave the way real subprocesses do.
        await asyncio.sleep(0)
        if self._handler is not None:
            handled = self._handler(args, cwd)
            if handled is not None:
                return handled
        if self._responses:
            return self._responses.pop(0)
        return GitExecutionResult(args=args, cwd=str(cwd), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[tuple[str, ...], Path]]:
        return self._invocations

    def commands(self) -> list[tuple[str, ...]]:
        """Return just the argument tuples, in call order."""

        return [args for args, _ in self._invocations]


__all__ = ["FakeGitRunner", "GitCommandError", "GitExecutionResult", "GitRunner"]
