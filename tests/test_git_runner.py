from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import pytest

from threadtree.git import FakeGitRunner, GitCommandError, GitExecutionResult, GitRunner, sanitize_environment


def test_git_runner_executes_script(tmp_path: Path) -> None:
    script = tmp_path / "git"
    script.write_text("#!/bin/sh\necho \"$@\"\n", encoding="utf-8")
    script.chmod(0o755)

    runner = GitRunner(script)
    result = asyncio.run(runner.run("status", "--short", cwd=tmp_path))

    assert result.ok
    assert result.stdout.strip() == "status --short"
    assert result.args == ("status", "--short")


def test_git_check_raises_with_stderr(tmp_path: Path) -> None:
    script = tmp_path / "git"
    script.write_text("#!/bin/sh\necho 'fatal: boom' >&2\nexit 128\n", encoding="utf-8")
    script.chmod(0o755)

    runner = GitRunner(script)
    with pytest.raises(GitCommandError) as excinfo:
        asyncio.run(runner.check("fetch", "origin", cwd=tmp_path))

    assert "git fetch origin" in str(excinfo.value)
    assert "fatal: boom" in str(excinfo.value)
    assert excinfo.value.result is not None
    assert excinfo.value.result.returncode == 128


def test_git_missing_executable_raises(tmp_path: Path) -> None:
    runner = GitRunner(tmp_path / "missing-git")

    with pytest.raises(GitCommandError):
        asyncio.run(runner.run("status", cwd=tmp_path))


def test_git_runner_disables_prompts(tmp_path: Path) -> None:
    script = tmp_path / "git"
    script.write_text("#!/bin/sh\necho \"$GIT_TERMINAL_PROMPT\"\n", encoding="utf-8")
    script.chmod(0o755)

    result = asyncio.run(GitRunner(script).run("env", cwd=tmp_path))

    assert result.stdout.strip() == "0"


def test_fake_git_runner_records_invocations(tmp_path: Path) -> None:
    fake = FakeGitRunner(
        [GitExecutionResult(args=("status",), cwd=str(tmp_path), returncode=0, stdout="ok", stderr="")]
    )

    first = asyncio.run(fake.run("status", cwd=tmp_path))
    second = asyncio.run(fake.run("log", cwd=tmp_path))

    assert first.stdout == "ok"
    assert second.ok and second.stdout == ""
    assert fake.commands() == [("status",), ("log",)]
    assert fake.invocations[0][1] == tmp_path


def test_fake_git_runner_handler_takes_precedence(tmp_path: Path) -> None:
    def handler(args, cwd):
        if args[0] == "fetch":
            return GitExecutionResult(args=args, cwd=str(cwd), returncode=1, stdout="", stderr="offline")
        return None

    fake = FakeGitRunner(handler=handler)

    with pytest.raises(GitCommandError, match="offline"):
        asyncio.run(fake.check("fetch", "origin", cwd=tmp_path))
    assert asyncio.run(fake.run("status", cwd=tmp_path)).ok


def test_sanitize_environment_strips_repository_pins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    monkeypatch.setenv("PYTHONPATH", "value")

    env = sanitize_environment({"EXTRA": "1"})

    assert "GIT_DIR" not in env
    assert "PYTHONPATH" not in env
    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert env["EXTRA"] == "1"


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_real_git_version(tmp_path: Path) -> None:
    result = asyncio.run(GitRunner().check("--version", cwd=tmp_path))

    assert result.stdout.startswith("git version")
