from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from threadtree.git.utils import sanitize_environment


def _git(*args: str, cwd: Path) -> str:
    completed = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
        env=sanitize_environment(
            {
                "GIT_AUTHOR_NAME": "Test",
                "GIT_AUTHOR_EMAIL": "test@example.com",
                "GIT_COMMITTER_NAME": "Test",
                "GIT_COMMITTER_EMAIL": "test@example.com",
            }
        ),
    )
    return completed.stdout


@pytest.fixture
def git():
    return _git


@pytest.fixture
def origin_repo(tmp_path: Path) -> Path:
    """A bare ``origin`` with one commit on ``main``."""

    if shutil.which("git") is None:
        pytest.skip("git not installed")
    seed = tmp_path / "seed"
    seed.mkdir()
    _git("init", "-b", "main", cwd=seed)
    (seed / "README.md").write_text("hello\n", encoding="utf-8")
    _git("add", "README.md", cwd=seed)
    _git("commit", "-m", "initial", cwd=seed)

    origin = tmp_path / "origin.git"
    _git("clone", "--bare", str(seed), str(origin), cwd=tmp_path)
    return origin


@pytest.fixture
def workspace_dir(tmp_path: Path) -> Path:
    base = tmp_path / "workspace"
    base.mkdir()
    return base


@pytest.fixture
def cloned_repo(origin_repo: Path, workspace_dir: Path) -> Path:
    """``workspace/repos/demo`` cloned from ``origin_repo``."""

    repos = workspace_dir / "repos"
    repos.mkdir(exist_ok=True)
    _git("clone", str(origin_repo), "demo", cwd=repos)
    return repos / "demo"
