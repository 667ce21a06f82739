from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from threadtree.errors import (
    BranchCheckoutFailed,
    RepositoryNotFound,
    WorktreeCreationFailed,
    WorktreeNotFound,
    WorktreeRemovalFailed,
)
from threadtree.git import FakeGitRunner, GitExecutionResult
from threadtree.workspace import WorktreeManager


def _result(args, cwd, returncode=0, stdout="", stderr="") -> GitExecutionResult:
    return GitExecutionResult(args=args, cwd=str(cwd), returncode=returncode, stdout=stdout, stderr=stderr)


class ScriptedGit(FakeGitRunner):
    """Fake git that materializes worktree directories like the real CLI."""

    def __init__(self, base: Path, *, local_branches=(), remote_branches=(), fail=None) -> None:
        super().__init__(handler=self._handle)
        self._trees = str(base / "trees")
        self._local = set(local_branches)
        self._remote = set(remote_branches)
        self._fail = fail or set()

    def _handle(self, args, cwd):
        if args[0] in self._fail or args[:2] in self._fail:
            return _result(args, cwd, 1, stderr=f"fatal: {args[0]} failed")
        if args[0] == "show-ref":
            ref = args[-1]
            if ref.startswith("refs/heads/"):
                found = ref.removeprefix("refs/heads/") in self._local
            else:
                found = ref.removeprefix("refs/remotes/origin/") in self._remote
            return _result(args, cwd, 0 if found else 1)
        if args[0] == "symbolic-ref":
            return _result(args, cwd, stdout="refs/remotes/origin/main\n")
        if args[:2] == ("worktree", "add"):
            for arg in args:
                if arg.startswith(self._trees):
                    Path(arg).mkdir(parents=True)
        if args[:2] == ("worktree", "remove"):
            target = Path(args[-1])
            for child in target.iterdir():
                child.unlink()
            target.rmdir()
        return None


def _manager(tmp_path: Path, **kwargs) -> tuple[WorktreeManager, ScriptedGit]:
    git = ScriptedGit(tmp_path, **kwargs)
    manager = WorktreeManager(tmp_path, git=git)
    (tmp_path / "repos" / "demo").mkdir()
    return manager, git


def test_manager_creates_layout(tmp_path: Path) -> None:
    manager = WorktreeManager(tmp_path / "base", git=FakeGitRunner())

    assert (tmp_path / "base" / "repos").is_dir()
    assert (tmp_path / "base" / "trees").is_dir()
    assert manager.get_worktree_path("c1", "t1") == tmp_path / "base" / "trees" / "c1" / "t1"
    assert manager.get_repository_path("demo") == tmp_path / "base" / "repos" / "demo"


def test_create_worktree_branches_from_origin_base(tmp_path: Path) -> None:
    manager, git = _manager(tmp_path)

    info = asyncio.run(manager.create_worktree("demo", "c1", "t1"))

    worktree_path = tmp_path / "trees" / "c1" / "t1"
    assert info.worktree_path == worktree_path
    assert info.repository_name == "demo"
    assert worktree_path.is_dir()
    assert git.commands()[-1] == ("worktree", "add", "-b", "t1", str(worktree_path), "origin/main")
    assert all(cwd == tmp_path / "repos" / "demo" for _, cwd in git.invocations)


def test_create_worktree_reuses_local_branch(tmp_path: Path) -> None:
    manager, git = _manager(tmp_path, local_branches={"t1"})

    asyncio.run(manager.create_worktree("demo", "c1", "t1"))

    assert git.commands()[-1] == ("worktree", "add", str(tmp_path / "trees" / "c1" / "t1"), "t1")


def test_create_worktree_tracks_remote_only_branch(tmp_path: Path) -> None:
    manager, git = _manager(tmp_path, remote_branches={"feature"})

    asyncio.run(manager.create_worktree("demo", "c1", "t1", branch="feature"))

    assert git.commands()[-1] == (
        "worktree",
        "add",
        "--track",
        "-b",
        "feature",
        str(tmp_path / "trees" / "c1" / "t1"),
        "origin/feature",
    )


def test_create_worktree_is_idempotent(tmp_path: Path) -> None:
    manager, git = _manager(tmp_path)
    (tmp_path / "trees" / "c1" / "t1").mkdir(parents=True)

    info = asyncio.run(manager.create_worktree("demo", "c1", "t1"))

    assert info.worktree_path == tmp_path / "trees" / "c1" / "t1"
    assert git.commands() == []


def test_create_worktree_missing_repository_leaves_no_trace(tmp_path: Path) -> None:
    manager, git = _manager(tmp_path)

    with pytest.raises(RepositoryNotFound):
        asyncio.run(manager.create_worktree("ghost", "c1", "t1"))

    assert git.commands() == []
    assert not (tmp_path / "trees" / "c1").exists()


def test_concurrent_creation_runs_single_worktree_add(tmp_path: Path) -> None:
    manager, git = _manager(tmp_path)

    async def scenario():
        return await asyncio.gather(
            manager.create_worktree("demo", "c1", "t1"),
            manager.create_worktree("demo", "c1", "t1"),
            manager.create_worktree("demo", "c1", "t1"),
        )

    results = asyncio.run(scenario())

    adds = [args for args in git.commands() if args[:2] == ("worktree", "add")]
    assert len(adds) == 1
    assert {info.worktree_path for info in results} == {tmp_path / "trees" / "c1" / "t1"}
    assert manager._creation_locks == {}
    assert manager._lock_waiters == {}


def test_create_worktree_failure_is_wrapped(tmp_path: Path) -> None:
    manager, _ = _manager(tmp_path, fail={("worktree", "add")})

    with pytest.raises(WorktreeCreationFailed, match="worktree failed"):
        asyncio.run(manager.create_worktree("demo", "c1", "t1"))
    assert not manager.worktree_exists("c1", "t1")
    assert manager._creation_locks == {}


def test_create_worktree_releases_locks_per_thread(tmp_path: Path) -> None:
    manager, _ = _manager(tmp_path)

    async def scenario():
        for index in range(5):
            await manager.create_worktree("demo", "c1", f"t{index}")

    asyncio.run(scenario())

    assert manager._creation_locks == {}
    assert manager._lock_waiters == {}


def test_create_worktree_wraps_filesystem_errors(tmp_path: Path) -> None:
    manager, git = _manager(tmp_path)
    (tmp_path / "trees" / "c1").write_text("not a directory")

    with pytest.raises(WorktreeCreationFailed, match="Failed to create worktree"):
        asyncio.run(manager.create_worktree("demo", "c1", "t1"))

    assert git.commands() == []
    assert manager._creation_locks == {}


def test_remove_absent_worktree_is_noop(tmp_path: Path) -> None:
    manager, git = _manager(tmp_path)

    asyncio.run(manager.remove_worktree("demo", "c1", "t1"))

    assert git.commands() == []


def test_remove_worktree_prunes_and_cleans_parent(tmp_path: Path) -> None:
    manager, git = _manager(tmp_path)
    asyncio.run(manager.create_worktree("demo", "c1", "t1"))

    asyncio.run(manager.remove_worktree("demo", "c1", "t1", force=True))

    worktree_path = tmp_path / "trees" / "c1" / "t1"
    assert ("worktree", "remove", "--force", str(worktree_path)) in git.commands()
    assert git.commands()[-1] == ("worktree", "prune")
    assert not worktree_path.exists()
    assert not (tmp_path / "trees" / "c1").exists()


def test_remove_worktree_failure_is_wrapped(tmp_path: Path) -> None:
    manager, _ = _manager(tmp_path, fail={("worktree", "remove")})
    (tmp_path / "trees" / "c1" / "t1").mkdir(parents=True)

    with pytest.raises(WorktreeRemovalFailed):
        asyncio.run(manager.remove_worktree("demo", "c1", "t1"))


def test_remove_worktree_tolerates_prune_failure(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    manager, _ = _manager(tmp_path, fail={("worktree", "prune")})
    asyncio.run(manager.create_worktree("demo", "c1", "t1"))

    with caplog.at_level("WARNING"):
        asyncio.run(manager.remove_worktree("demo", "c1", "t1"))

    assert not manager.worktree_exists("c1", "t1")
    assert "prune failed" in caplog.text


def test_switch_branch_requires_worktree(tmp_path: Path) -> None:
    manager, _ = _manager(tmp_path)

    with pytest.raises(WorktreeNotFound):
        asyncio.run(manager.switch_branch("c1", "t1", "main"))


def test_switch_branch_runs_checkout_in_worktree(tmp_path: Path) -> None:
    manager, git = _manager(tmp_path)
    asyncio.run(manager.create_worktree("demo", "c1", "t1"))

    asyncio.run(manager.switch_branch("c1", "t1", "feature/x", create=True))

    args, cwd = git.invocations[-1]
    assert args == ("checkout", "-b", "feature/x")
    assert cwd == tmp_path / "trees" / "c1" / "t1"


def test_switch_branch_failure_is_wrapped(tmp_path: Path) -> None:
    manager, _ = _manager(tmp_path, fail={"checkout"})
    (tmp_path / "trees" / "c1" / "t1").mkdir(parents=True)

    with pytest.raises(BranchCheckoutFailed):
        asyncio.run(manager.switch_branch("c1", "t1", "nope"))


def test_list_channel_worktrees_matches_registered_paths(tmp_path: Path) -> None:
    registered = tmp_path / "trees" / "c1" / "t1"

    def handler(args, cwd):
        if args[:2] == ("worktree", "list"):
            return _result(args, cwd, stdout=f"worktree {cwd}\nbranch refs/heads/main\n\nworktree {registered}\nbranch refs/heads/t1\n")
        return None

    manager = WorktreeManager(tmp_path, git=FakeGitRunner(handler=handler))
    (tmp_path / "repos" / "demo").mkdir()
    registered.mkdir(parents=True)
    (tmp_path / "trees" / "c1" / "stray").mkdir()

    threads = asyncio.run(manager.list_channel_worktrees("c1"))

    assert [(info.thread_id, info.repository_name) for info in threads] == [("t1", "demo")]
    assert asyncio.run(manager.list_channel_worktrees("unknown")) == []


def test_list_channel_worktrees_unreadable_channel_is_empty(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    manager = WorktreeManager(tmp_path, git=FakeGitRunner())
    channel_dir = tmp_path / "trees" / "c1"
    (channel_dir / "t1").mkdir(parents=True)
    original_iterdir = Path.iterdir

    def iterdir(self):
        if self == channel_dir:
            raise PermissionError(13, "Permission denied", str(self))
        return original_iterdir(self)

    monkeypatch.setattr(Path, "iterdir", iterdir)

    with caplog.at_level("WARNING"):
        assert asyncio.run(manager.list_channel_worktrees("c1")) == []
    assert "Could not read channel directory" in caplog.text


def test_worktree_lifecycle_against_real_git(cloned_repo: Path, workspace_dir: Path, git) -> None:
    manager = WorktreeManager(workspace_dir)

    info = asyncio.run(manager.create_worktree("demo", "c1", "t1"))

    assert (info.worktree_path / "README.md").exists()
    assert asyncio.run(manager.current_branch("c1", "t1")) == "t1"
    threads = asyncio.run(manager.list_channel_worktrees("c1"))
    assert [thread.thread_id for thread in threads] == ["t1"]

    asyncio.run(manager.switch_branch("c1", "t1", "experiment", create=True))
    assert asyncio.run(manager.current_branch("c1", "t1")) == "experiment"

    asyncio.run(manager.remove_worktree("demo", "c1", "t1"))
    assert not info.worktree_path.exists()
    assert str(info.worktree_path) not in git("worktree", "list", cwd=cloned_repo)
