from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from swarm_mcp.git import (
    FakeGitRunner,
    GitCommandError,
    GitExecutionResult,
    GitNotFoundError,
    GitRepository,
    GitRunner,
)
from swarm_mcp.errors import BackendError
from swarm_mcp.git.utils import sanitize_environment


def _ok(stdout: str = "") -> GitExecutionResult:
    return GitExecutionResult(args=("git",), returncode=0, stdout=stdout, stderr="")


def _fail(stderr: str) -> GitExecutionResult:
    return GitExecutionResult(args=("git",), returncode=1, stdout="", stderr=stderr)


def test_git_runner_executes_script(tmp_path: Path) -> None:
    script = tmp_path / "git"
    script.write_text("#!/bin/sh\necho 'git version 2.99.0'\n", encoding="utf-8")
    script.chmod(0o755)

    runner = GitRunner(script)
    result = asyncio.run(runner.version())

    assert result.ok
    assert "git version 2.99.0" in result.stdout


def test_git_runner_passes_working_directory(tmp_path: Path) -> None:
    script = tmp_path / "git"
    script.write_text("#!/bin/sh\necho \"$@\"\n", encoding="utf-8")
    script.chmod(0o755)

    runner = GitRunner(script)
    result = asyncio.run(runner.run("status", "--porcelain", cwd=tmp_path))

    assert result.stdout.strip() == f"-C {tmp_path} status --porcelain"


def test_git_not_found(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitRunner(tmp_path / "missing")


def test_fake_git_runner_records_invocations() -> None:
    fake = FakeGitRunner([_ok("abc123\n")])

    result = asyncio.run(fake.run("rev-parse", "HEAD", cwd="/repo"))

    assert result.stdout == "abc123\n"
    assert fake.invocations == [("-C", "/repo", "rev-parse", "HEAD")]


def test_repository_reads_branch_commit_and_status(tmp_path: Path) -> None:
    fake = FakeGitRunner([_ok("true\n"), _ok("main\n"), _ok("abc123\n"), _ok(" M a.py\n")])
    repository = GitRepository(tmp_path, fake)

    assert asyncio.run(repository.is_repo()) is True
    assert asyncio.run(repository.current_branch()) == "main"
    assert asyncio.run(repository.current_commit()) == "abc123"
    assert asyncio.run(repository.has_uncommitted_changes()) is True


def test_missing_directory_is_not_a_repository(tmp_path: Path) -> None:
    fake = FakeGitRunner()

    assert asyncio.run(GitRepository(tmp_path / "nope", fake).is_repo()) is False
    assert fake.invocations == []


def test_list_worktrees_parses_porcelain(tmp_path: Path) -> None:
    porcelain = (
        f"worktree {tmp_path}\nHEAD abc123\nbranch refs/heads/main\n\n"
        f"worktree {tmp_path}/wt/project-a\nHEAD abc123\ndetached\n\n"
    )
    repository = GitRepository(tmp_path, FakeGitRunner([_ok(porcelain)]))

    paths = asyncio.run(repository.list_worktrees())

    assert paths == [tmp_path, tmp_path / "wt" / "project-a"]


def test_commit_all_returns_none_when_clean(tmp_path: Path) -> None:
    fake = FakeGitRunner([_ok(), _ok("")])
    repository = GitRepository(tmp_path, fake)

    assert asyncio.run(repository.commit_all("swarm: noop")) is None
    assert [call[2] for call in fake.invocations] == ["add", "status"]


def test_commit_all_commits_and_returns_head(tmp_path: Path) -> None:
    fake = FakeGitRunner([_ok(), _ok("A a.py\n"), _ok(), _ok("def456\n")])
    repository = GitRepository(tmp_path, fake)

    assert asyncio.run(repository.commit_all("swarm: add a")) == "def456"
    assert fake.invocations[2][2:] == ("commit", "--no-verify", "-m", "swarm: add a")


def test_failed_cherry_pick_is_aborted_and_raised(tmp_path: Path) -> None:
    fake = FakeGitRunner([_fail("CONFLICT (content)"), _ok()])
    repository = GitRepository(tmp_path, fake)

    with pytest.raises(GitCommandError, match="git cherry-pick failed: CONFLICT"):
        asyncio.run(repository.cherry_pick("abc123"))

    assert fake.invocations[-1][2:] == ("cherry-pick", "--abort")


def test_remove_missing_worktree_is_noop(tmp_path: Path) -> None:
    fake = FakeGitRunner()
    repository = GitRepository(tmp_path, fake)

    assert asyncio.run(repository.remove_worktree(tmp_path / "gone")) is False
    assert fake.invocations == []


def test_add_worktree_reports_unusable_parent_directory(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    fake = FakeGitRunner()
    repository = GitRepository(tmp_path, fake)

    with pytest.raises(BackendError, match="cannot create worktree directory"):
        asyncio.run(repository.add_worktree(blocker / "wt" / "project-a", "abc123"))
    assert fake.invocations == []


def test_reset_rejects_unknown_mode(tmp_path: Path) -> None:
    repository = GitRepository(tmp_path, FakeGitRunner())

    with pytest.raises(ValueError):
        asyncio.run(repository.reset("abc123", mode="mixed"))

    asyncio.run(repository.reset("abc123", mode="hard"))


def test_sanitize_environment_strips_repository_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    monkeypatch.setenv("GIT_WORK_TREE", "/elsewhere")
    env = sanitize_environment({"EXTRA": "1"})

    assert "GIT_DIR" not in env
    assert "GIT_WORK_TREE" not in env
    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert env["EXTRA"] == "1"
