from __future__ import annotations

from pathlib import Path

from swarm_mcp.config import SwarmSettings
from swarm_mcp.git import FakeGitRunner, GitExecutionResult
from swarm_mcp.server import create_server


class StubJournal:
    def ping(self) -> bool:
        return True


def _settings(tmp_path: Path, **overrides) -> SwarmSettings:
    return SwarmSettings(swarm_root=tmp_path / "swarm", profile_paths=(tmp_path / "profiles",), **overrides)


def test_create_server_reports_git_and_profiles(tmp_path: Path) -> None:
    runner = FakeGitRunner(
        [GitExecutionResult(args=("git", "--version"), returncode=0, stdout="git version 2.99.0\n", stderr="")]
    )

    server = create_server(_settings(tmp_path), git_runner=runner)

    assert server.git_metadata["available"] is True
    assert server.git_metadata["version"] == "git version 2.99.0"
    assert server.journal is None
    assert server.journal_metadata == {"available": False, "path": None, "error": None}
    assert server.profile_loader.missing_roles() == []
    assert server.startup_gc == {
        "expired_sessions": [],
        "orphaned_worktrees": {"succeeded": [], "failed": [], "skipped": []},
    }
    assert server.tool_handles.init.name == "swarm_init"


def test_create_server_records_git_version_failure(tmp_path: Path) -> None:
    runner = FakeGitRunner(
        [GitExecutionResult(args=("git", "--version"), returncode=1, stdout="", stderr="broken install")]
    )

    server = create_server(_settings(tmp_path), git_runner=runner)

    assert server.git_metadata["version"] is None
    assert server.git_metadata["error"] == "broken install"


def test_create_server_uses_supplied_journal(tmp_path: Path) -> None:
    journal = StubJournal()

    server = create_server(_settings(tmp_path), git_runner=FakeGitRunner(), journal=journal)

    assert server.journal is journal
    assert server.swarm_service.journal is journal
    assert server.journal_metadata["available"] is True


def test_startup_collects_orphaned_worktrees(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    orphan = settings.worktrees_dir / "ghost-task-1"
    orphan.mkdir(parents=True)

    server = create_server(settings, git_runner=FakeGitRunner())

    assert server.startup_gc["orphaned_worktrees"]["succeeded"] == [str(orphan)]
    assert not orphan.exists()
