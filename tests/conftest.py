"""Shared fixtures: settings under tmp_path and an in-memory git stand-in."""

from __future__ import annotations

import asyncio
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from swarm_mcp.config import SwarmSettings
from swarm_mcp.errors import BackendError
from swarm_mcp.models import Decomposition, Epic, SubtaskDraft
from swarm_mcp.service import SwarmService
from swarm_mcp.storage import SessionStore


class StubGit:
    """Shared state behind every StubRepository handle."""

    def __init__(self) -> None:
        self.repos: set[str] = set()
        self.heads: dict[str, str] = {}
        self.dirty: set[str] = set()
        self.worktrees: list[Path] = []
        self.fail_remove: set[str] = set()
        self.fail_picks: set[str] = set()
        self.picked: list[str] = []
        self.resets: list[tuple[str, str, str]] = []
        self.prunes = 0
        self._commits = 0

    def add_repo(self, path: Path, head: str = "base000") -> None:
        self.repos.add(str(path))
        self.heads[str(path)] = head

    def next_commit(self) -> str:
        self._commits += 1
        return f"commit{self._commits:03d}"


class StubRepository:
    def __init__(self, git: StubGit, path: Path | str) -> None:
        self._git = git
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def project_name(self) -> str:
        return self._path.name

    async def is_repo(self) -> bool:
        return str(self._path) in self._git.repos

    async def current_branch(self) -> str:
        return "main"

    async def current_commit(self) -> str:
        return self._git.heads[str(self._path)]

    async def has_uncommitted_changes(self) -> bool:
        return str(self._path) in self._git.dirty

    async def add_worktree(self, path: Path, commit: str) -> Path:
        path.mkdir(parents=True, exist_ok=False)
        self._git.worktrees.append(path)
        self._git.heads[str(path)] = commit
        return path

    async def remove_worktree(self, path: Path) -> bool:
        if str(path) in self._git.fail_remove:
            raise BackendError(f"git worktree-remove failed: {path} is locked")
        if not path.exists():
            return False
        shutil.rmtree(path)
        self._git.worktrees = [entry for entry in self._git.worktrees if entry != path]
        return True

    async def list_worktrees(self) -> list[Path]:
        return [self._path, *[entry for entry in self._git.worktrees if entry.exists()]]

    async def prune_worktrees(self) -> None:
        self._git.prunes += 1

    async def commit_all(self, message: str) -> str | None:
        key = str(self._path)
        if key not in self._git.dirty:
            return None
        self._git.dirty.discard(key)
        commit = self._git.next_commit()
        self._git.heads[key] = commit
        return commit

    async def cherry_pick(self, commit: str) -> None:
        if commit in self._git.fail_picks:
            raise BackendError(f"git cherry-pick failed: conflict applying {commit}")
        self._git.picked.append(commit)

    async def reset(self, commit: str, *, mode: str) -> None:
        self._git.resets.append((str(self._path), commit, mode))
        self._git.heads[str(self._path)] = commit

    async def diff_stat(self, ref: str = "HEAD") -> str:
        return f" {len(self._git.picked)} files changed"


class FrozenClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings(tmp_path: Path) -> SwarmSettings:
    return SwarmSettings(
        swarm_root=tmp_path / "swarm",
        max_parallel_workers=3,
        max_review_attempts=3,
        profile_paths=(tmp_path / "profiles",),
    )


@pytest.fixture
def git() -> StubGit:
    return StubGit()


@pytest.fixture
def project(tmp_path: Path, git: StubGit) -> Path:
    path = (tmp_path / "project").resolve()
    path.mkdir()
    git.add_repo(path)
    return path


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store(settings: SwarmSettings, clock: FrozenClock) -> SessionStore:
    return SessionStore(settings.sessions_dir, clock=clock)


@pytest.fixture
def service(settings: SwarmSettings, git: StubGit, store: SessionStore, clock: FrozenClock) -> SwarmService:
    return SwarmService(
        settings,
        repository_factory=lambda path: StubRepository(git, path),
        store=store,
        clock=clock,
    )


def make_decomposition(*specs: tuple[str, list[str], list[str]]) -> Decomposition:
    """Build a decomposition from (id, files, dependencies) triples."""

    return Decomposition(
        epic=Epic(title="Add caching", description="cache expensive lookups"),
        subtasks=[
            SubtaskDraft(
                id=task_id,
                title=f"work on {task_id}",
                description=f"implement {task_id}",
                files=files,
                dependencies=deps,
                complexity=2,
            )
            for task_id, files, deps in specs
        ],
    )


@pytest.fixture
def decompose():
    return make_decomposition


@pytest.fixture
def repository_factory(git: StubGit):
    return lambda path: StubRepository(git, path)


@pytest.fixture
def start_session(service: SwarmService, project: Path):
    """Initialize a session on ``project`` and optionally apply a plan built from triples."""

    def _start(*specs: tuple[str, list[str], list[str]]) -> str:
        session_id = asyncio.run(service.init_session(str(project), "add caching"))["session_id"]
        if specs:
            service.tasks.apply_plan(session_id, make_decomposition(*specs))
        return session_id

    return _start
