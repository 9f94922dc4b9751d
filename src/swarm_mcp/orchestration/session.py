"""Session lifecycle: initialize, finalize, abort and garbage collection."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

from ..config import SwarmSettings
from ..errors import BackendError, PreconditionError, StateConflictError
from ..models import Failure, Plan, TaskState, TaskStatus
from ..storage import SessionStore
from .merge import MergeCoordinator
from .results import BatchResult
from .tasks import RepositoryFactory
from .worktrees import WorktreeManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GarbageReport:
    expired_sessions: list[str] = field(default_factory=list)
    orphaned_worktrees: BatchResult = field(default_factory=BatchResult)

    def to_dict(self) -> dict[str, Any]:
        return {
            "expired_sessions": list(self.expired_sessions),
            "orphaned_worktrees": self.orphaned_worktrees.to_dict(),
        }


@dataclass(slots=True)
class FinalizeReport:
    plan: Plan
    merged: BatchResult
    worktrees: BatchResult
    diff_stat: str


@dataclass(slots=True)
class AbortReport:
    plan: Plan
    failure: Failure
    worktrees: BatchResult


class SessionLifecycle:
    """Create sessions and tear them down so the repository ends in a known state.

    Finalize leaves every merged change staged on top of the start commit;
    abort forces the checkout back to the start commit and keeps the plan and
    a failure record for inspection.
    """

    def __init__(
        self,
        settings: SwarmSettings,
        store: SessionStore,
        repository_factory: RepositoryFactory,
        merger: MergeCoordinator,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._repository_factory = repository_factory
        self._merger = merger
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _worktrees(self, plan: Plan) -> WorktreeManager:
        return WorktreeManager(self._repository_factory(plan.project_path), self._settings.worktrees_dir)

    # -- initialize ------------------------------------------------------

    async def initialize(self, project_path: str | Path, task: str) -> tuple[Plan, GarbageReport]:
        project = Path(project_path).expanduser().resolve()
        if not task.strip():
            raise PreconditionError("task description must not be empty")
        repository = self._repository_factory(project)
        if not await repository.is_repo():
            raise PreconditionError(f"{project} is not a git repository")
        if await repository.has_uncommitted_changes():
            raise PreconditionError(
                f"{project} has uncommitted changes; commit or stash them before starting a swarm"
            )
        active = self._store.find_active_session(str(project))
        if active is not None:
            raise PreconditionError(f"session {active} is already active for {project}")

        garbage = self.collect_garbage()

        plan = Plan(
            session_id=uuid4().hex[:10],
            project_path=str(project),
            branch=await repository.current_branch(),
            start_commit=await repository.current_commit(),
            task=task.strip(),
            created_at=self._clock(),
        )
        self._store.write_plan(plan)
        self._store.write_tasks(plan.session_id, {})
        logger.info(
            "Session initialized",
            extra={"session_id": plan.session_id, "project": str(project), "commit": plan.start_commit},
        )
        return plan, garbage

    # -- finalize --------------------------------------------------------

    async def finalize(self, session_id: str) -> FinalizeReport:
        plan = self._store.require_plan(session_id)
        tasks = self._store.read_tasks(session_id)
        incomplete = [
            subtask.id
            for subtask in plan.subtasks
            if (tasks.get(subtask.id) or TaskState(task_id=subtask.id)).status is not TaskStatus.COMPLETE
        ]
        if incomplete:
            raise PreconditionError(f"cannot finalize: incomplete tasks: {', '.join(incomplete)}")

        merged = await self._merger.merge_all(session_id)
        if not merged.ok:
            details = "; ".join(f"{entry.item}: {entry.reason}" for entry in merged.failed)
            raise BackendError(f"cannot finalize: merge failed for {details}")

        worktrees = await self._worktrees(plan).cleanup()
        repository = self._repository_factory(plan.project_path)
        await repository.reset(plan.start_commit, mode="soft")
        diff_stat = await repository.diff_stat("HEAD")
        self._store.delete_session(session_id)
        logger.info(
            "Session finalized",
            extra={"session_id": session_id, "merged": len(merged.succeeded)},
        )
        return FinalizeReport(plan=plan, merged=merged, worktrees=worktrees, diff_stat=diff_stat)

    # -- abort -----------------------------------------------------------

    async def abort(
        self,
        session_id: str,
        *,
        reason: str | None = None,
        failed_task: str | None = None,
        error: str | None = None,
    ) -> AbortReport:
        plan = self._store.require_plan(session_id)
        if self._store.read_failure(session_id) is not None:
            raise StateConflictError(f"session {session_id} is already aborted")
        tasks = self._store.read_tasks(session_id)

        worktrees = await self._worktrees(plan).cleanup()
        if not worktrees.ok:
            logger.warning(
                "Some worktrees could not be removed during abort",
                extra={"session_id": session_id, "failed": [entry.item for entry in worktrees.failed]},
            )
        await self._repository_factory(plan.project_path).reset(plan.start_commit, mode="hard")

        completed: list[str] = []
        pending: list[str] = []
        for subtask in plan.subtasks:
            state = tasks.get(subtask.id) or TaskState(task_id=subtask.id)
            if state.status is TaskStatus.COMPLETE:
                completed.append(subtask.id)
            elif state.status in {TaskStatus.PENDING, TaskStatus.RUNNING, TaskStatus.REVIEWING}:
                pending.append(subtask.id)

        failed_state = tasks.get(failed_task) if failed_task else None
        failure = Failure(
            failed_task=failed_task or "unknown",
            error=error or reason or "aborted by user",
            attempt=failed_state.review_attempts if failed_state and failed_state.review_attempts else 1,
            completed_tasks=completed,
            pending_tasks=pending,
            timestamp=self._clock(),
        )
        self._store.write_failure(session_id, failure)
        self._store.delete_session(session_id, keep_plan_and_failure=True)
        logger.info(
            "Session aborted",
            extra={"session_id": session_id, "failed_task": failure.failed_task},
        )
        return AbortReport(plan=plan, failure=failure, worktrees=worktrees)

    # -- garbage collection ----------------------------------------------

    def collect_garbage(self) -> GarbageReport:
        return collect_garbage(self._settings, self._store)


def remove_orphaned_worktrees(worktrees_dir: Path, store: SessionStore) -> BatchResult:
    """Remove worktree directories whose project has no stored session."""

    result = BatchResult()
    if not worktrees_dir.exists():
        return result
    projects = {Path(summary.project_path).name for summary in store.list_sessions()}
    for entry in sorted(worktrees_dir.iterdir()):
        if not entry.is_dir():
            continue
        if any(entry.name.startswith(f"{project}-") for project in projects):
            continue
        try:
            shutil.rmtree(entry)
        except OSError as exc:
            result.add_failure(str(entry), str(exc))
            continue
        result.succeeded.append(str(entry))
    return result


def collect_garbage(settings: SwarmSettings, store: SessionStore) -> GarbageReport:
    """Delete sessions idle past the TTL, then worktree dirs no session owns."""

    report = GarbageReport(
        expired_sessions=store.cleanup_expired(settings.session_ttl),
        orphaned_worktrees=remove_orphaned_worktrees(settings.worktrees_dir, store),
    )
    if report.expired_sessions or report.orphaned_worktrees.succeeded:
        logger.info(
            "Garbage collected",
            extra={
                "sessions": len(report.expired_sessions),
                "worktrees": len(report.orphaned_worktrees.succeeded),
            },
        )
    return report


__all__ = [
    "AbortReport",
    "FinalizeReport",
    "GarbageReport",
    "SessionLifecycle",
    "collect_garbage",
    "remove_orphaned_worktrees",
]
