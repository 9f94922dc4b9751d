"""Cherry-pick completed task commits onto the session branch."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Mapping

from ..errors import PreconditionError, StateConflictError, SwarmError, TaskNotFoundError
from ..models import Plan, Subtask, TaskState, TaskStatus
from ..storage import SessionStore
from .planner import dependency_order
from .results import BatchResult
from .tasks import RepositoryFactory

logger = logging.getLogger(__name__)


def is_merged(state: TaskState | None) -> bool:
    """A task counts as merged once its commit landed, or when it produced no commit at all."""

    if state is None or state.status is not TaskStatus.COMPLETE:
        return False
    return state.merged_at is not None or state.commit is None


def needs_merge(state: TaskState | None) -> bool:
    return (
        state is not None
        and state.status is TaskStatus.COMPLETE
        and state.commit is not None
        and state.merged_at is None
    )


def unmerged_dependencies(subtask: Subtask, tasks: Mapping[str, TaskState]) -> list[str]:
    return [dep for dep in subtask.dependencies if not is_merged(tasks.get(dep))]


class MergeCoordinator:
    """Serialize merges of task commits into the project checkout."""

    def __init__(
        self,
        store: SessionStore,
        repository_factory: RepositoryFactory,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._repository_factory = repository_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _apply(self, plan: Plan, state: TaskState) -> TaskState:
        repository = self._repository_factory(plan.project_path)
        await repository.cherry_pick(state.commit)
        merged_at = self._clock()

        def _mark(tasks: dict[str, TaskState]) -> TaskState:
            current = tasks[state.task_id]
            updated = current.model_copy(update={"merged_at": merged_at, "updated_at": merged_at})
            tasks[state.task_id] = updated
            return updated

        merged = self._store.update_tasks(plan.session_id, _mark)
        logger.info(
            "Merged task commit",
            extra={"session_id": plan.session_id, "task_id": state.task_id, "commit": state.commit},
        )

        if merged.worktree:
            try:
                await repository.remove_worktree(Path(merged.worktree))
            except SwarmError as exc:
                logger.warning(
                    "Worktree removal after merge failed",
                    extra={"task_id": state.task_id, "path": merged.worktree, "error": str(exc)},
                )
            else:
                merged = self._unbind(plan.session_id, state.task_id)
        return merged

    def _unbind(self, session_id: str, task_id: str) -> TaskState:
        def _clear(tasks: dict[str, TaskState]) -> TaskState:
            updated = tasks[task_id].model_copy(update={"worktree": None})
            tasks[task_id] = updated
            return updated

        return self._store.update_tasks(session_id, _clear)

    async def merge_task(self, session_id: str, task_id: str) -> TaskState:
        plan = self._store.require_plan(session_id)
        subtask = plan.get_subtask(task_id)
        if subtask is None:
            raise TaskNotFoundError(task_id)
        tasks = self._store.read_tasks(session_id)
        state = tasks.get(task_id)
        if state is None or state.status is not TaskStatus.COMPLETE:
            status = state.status.value if state is not None else TaskStatus.PENDING.value
            raise PreconditionError(f"task {task_id} is {status}; only complete tasks can be merged")
        if state.merged_at is not None:
            raise StateConflictError(f"task {task_id} is already merged")
        if state.commit is None:
            raise PreconditionError(f"task {task_id} completed without changes; nothing to merge")
        blocked = unmerged_dependencies(subtask, tasks)
        if blocked:
            raise PreconditionError(
                f"cannot merge {task_id}: dependencies not merged: {', '.join(blocked)}"
            )
        return await self._apply(plan, state)

    async def merge_all(self, session_id: str) -> BatchResult:
        """Merge every completed, unmerged task in dependency order.

        A failed cherry-pick is recorded and the loop continues; tasks that
        depend on an unmerged task are skipped.
        """

        plan = self._store.require_plan(session_id)
        result = BatchResult()
        for subtask in dependency_order(plan.subtasks):
            tasks = self._store.read_tasks(session_id)
            state = tasks.get(subtask.id)
            if state is not None and state.empty_diff and state.status is TaskStatus.COMPLETE:
                result.add_skipped(subtask.id, "completed without changes")
                continue
            if not needs_merge(state):
                continue
            blocked = unmerged_dependencies(subtask, tasks)
            if blocked:
                result.add_skipped(subtask.id, f"dependencies not merged: {', '.join(blocked)}")
                continue
            try:
                await self._apply(plan, state)
            except SwarmError as exc:
                logger.warning(
                    "Merge failed",
                    extra={"session_id": session_id, "task_id": subtask.id, "error": str(exc)},
                )
                result.add_failure(subtask.id, str(exc))
                continue
            result.succeeded.append(subtask.id)
        return result


__all__ = ["MergeCoordinator", "is_merged", "needs_merge", "unmerged_dependencies"]
