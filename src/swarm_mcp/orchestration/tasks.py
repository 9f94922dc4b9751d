"""Task-level operations: plan application, worktree binding, spawn, completion."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from ..config import SwarmSettings
from ..errors import PreconditionError, StateConflictError, TaskNotFoundError
from ..git import GitRepository
from ..models import Decomposition, MessageType, Plan, Subtask, TaskState, TaskStatus
from ..storage import SessionStore
from . import admission, state_machine
from .admission import AdmissionReport
from .mailbox import Mailbox
from .planner import PlanReport, validate_plan
from .results import BatchResult
from .worktrees import WorktreeManager

logger = logging.getLogger(__name__)

RepositoryFactory = Callable[[Path | str], GitRepository]

ORCHESTRATOR_ID = "orchestrator"


def worker_id_for(task_id: str) -> str:
    return f"worker-{task_id}"


@dataclass(slots=True)
class SpawnResult:
    plan: Plan
    subtask: Subtask
    state: TaskState
    spawn_data: dict[str, Any]
    message_id: str


@dataclass(slots=True)
class CompletionResult:
    subtask: Subtask
    state: TaskState
    message_id: str


class TaskController:
    """Drive individual tasks through their lifecycle against the session store."""

    def __init__(
        self,
        settings: SwarmSettings,
        store: SessionStore,
        mailbox: Mailbox,
        repository_factory: RepositoryFactory,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._mailbox = mailbox
        self._repository_factory = repository_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def worktrees(self, plan: Plan) -> WorktreeManager:
        return WorktreeManager(self._repository_factory(plan.project_path), self._settings.worktrees_dir)

    def _require_subtask(self, plan: Plan, task_id: str) -> Subtask:
        subtask = plan.get_subtask(task_id)
        if subtask is None:
            raise TaskNotFoundError(task_id)
        return subtask

    @staticmethod
    def _require_state(tasks: dict[str, TaskState], task_id: str) -> TaskState:
        state = tasks.get(task_id)
        if state is None:
            raise TaskNotFoundError(task_id)
        return state

    # -- planning --------------------------------------------------------

    def apply_plan(self, session_id: str, decomposition: Decomposition) -> tuple[Plan, PlanReport]:
        """Validate a decomposition and replace the session's epic, subtasks and task states."""

        plan = self._store.require_plan(session_id)
        report = validate_plan(decomposition, max_parallel=self._settings.max_parallel_workers)
        updated = plan.model_copy(update={"epic": report.epic, "subtasks": report.subtasks})
        now = self._clock()

        def _replace(tasks: dict[str, TaskState]) -> None:
            started = sorted(task_id for task_id, state in tasks.items() if state.status is not TaskStatus.PENDING)
            if started:
                raise StateConflictError(
                    f"cannot replace plan: tasks already started: {', '.join(started)}"
                )
            fresh: dict[str, TaskState] = {}
            for subtask in report.subtasks:
                previous = tasks.get(subtask.id)
                state = state_machine.initial_state(subtask.id, now=now)
                if previous is not None and previous.worktree:
                    state = state.model_copy(update={"worktree": previous.worktree})
                fresh[subtask.id] = state
            tasks.clear()
            tasks.update(fresh)
            self._store.write_plan(updated)

        self._store.update_tasks(session_id, _replace)
        logger.info(
            "Plan validated",
            extra={"session_id": session_id, "subtasks": report.subtask_count},
        )
        return updated, report

    # -- admission -------------------------------------------------------

    def ready_tasks(self, session_id: str) -> tuple[Plan, AdmissionReport]:
        plan = self._store.require_plan(session_id)
        tasks = self._store.read_tasks(session_id)
        return plan, admission.evaluate(plan, tasks, max_parallel=self._settings.max_parallel_workers)

    # -- worktrees -------------------------------------------------------

    async def create_worktree(self, session_id: str, task_id: str) -> Path:
        plan = self._store.require_plan(session_id)
        self._require_subtask(plan, task_id)
        tasks = self._store.read_tasks(session_id)
        state = tasks.get(task_id) or state_machine.initial_state(task_id, now=self._clock())
        if state.status is not TaskStatus.PENDING:
            raise StateConflictError(f"task {task_id} is {state.status.value}; worktrees bind to pending tasks")
        if state.worktree and Path(state.worktree).exists():
            raise StateConflictError(f"task {task_id} already has a worktree at {state.worktree}")

        manager = self.worktrees(plan)
        path = await manager.create(task_id, plan.start_commit)

        def _bind(current: dict[str, TaskState]) -> None:
            existing = current.get(task_id) or state_machine.initial_state(task_id, now=self._clock())
            if existing.status is not TaskStatus.PENDING:
                raise StateConflictError(f"task {task_id} changed to {existing.status.value} while binding")
            current[task_id] = existing.model_copy(
                update={"worktree": str(path), "review_attempts": 0, "updated_at": self._clock()}
            )

        try:
            self._store.update_tasks(session_id, _bind)
        except StateConflictError:
            await manager.remove(path)
            raise
        return path

    async def remove_worktree(self, session_id: str, task_id: str) -> tuple[Path, bool]:
        plan = self._store.require_plan(session_id)
        self._require_subtask(plan, task_id)
        manager = self.worktrees(plan)
        state = self._store.read_tasks(session_id).get(task_id)
        path = Path(state.worktree) if state is not None and state.worktree else manager.path_for(task_id)
        removed = await manager.remove(path)
        self.unbind_worktree(session_id, task_id)
        return path, removed

    def unbind_worktree(self, session_id: str, task_id: str) -> None:
        def _unbind(tasks: dict[str, TaskState]) -> None:
            state = tasks.get(task_id)
            if state is not None and state.worktree:
                tasks[task_id] = state.model_copy(update={"worktree": None, "updated_at": self._clock()})

        self._store.update_tasks(session_id, _unbind)

    async def list_worktrees(self, session_id: str) -> list[Path]:
        plan = self._store.require_plan(session_id)
        return await self.worktrees(plan).list_active()

    async def cleanup_worktrees(self, session_id: str) -> BatchResult:
        plan = self._store.require_plan(session_id)
        result = await self.worktrees(plan).cleanup()

        def _unbind_all(tasks: dict[str, TaskState]) -> None:
            for task_id, state in list(tasks.items()):
                if state.worktree and not Path(state.worktree).exists():
                    tasks[task_id] = state.model_copy(update={"worktree": None, "updated_at": self._clock()})

        self._store.update_tasks(session_id, _unbind_all)
        return result

    # -- lifecycle -------------------------------------------------------

    def spawn(self, session_id: str, task_id: str) -> SpawnResult:
        """Admit a ready task, mark it running and post the spawn message to its worker."""

        plan = self._store.require_plan(session_id)
        worker_id = worker_id_for(task_id)
        now = self._clock()

        def _admit(tasks: dict[str, TaskState]) -> tuple[Subtask, TaskState]:
            subtask = admission.check_spawnable(
                plan, tasks, task_id, max_parallel=self._settings.max_parallel_workers
            )
            started = state_machine.start(tasks[task_id], worker_id=worker_id, now=now)
            tasks[task_id] = started
            return subtask, started

        subtask, state = self._store.update_tasks(session_id, _admit)

        spawn_data = {
            "session_id": session_id,
            "epic": {
                "title": plan.epic.title,
                "description": plan.epic.description,
                "original_task": plan.task,
            },
            "all_subtasks": [
                {"id": other.id, "title": other.title, "is_current": other.id == task_id}
                for other in plan.subtasks
            ],
            "task_id": subtask.id,
            "task_title": subtask.title,
            "task_description": subtask.description,
            "files": subtask.files,
            "dependencies": subtask.dependencies,
            "worktree_path": state.worktree,
            "worker_id": worker_id,
        }
        message = self._mailbox.send(
            session_id,
            sender=ORCHESTRATOR_ID,
            recipient=worker_id,
            type=MessageType.SPAWN,
            body=f"spawn worker for task: {subtask.title}",
            data=spawn_data,
        )
        logger.info("Spawned worker", extra={"session_id": session_id, "task_id": task_id, "worker_id": worker_id})
        return SpawnResult(plan=plan, subtask=subtask, state=state, spawn_data=spawn_data, message_id=message.id)

    def request_review(self, session_id: str, task_id: str) -> TaskState:
        plan = self._store.require_plan(session_id)
        self._require_subtask(plan, task_id)

        def _review(tasks: dict[str, TaskState]) -> TaskState:
            state = state_machine.begin_review(self._require_state(tasks, task_id), now=self._clock())
            tasks[task_id] = state
            return state

        return self._store.update_tasks(session_id, _review)

    async def complete(self, session_id: str, task_id: str, *, summary: str | None = None) -> CompletionResult:
        """Commit the worker's changes in its worktree and mark the task complete."""

        plan = self._store.require_plan(session_id)
        subtask = self._require_subtask(plan, task_id)
        state = self._require_state(self._store.read_tasks(session_id), task_id)
        if not state_machine.can_transition(state.status, TaskStatus.COMPLETE):
            raise StateConflictError(f"task {task_id} cannot complete from {state.status.value}")
        if not state.worktree:
            raise PreconditionError(f"no worktree found for task {task_id}")

        commit = await self._repository_factory(state.worktree).commit_all(f"swarm: {subtask.title}")
        if commit is None:
            logger.warning(
                "Task completed with nothing to commit",
                extra={"session_id": session_id, "task_id": task_id},
            )

        def _complete(tasks: dict[str, TaskState]) -> TaskState:
            done = state_machine.complete(self._require_state(tasks, task_id), commit=commit, now=self._clock())
            tasks[task_id] = done
            return done

        completed = self._store.update_tasks(session_id, _complete)
        message = self._mailbox.send(
            session_id,
            sender=completed.worker_id or worker_id_for(task_id),
            recipient=ORCHESTRATOR_ID,
            type=MessageType.COMPLETE,
            body=summary or f"task {subtask.title} complete",
            data={
                "task_id": task_id,
                "commit": commit,
                "empty_diff": commit is None,
                "summary": summary,
            },
        )
        return CompletionResult(subtask=subtask, state=completed, message_id=message.id)

    def cancel(self, session_id: str, task_id: str, *, reason: str | None = None) -> TaskState:
        plan = self._store.require_plan(session_id)
        self._require_subtask(plan, task_id)

        def _cancel(tasks: dict[str, TaskState]) -> TaskState:
            state = tasks.get(task_id) or state_machine.initial_state(task_id, now=self._clock())
            cancelled = state_machine.cancel(state, reason=reason, now=self._clock())
            tasks[task_id] = cancelled
            return cancelled

        return self._store.update_tasks(session_id, _cancel)


__all__ = [
    "CompletionResult",
    "ORCHESTRATOR_ID",
    "RepositoryFactory",
    "SpawnResult",
    "TaskController",
    "worker_id_for",
]
