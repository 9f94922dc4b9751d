"""Decide which pending tasks may start under the parallel worker bound."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from ..errors import CapacityError, DependencyNotReadyError, PreconditionError, StateConflictError, TaskNotFoundError
from ..models import Plan, Subtask, TaskState, TaskStatus


@dataclass(slots=True)
class AdmissionReport:
    ready: list[Subtask]
    running_count: int
    available_slots: int
    can_spawn: int
    max_parallel: int


def status_of(tasks: Mapping[str, TaskState], task_id: str) -> TaskStatus:
    state = tasks.get(task_id)
    return state.status if state is not None else TaskStatus.PENDING


def running_count(tasks: Mapping[str, TaskState]) -> int:
    return sum(1 for state in tasks.values() if state.status.is_active)


def dependencies_complete(subtask: Subtask, tasks: Mapping[str, TaskState]) -> bool:
    return all(status_of(tasks, dep) is TaskStatus.COMPLETE for dep in subtask.dependencies)


def is_ready(subtask: Subtask, tasks: Mapping[str, TaskState]) -> bool:
    state = tasks.get(subtask.id)
    if state is None or state.status is not TaskStatus.PENDING or not state.worktree:
        return False
    return dependencies_complete(subtask, tasks)


def evaluate(plan: Plan, tasks: Mapping[str, TaskState], *, max_parallel: int) -> AdmissionReport:
    ready = [subtask for subtask in plan.subtasks if is_ready(subtask, tasks)]
    running = running_count(tasks)
    slots = max(0, max_parallel - running)
    return AdmissionReport(
        ready=ready,
        running_count=running,
        available_slots=slots,
        can_spawn=min(len(ready), slots),
        max_parallel=max_parallel,
    )


def check_spawnable(
    plan: Plan,
    tasks: Mapping[str, TaskState],
    task_id: str,
    *,
    max_parallel: int,
) -> Subtask:
    """Return the subtask if it may start now, otherwise raise the specific refusal."""

    subtask = plan.get_subtask(task_id)
    if subtask is None:
        raise TaskNotFoundError(task_id)

    status = status_of(tasks, task_id)
    if status.is_active:
        raise StateConflictError(f"task {task_id} is already running")
    if status is not TaskStatus.PENDING:
        raise StateConflictError(f"task {task_id} is already {status.value}")

    for dep in subtask.dependencies:
        if status_of(tasks, dep) is not TaskStatus.COMPLETE:
            raise DependencyNotReadyError(f"cannot spawn {task_id}: dependency {dep} not complete")

    if running_count(tasks) >= max_parallel:
        raise CapacityError(
            f"cannot spawn {task_id}: max parallel workers ({max_parallel}) reached"
        )

    state = tasks.get(task_id)
    if state is None or not state.worktree:
        raise PreconditionError(f"no worktree found for task {task_id}. create worktree first.")
    return subtask


__all__ = [
    "AdmissionReport",
    "check_spawnable",
    "dependencies_complete",
    "evaluate",
    "is_ready",
    "running_count",
    "status_of",
]
