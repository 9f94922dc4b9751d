"""Authoritative lifecycle transitions for a single task.

::

    pending -> running -> reviewing -> complete
                  ^           |
                  +-----------+  (changes requested)
    reviewing -> failed          (review attempts exhausted)
    pending | running | reviewing -> cancelled

Every function returns a new TaskState; callers persist the whole record.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ..errors import StateConflictError
from ..models import TaskState, TaskStatus

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING, TaskStatus.CANCELLED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.REVIEWING, TaskStatus.COMPLETE, TaskStatus.CANCELLED}),
    TaskStatus.REVIEWING: frozenset(
        {TaskStatus.RUNNING, TaskStatus.COMPLETE, TaskStatus.FAILED, TaskStatus.CANCELLED}
    ),
    TaskStatus.COMPLETE: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


class InvalidTransitionError(StateConflictError):
    """Raised when a task is asked to move along an edge the lifecycle does not have."""

    def __init__(self, state: TaskState, target: TaskStatus) -> None:
        super().__init__(
            f"task {state.task_id} cannot move from {state.status.value} to {target.value}"
        )
        self.current = state.status
        self.target = target


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(state: TaskState, target: TaskStatus, *, now: datetime, **changes: Any) -> TaskState:
    if not can_transition(state.status, target):
        raise InvalidTransitionError(state, target)
    return state.model_copy(update={**changes, "status": target, "updated_at": now})


def initial_state(task_id: str, *, now: datetime) -> TaskState:
    return TaskState(task_id=task_id, status=TaskStatus.PENDING, updated_at=now)


def start(state: TaskState, *, worker_id: str, now: datetime) -> TaskState:
    return transition(state, TaskStatus.RUNNING, now=now, worker_id=worker_id, started_at=now, error=None)


def begin_review(state: TaskState, *, now: datetime) -> TaskState:
    return transition(state, TaskStatus.REVIEWING, now=now)


def request_changes(state: TaskState, *, max_attempts: int, now: datetime) -> TaskState:
    """Apply a needs-changes verdict: back to running, or failed once attempts run out."""

    attempts = min(state.review_attempts + 1, max_attempts)
    if attempts >= max_attempts:
        return transition(
            state,
            TaskStatus.FAILED,
            now=now,
            review_attempts=attempts,
            completed_at=now,
            error=f"failed after {attempts} review attempts",
        )
    return transition(state, TaskStatus.RUNNING, now=now, review_attempts=attempts)


def complete(state: TaskState, *, commit: str | None, now: datetime) -> TaskState:
    return transition(
        state,
        TaskStatus.COMPLETE,
        now=now,
        commit=commit,
        empty_diff=commit is None,
        completed_at=now,
    )


def cancel(state: TaskState, *, reason: str | None, now: datetime) -> TaskState:
    return transition(state, TaskStatus.CANCELLED, now=now, completed_at=now, error=reason or "cancelled")


__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidTransitionError",
    "begin_review",
    "can_transition",
    "cancel",
    "complete",
    "initial_state",
    "request_changes",
    "start",
    "transition",
]
