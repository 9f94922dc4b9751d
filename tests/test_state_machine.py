from __future__ import annotations

from datetime import datetime, timezone

import pytest

from swarm_mcp.errors import StateConflictError
from swarm_mcp.models import TaskState, TaskStatus
from swarm_mcp.orchestration import state_machine as sm

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _running(task_id: str = "a") -> TaskState:
    return sm.start(sm.initial_state(task_id, now=NOW), worker_id=f"worker-{task_id}", now=NOW)


def test_happy_path_through_review() -> None:
    state = _running()
    assert state.status is TaskStatus.RUNNING
    assert state.worker_id == "worker-a"
    assert state.started_at == NOW

    state = sm.begin_review(state, now=NOW)
    state = sm.complete(state, commit="abc123", now=NOW)

    assert state.status is TaskStatus.COMPLETE
    assert state.commit == "abc123"
    assert state.empty_diff is False
    assert state.completed_at == NOW


def test_complete_without_commit_marks_empty_diff() -> None:
    state = sm.complete(_running(), commit=None, now=NOW)

    assert state.status is TaskStatus.COMPLETE
    assert state.commit is None
    assert state.empty_diff is True


def test_transitions_return_new_records() -> None:
    original = sm.initial_state("a", now=NOW)
    started = sm.start(original, worker_id="w", now=NOW)

    assert original.status is TaskStatus.PENDING
    assert started is not original


@pytest.mark.parametrize(
    "current, target",
    [
        (TaskStatus.PENDING, TaskStatus.COMPLETE),
        (TaskStatus.PENDING, TaskStatus.REVIEWING),
        (TaskStatus.COMPLETE, TaskStatus.RUNNING),
        (TaskStatus.FAILED, TaskStatus.RUNNING),
        (TaskStatus.CANCELLED, TaskStatus.PENDING),
    ],
)
def test_undefined_edges_are_refused(current: TaskStatus, target: TaskStatus) -> None:
    state = TaskState(task_id="a", status=current)

    with pytest.raises(sm.InvalidTransitionError) as excinfo:
        sm.transition(state, target, now=NOW)

    assert isinstance(excinfo.value, StateConflictError)
    assert excinfo.value.current is current
    assert excinfo.value.target is target
    assert f"from {current.value} to {target.value}" in str(excinfo.value)


def test_request_changes_returns_to_running_until_limit() -> None:
    state = sm.begin_review(_running(), now=NOW)

    state = sm.request_changes(state, max_attempts=3, now=NOW)
    assert state.status is TaskStatus.RUNNING
    assert state.review_attempts == 1

    state = sm.request_changes(sm.begin_review(state, now=NOW), max_attempts=3, now=NOW)
    assert state.status is TaskStatus.RUNNING
    assert state.review_attempts == 2

    state = sm.request_changes(sm.begin_review(state, now=NOW), max_attempts=3, now=NOW)
    assert state.status is TaskStatus.FAILED
    assert state.review_attempts == 3
    assert state.error == "failed after 3 review attempts"


def test_cancel_is_allowed_from_any_live_state() -> None:
    for state in (
        sm.initial_state("a", now=NOW),
        _running(),
        sm.begin_review(_running(), now=NOW),
    ):
        cancelled = sm.cancel(state, reason=None, now=NOW)
        assert cancelled.status is TaskStatus.CANCELLED
        assert cancelled.error == "cancelled"


def test_terminal_states_have_no_exits() -> None:
    for status in (TaskStatus.COMPLETE, TaskStatus.FAILED, TaskStatus.CANCELLED):
        assert status.is_terminal
        assert not sm.ALLOWED_TRANSITIONS[status]
