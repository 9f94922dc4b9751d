from __future__ import annotations

import asyncio

import pytest

from swarm_mcp.errors import PlanValidationError, ReviewAttemptsExhaustedError
from swarm_mcp.models import TaskStatus
from swarm_mcp.orchestration import InvalidTransitionError
from swarm_mcp.service import SwarmService

ISSUES = [{"file": "a.py", "line": 3, "issue": "missing test", "suggestion": "add one"}]


@pytest.fixture
def running_task(service: SwarmService, start_session) -> str:
    session_id = start_session(("a", ["a.py"], []))
    asyncio.run(service.create_worktree(session_id, "a"))
    service.spawn(session_id, "a")
    return session_id


def _feedback(service: SwarmService, session_id: str) -> list[dict]:
    return [message for message in service.inbox(session_id, "worker-a")["messages"] if message["type"] != "spawn"]


def test_approval_keeps_task_in_review(service: SwarmService, running_task: str) -> None:
    payload = service.review_feedback(running_task, "a", "approved", summary="looks good")

    assert payload["task_status"] == "reviewing"
    assert payload["review_attempts"] == 0
    assert payload["remaining_attempts"] == 3
    messages = _feedback(service, running_task)
    assert [message["type"] for message in messages] == ["approved"]
    assert messages[0]["sender"] == "reviewer"
    assert messages[0]["body"] == "looks good"


def test_needs_changes_sends_task_back_with_issues(service: SwarmService, running_task: str) -> None:
    payload = service.review_feedback(running_task, "a", "needs_changes", issues=ISSUES)

    assert payload["task_status"] == "running"
    assert payload["review_attempts"] == 1
    assert payload["remaining_attempts"] == 2
    message = _feedback(service, running_task)[0]
    assert message["type"] == "feedback"
    assert "a.py:3: missing test (suggestion: add one)" in message["body"]
    assert message["data"]["attempt"] == 1
    assert message["data"]["max_attempts"] == 3


def test_issues_may_arrive_as_json_text(service: SwarmService, running_task: str) -> None:
    payload = service.review_feedback(
        running_task, "a", "needs_changes", issues='[{"file": "a.py", "issue": "typo"}]'
    )

    assert payload["review_attempts"] == 1
    assert _feedback(service, running_task)[0]["data"]["issues"][0]["file"] == "a.py"


def test_third_rejection_fails_the_task(service: SwarmService, running_task: str) -> None:
    service.review_feedback(running_task, "a", "needs_changes", issues=ISSUES)
    service.review_feedback(running_task, "a", "needs_changes", issues=ISSUES)

    with pytest.raises(ReviewAttemptsExhaustedError, match="failed after 3 review attempts"):
        service.review_feedback(running_task, "a", "needs_changes", issues=ISSUES)

    state = service.store.read_tasks(running_task)["a"]
    assert state.status is TaskStatus.FAILED
    assert state.review_attempts == 3
    assert len(_feedback(service, running_task)) == 3
    assert service.status(running_task)["has_failures"] is True


def test_verdict_on_a_pending_task_is_refused(service: SwarmService, start_session) -> None:
    session_id = start_session(("a", ["a.py"], []))

    with pytest.raises(InvalidTransitionError, match="from pending to reviewing"):
        service.review_feedback(session_id, "a", "approved")


@pytest.mark.parametrize(
    "status, issues, message",
    [
        ("maybe", None, "invalid review verdict"),
        ("needs_changes", "[{oops", "invalid json in issues field"),
    ],
)
def test_malformed_verdicts_are_rejected(
    service: SwarmService, running_task: str, status: str, issues, message: str
) -> None:
    with pytest.raises(PlanValidationError, match=message):
        service.review_feedback(running_task, "a", status, issues=issues)

    assert service.store.read_tasks(running_task)["a"].status is TaskStatus.RUNNING


def test_explicit_review_request_then_approval(service: SwarmService, running_task: str) -> None:
    requested = service.request_review(running_task, "a")
    approved = service.review_feedback(running_task, "a", "approved")

    assert requested["task"]["status"] == "reviewing"
    assert approved["task_status"] == "reviewing"
