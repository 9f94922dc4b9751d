"""Apply reviewer verdicts to tasks and relay them to the worker."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from ..errors import ReviewAttemptsExhaustedError, TaskNotFoundError
from ..models import MessageType, ReviewVerdict, TaskState, TaskStatus
from ..storage import SessionStore
from . import state_machine
from .mailbox import Mailbox
from .tasks import worker_id_for

logger = logging.getLogger(__name__)

REVIEWER_ID = "reviewer"


@dataclass(slots=True)
class ReviewOutcome:
    state: TaskState
    verdict: ReviewVerdict
    message_id: str
    remaining_attempts: int

    @property
    def exhausted(self) -> bool:
        return self.state.status is TaskStatus.FAILED


def _feedback_body(verdict: ReviewVerdict) -> str:
    if verdict.status == "approved":
        return verdict.summary or "approved"
    lines = [verdict.summary or "changes requested"]
    for issue in verdict.issues:
        location = issue.file if issue.line is None else f"{issue.file}:{issue.line}"
        entry = f"- {location}: {issue.issue}"
        if issue.suggestion:
            entry += f" (suggestion: {issue.suggestion})"
        lines.append(entry)
    return "\n".join(lines)


class ReviewLoop:
    """Bounded reviewer/worker feedback cycle.

    A needs-changes verdict sends the task back to running until
    ``max_attempts`` is reached, at which point the task fails and
    :class:`ReviewAttemptsExhaustedError` is raised after the state and the
    feedback message are persisted.
    """

    def __init__(
        self,
        store: SessionStore,
        mailbox: Mailbox,
        *,
        max_attempts: int,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._mailbox = mailbox
        self._max_attempts = max_attempts
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def submit(
        self,
        session_id: str,
        task_id: str,
        verdict: ReviewVerdict,
        *,
        worker_id: str | None = None,
    ) -> ReviewOutcome:
        plan = self._store.require_plan(session_id)
        if plan.get_subtask(task_id) is None:
            raise TaskNotFoundError(task_id)

        def _apply(tasks: dict[str, TaskState]) -> TaskState:
            state = tasks.get(task_id)
            if state is None:
                raise TaskNotFoundError(task_id)
            now = self._clock()
            if state.status is TaskStatus.RUNNING:
                state = state_machine.begin_review(state, now=now)
            elif state.status is not TaskStatus.REVIEWING:
                raise state_machine.InvalidTransitionError(state, TaskStatus.REVIEWING)
            if verdict.status == "needs_changes":
                state = state_machine.request_changes(state, max_attempts=self._max_attempts, now=now)
            tasks[task_id] = state
            return state

        state = self._store.update_tasks(session_id, _apply)
        recipient = worker_id or state.worker_id or worker_id_for(task_id)
        message_type = MessageType.APPROVED if verdict.status == "approved" else MessageType.FEEDBACK
        message = self._mailbox.send(
            session_id,
            sender=REVIEWER_ID,
            recipient=recipient,
            type=message_type,
            body=_feedback_body(verdict),
            data={
                "task_id": task_id,
                "status": verdict.status,
                "issues": [issue.model_dump() for issue in verdict.issues],
                "attempt": state.review_attempts,
                "max_attempts": self._max_attempts,
            },
        )
        logger.info(
            "Review verdict recorded",
            extra={
                "session_id": session_id,
                "task_id": task_id,
                "verdict": verdict.status,
                "attempt": state.review_attempts,
            },
        )

        if state.status is TaskStatus.FAILED:
            raise ReviewAttemptsExhaustedError(task_id, state.review_attempts)

        return ReviewOutcome(
            state=state,
            verdict=verdict,
            message_id=message.id,
            remaining_attempts=max(0, self._max_attempts - state.review_attempts),
        )


__all__ = ["REVIEWER_ID", "ReviewLoop", "ReviewOutcome"]
