"""Swarm operations as plain-dict payloads, shared by the MCP tools and the diag CLI."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from .config import SwarmSettings
from .errors import PlanValidationError, PreconditionError, ReviewAttemptsExhaustedError, TaskNotFoundError
from .git import GitNotFoundError, GitRepository, GitRunner
from .models import Message, ReviewVerdict, TaskState, TaskStatus
from .orchestration import (
    BatchResult,
    Mailbox,
    MergeCoordinator,
    PollResult,
    RepositoryFactory,
    ReviewLoop,
    SessionLifecycle,
    TaskController,
    parse_decomposition,
)
from .orchestration.mailbox import DEFAULT_READ_LIMIT
from .orchestration.prompts import decomposition_prompt, review_focus, reviewer_brief, worker_prompt
from .profiles import AgentProfile, ProfileLoadError, ProfileLoader
from .storage import ChromaJournal, SessionStore

logger = logging.getLogger(__name__)


def _message_payload(message: Message) -> dict[str, Any]:
    return message.model_dump(mode="json")


def _poll_payload(result: PollResult) -> dict[str, Any]:
    return {
        "found": result.found,
        "count": result.count,
        "latest": _message_payload(result.latest) if result.latest else None,
        "all": [_message_payload(message) for message in result.all],
    }


def _state_payload(state: TaskState) -> dict[str, Any]:
    return state.model_dump(mode="json")


class SwarmService:
    """Compose the orchestration core around one swarm root."""

    def __init__(
        self,
        settings: SwarmSettings,
        *,
        git_runner: GitRunner | None = None,
        repository_factory: RepositoryFactory | None = None,
        profiles: ProfileLoader | None = None,
        journal: ChromaJournal | None = None,
        store: SessionStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._git_runner = git_runner
        self._repository_factory = repository_factory or self._default_repository
        self.profiles = profiles or ProfileLoader(settings.profile_paths)
        self.journal = journal
        self.store = store or SessionStore(settings.sessions_dir, clock=self._clock)
        self.mailbox = Mailbox(self.store, clock=self._clock)
        self.tasks = TaskController(
            settings, self.store, self.mailbox, self._repository_factory, clock=self._clock
        )
        self.review = ReviewLoop(
            self.store, self.mailbox, max_attempts=settings.max_review_attempts, clock=self._clock
        )
        self.merger = MergeCoordinator(self.store, self._repository_factory, clock=self._clock)
        self.lifecycle = SessionLifecycle(
            settings, self.store, self._repository_factory, self.merger, clock=self._clock
        )

    def _default_repository(self, path: Path | str) -> GitRepository:
        if self._git_runner is None:
            raise GitNotFoundError("git executable is unavailable; set SWARM_GIT_PATH or install git")
        return GitRepository(path, self._git_runner)

    def _profile(self, role: str) -> AgentProfile:
        try:
            return self.profiles.get(role)
        except ProfileLoadError as exc:
            raise PreconditionError(str(exc)) from exc

    def _record(self, session_id: str, event_type: str, body: Any, **metadata: Any) -> None:
        """Append a journal event; a failing journal is logged, never raised."""

        if self.journal is None:
            return
        try:
            self.journal.record_event(
                session_id=session_id,
                event_type=event_type,
                body=body,
                metadata=metadata or None,
            )
        except Exception as exc:  # journal backends raise their own types
            logger.warning(
                "Journal write failed",
                extra={"session_id": session_id, "event_type": event_type, "error": str(exc)},
            )

    # -- session lifecycle -----------------------------------------------

    async def init_session(self, project_path: str, task: str) -> dict[str, Any]:
        plan, garbage = await self.lifecycle.initialize(project_path, task)
        payload = {
            "session_id": plan.session_id,
            "project_path": plan.project_path,
            "branch": plan.branch,
            "start_commit": plan.start_commit,
            "task": plan.task,
            "garbage_collected": garbage.to_dict(),
        }
        self._record(
            plan.session_id,
            "session_initialized",
            payload,
            project_path=plan.project_path,
            branch=plan.branch,
        )
        return payload

    async def finalize(self, session_id: str) -> dict[str, Any]:
        report = await self.lifecycle.finalize(session_id)
        payload = {
            "session_id": session_id,
            "merged": report.merged.to_dict(),
            "worktrees": report.worktrees.to_dict(),
            "diff_stat": report.diff_stat,
            "message": "all changes are staged on top of the start commit; review and commit them.",
        }
        self._record(session_id, "session_finalized", payload, merged=len(report.merged.succeeded))
        return payload

    async def abort(
        self,
        session_id: str,
        *,
        reason: str | None = None,
        failed_task: str | None = None,
        error: str | None = None,
    ) -> dict[str, Any]:
        report = await self.lifecycle.abort(
            session_id, reason=reason, failed_task=failed_task, error=error
        )
        payload = {
            "session_id": session_id,
            "reset_to": report.plan.start_commit,
            "failure": report.failure.model_dump(mode="json"),
            "worktrees": report.worktrees.to_dict(),
        }
        self._record(session_id, "session_aborted", payload, failed_task=report.failure.failed_task)
        return payload

    def collect_garbage(self) -> dict[str, Any]:
        return self.lifecycle.collect_garbage().to_dict()

    # -- planning --------------------------------------------------------

    def plan_prompt(self, session_id: str, context: str | None = None) -> dict[str, Any]:
        plan = self.store.require_plan(session_id)
        prompt = decomposition_prompt(self._profile("planner"), plan, context)
        return {
            "type": "prompt",
            "session_id": session_id,
            "prompt": prompt,
            "instructions": "respond with the json decomposition, then call swarm_plan_validate with it.",
        }

    def validate_plan(self, session_id: str, decomposition: str | dict[str, Any]) -> dict[str, Any]:
        parsed = parse_decomposition(decomposition)
        plan, report = self.tasks.apply_plan(session_id, parsed)
        payload = {
            "session_id": session_id,
            "valid": True,
            "epic": report.epic.model_dump(),
            "subtask_count": report.subtask_count,
            "subtasks": [subtask.model_dump() for subtask in plan.subtasks],
            "independent_tasks": report.independent_tasks,
            "can_parallelize": report.can_parallelize,
        }
        self._record(session_id, "plan_validated", payload, subtasks=report.subtask_count)
        return payload

    def ready_tasks(self, session_id: str) -> dict[str, Any]:
        _, report = self.tasks.ready_tasks(session_id)
        return {
            "session_id": session_id,
            "ready": [subtask.model_dump() for subtask in report.ready],
            "ready_count": len(report.ready),
            "running_count": report.running_count,
            "available_slots": report.available_slots,
            "can_spawn": report.can_spawn,
            "max_parallel": report.max_parallel,
        }

    # -- worktrees -------------------------------------------------------

    async def create_worktree(self, session_id: str, task_id: str) -> dict[str, Any]:
        path = await self.tasks.create_worktree(session_id, task_id)
        self._record(session_id, "worktree_created", {"task_id": task_id, "path": str(path)}, task_id=task_id)
        return {"session_id": session_id, "task_id": task_id, "worktree_path": str(path)}

    async def remove_worktree(self, session_id: str, task_id: str) -> dict[str, Any]:
        path, removed = await self.tasks.remove_worktree(session_id, task_id)
        return {"session_id": session_id, "task_id": task_id, "worktree_path": str(path), "removed": removed}

    async def list_worktrees(self, session_id: str) -> dict[str, Any]:
        paths = await self.tasks.list_worktrees(session_id)
        return {"session_id": session_id, "worktrees": [str(path) for path in paths], "count": len(paths)}

    async def cleanup_worktrees(self, session_id: str) -> dict[str, Any]:
        result: BatchResult = await self.tasks.cleanup_worktrees(session_id)
        return {"session_id": session_id, **result.to_dict()}

    # -- task lifecycle --------------------------------------------------

    def spawn(self, session_id: str, task_id: str) -> dict[str, Any]:
        profile = self._profile("worker")
        result = self.tasks.spawn(session_id, task_id)
        prompt = worker_prompt(
            profile,
            result.plan,
            result.subtask,
            result.state,
            max_attempts=self.settings.max_review_attempts,
        )
        worker_id = result.state.worker_id
        self._record(
            session_id,
            "task_spawned",
            {"task_id": task_id, "worker_id": worker_id, "worktree": result.state.worktree},
            task_id=task_id,
            worker_id=worker_id,
        )
        return {
            "session_id": session_id,
            "task_id": task_id,
            "worker_id": worker_id,
            "worktree_path": result.state.worktree,
            "message_id": result.message_id,
            "task_call": {
                "subagent_type": "worker",
                "description": f"Execute {task_id}: {result.subtask.title}",
                "prompt": prompt,
            },
        }

    def request_review(self, session_id: str, task_id: str) -> dict[str, Any]:
        state = self.tasks.request_review(session_id, task_id)
        return {"session_id": session_id, "task": _state_payload(state)}

    def review_feedback(
        self,
        session_id: str,
        task_id: str,
        status: str,
        *,
        issues: str | list[dict[str, Any]] | None = None,
        summary: str | None = None,
        worker_id: str | None = None,
    ) -> dict[str, Any]:
        if isinstance(issues, str):
            try:
                issues = json.loads(issues) if issues.strip() else []
            except json.JSONDecodeError as exc:
                raise PlanValidationError(f"invalid json in issues field: {exc.msg}") from exc
        try:
            verdict = ReviewVerdict.model_validate(
                {"status": status, "issues": issues or [], "summary": summary}
            )
        except ValidationError as exc:
            raise PlanValidationError(f"invalid review verdict: {exc}") from exc

        try:
            outcome = self.review.submit(session_id, task_id, verdict, worker_id=worker_id)
        except ReviewAttemptsExhaustedError as exc:
            self._record(
                session_id,
                "task_failed",
                {"task_id": task_id, "error": str(exc)},
                task_id=task_id,
                attempts=exc.attempts,
            )
            raise

        self._record(
            session_id,
            "review_verdict",
            {"task_id": task_id, "status": verdict.status, "summary": verdict.summary},
            task_id=task_id,
            verdict=verdict.status,
            attempt=outcome.state.review_attempts,
        )
        return {
            "session_id": session_id,
            "task_id": task_id,
            "status": verdict.status,
            "task_status": outcome.state.status.value,
            "review_attempts": outcome.state.review_attempts,
            "remaining_attempts": outcome.remaining_attempts,
            "message_id": outcome.message_id,
        }

    async def complete_task(self, session_id: str, task_id: str, summary: str | None = None) -> dict[str, Any]:
        result = await self.tasks.complete(session_id, task_id, summary=summary)
        payload = {
            "session_id": session_id,
            "task_id": task_id,
            "commit": result.state.commit,
            "empty_diff": result.state.empty_diff,
            "message_id": result.message_id,
        }
        self._record(
            session_id,
            "task_completed",
            payload,
            task_id=task_id,
            commit=result.state.commit,
            empty_diff=result.state.empty_diff,
        )
        return payload

    def cancel_task(self, session_id: str, task_id: str, reason: str | None = None) -> dict[str, Any]:
        state = self.tasks.cancel(session_id, task_id, reason=reason)
        self._record(session_id, "task_cancelled", {"task_id": task_id, "reason": reason}, task_id=task_id)
        return {"session_id": session_id, "task": _state_payload(state)}

    # -- merging ---------------------------------------------------------

    async def merge_task(self, session_id: str, task_id: str) -> dict[str, Any]:
        state = await self.merger.merge_task(session_id, task_id)
        self._record(session_id, "task_merged", {"task_id": task_id, "commit": state.commit}, task_id=task_id)
        return {"session_id": session_id, "task_id": task_id, "commit": state.commit}

    async def merge_all(self, session_id: str) -> dict[str, Any]:
        result = await self.merger.merge_all(session_id)
        for task_id in result.succeeded:
            self._record(session_id, "task_merged", {"task_id": task_id}, task_id=task_id)
        return {"session_id": session_id, **result.to_dict()}

    # -- mailbox ---------------------------------------------------------

    def send_message(
        self,
        session_id: str,
        sender: str,
        recipient: str,
        type: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self.store.require_plan(session_id)
        message = self.mailbox.send(
            session_id, sender=sender, recipient=recipient, type=type, body=body, data=data
        )
        return {"session_id": session_id, "message": _message_payload(message)}

    def inbox(self, session_id: str, agent_id: str, limit: int = DEFAULT_READ_LIMIT) -> dict[str, Any]:
        self.store.require_plan(session_id)
        messages = self.mailbox.read(session_id, agent_id, limit=limit)
        return {
            "session_id": session_id,
            "agent_id": agent_id,
            "count": len(messages),
            "messages": [_message_payload(message) for message in messages],
        }

    def poll(self, session_id: str, agent_id: str, type: str, sender: str | None = None) -> dict[str, Any]:
        self.store.require_plan(session_id)
        result = self.mailbox.poll(session_id, agent_id, type, sender=sender)
        return {"session_id": session_id, "agent_id": agent_id, **_poll_payload(result)}

    async def wait(
        self,
        session_id: str,
        agent_id: str,
        type: str,
        *,
        sender: str | None = None,
        timeout: float = 30.0,
    ) -> dict[str, Any]:
        self.store.require_plan(session_id)
        result = await self.mailbox.wait(session_id, agent_id, type, sender=sender, timeout=timeout)
        return {
            "session_id": session_id,
            "agent_id": agent_id,
            "timed_out": not result.found,
            **_poll_payload(result),
        }

    # -- inspection ------------------------------------------------------

    def status(self, session_id: str) -> dict[str, Any]:
        plan = self.store.require_plan(session_id)
        tasks = self.store.read_tasks(session_id)
        failure = self.store.read_failure(session_id)
        counts = {status.value: 0 for status in TaskStatus}
        task_payloads: dict[str, Any] = {}
        for subtask in plan.subtasks:
            state = tasks.get(subtask.id) or TaskState(task_id=subtask.id)
            counts[state.status.value] += 1
            task_payloads[subtask.id] = {"title": subtask.title, **_state_payload(state)}
        total = len(plan.subtasks)
        return {
            "session_id": session_id,
            "project_path": plan.project_path,
            "branch": plan.branch,
            "start_commit": plan.start_commit,
            "task": plan.task,
            "epic": plan.epic.model_dump(),
            "tasks": task_payloads,
            "counts": counts,
            "progress": {
                "total": total,
                "complete": counts[TaskStatus.COMPLETE.value],
                "running": counts[TaskStatus.RUNNING.value] + counts[TaskStatus.REVIEWING.value],
                "pending": counts[TaskStatus.PENDING.value],
            },
            "is_complete": total > 0 and counts[TaskStatus.COMPLETE.value] == total,
            "has_failures": counts[TaskStatus.FAILED.value] > 0,
            "aborted": failure is not None,
            "failure": failure.model_dump(mode="json") if failure else None,
        }

    def get_context(self, session_id: str, task_id: str | None = None) -> dict[str, Any]:
        plan = self.store.require_plan(session_id)
        tasks = self.store.read_tasks(session_id)
        if task_id is not None and plan.get_subtask(task_id) is None:
            raise TaskNotFoundError(task_id)
        subtasks = []
        for subtask in plan.subtasks:
            state = tasks.get(subtask.id)
            subtasks.append(
                {
                    **subtask.model_dump(),
                    "status": state.status.value if state else TaskStatus.PENDING.value,
                    "is_highlighted": subtask.id == task_id,
                }
            )
        highlighted = next((entry for entry in subtasks if entry["is_highlighted"]), None)
        return {
            "session_id": session_id,
            "epic": {
                "title": plan.epic.title,
                "description": plan.epic.description,
                "original_task": plan.task,
            },
            "subtasks": subtasks,
            "highlighted_task": highlighted,
            "progress": {
                "total": len(subtasks),
                "complete": sum(1 for entry in subtasks if entry["status"] == TaskStatus.COMPLETE.value),
                "running": sum(
                    1
                    for entry in subtasks
                    if entry["status"] in {TaskStatus.RUNNING.value, TaskStatus.REVIEWING.value}
                ),
                "pending": sum(1 for entry in subtasks if entry["status"] == TaskStatus.PENDING.value),
            },
        }

    def task_for_review(self, session_id: str, task_id: str) -> dict[str, Any]:
        plan = self.store.require_plan(session_id)
        subtask = plan.get_subtask(task_id)
        if subtask is None:
            raise TaskNotFoundError(task_id)
        state = self.store.read_tasks(session_id).get(task_id)
        if state is None or not state.worktree:
            raise PreconditionError(f"no worktree found for task {task_id}")

        def _brief(other_id: str) -> dict[str, Any]:
            other = plan.get_subtask(other_id)
            return {"id": other.id, "title": other.title, "description": other.description}

        downstream = [other.id for other in plan.subtasks if task_id in other.dependencies]
        reviewer = self._profile("reviewer")
        return {
            "session_id": session_id,
            "epic": {
                "title": plan.epic.title,
                "description": plan.epic.description,
                "original_task": plan.task,
            },
            "task": {
                "id": subtask.id,
                "title": subtask.title,
                "description": subtask.description,
                "files": subtask.files,
                "worktree": state.worktree,
                "worker_id": state.worker_id,
                "status": state.status.value,
                "review_attempts": state.review_attempts,
                "max_review_attempts": self.settings.max_review_attempts,
            },
            "review_context": {
                "requirements": subtask.description,
                "completed_dependencies": [_brief(dep) for dep in subtask.dependencies],
                "downstream_tasks": [_brief(other_id) for other_id in downstream],
            },
            "review_focus": review_focus(reviewer, plan, subtask),
            "reviewer": reviewer_brief(reviewer),
        }

    def timeline(self, session_id: str, limit: int | None = None) -> dict[str, Any]:
        if self.journal is None:
            raise PreconditionError("event journal is not configured; set SWARM_JOURNAL_PATH")
        events = self.journal.fetch_session_events(session_id)
        if limit:
            events = events[-limit:]
        return {
            "session_id": session_id,
            "event_count": len(events),
            "events": [
                {
                    "event_id": event.id,
                    "event_type": event.event_type,
                    "timestamp": event.timestamp.isoformat(),
                    "metadata": event.metadata,
                    "excerpt": event.document[:200],
                }
                for event in events
            ],
        }

    def overview(self) -> dict[str, Any]:
        sessions = self.store.list_sessions()
        return {
            "count": len(sessions),
            "sessions": [
                {
                    "session_id": summary.session_id,
                    "project_path": summary.project_path,
                    "task": summary.task,
                    "created_at": summary.created_at.isoformat(),
                    "last_touched": summary.last_touched.isoformat(),
                    "aborted": summary.aborted,
                }
                for summary in sessions
            ],
        }


__all__ = ["SwarmService"]
