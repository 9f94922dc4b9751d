"""Tool registration for Swarm MCP."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal

from fastmcp import Context, FastMCP

from ..errors import SwarmError
from ..service import SwarmService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    init: Any
    plan_prompt: Any
    plan_validate: Any
    get_ready_tasks: Any
    worktree_create: Any
    worktree_remove: Any
    worktree_list: Any
    worktree_cleanup: Any
    spawn: Any
    message_send: Any
    message_inbox: Any
    message_poll: Any
    message_wait: Any
    request_review: Any
    review_feedback: Any
    worker_complete: Any
    cancel_task: Any
    merge_task: Any
    merge_all: Any
    status: Any
    get_context: Any
    get_task_for_review: Any
    finalize: Any
    abort: Any
    gc: Any
    timeline: Any


def register_tools(server: FastMCP, *, service: SwarmService) -> ToolHandles:
    """Register the swarm tools on the server.

    Every tool returns ``{"success": True, ...}`` or
    ``{"success": False, "error": ..., "kind": ...}``; swarm errors never
    escape to the MCP client as exceptions.
    """

    async def _invoke(
        tool: str,
        context: Context | None,
        call: Callable[[], dict[str, Any] | Awaitable[dict[str, Any]]],
        *,
        log_extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            result = call()
            if inspect.isawaitable(result):
                result = await result
        except SwarmError as exc:
            _emit_log(
                context,
                "warning",
                "Swarm tool failed",
                extra={"tool": tool, "kind": exc.kind, "error": str(exc), **(log_extra or {})},
            )
            return {"success": False, "error": str(exc), "kind": exc.kind}
        _emit_log(context, "debug", "Swarm tool succeeded", extra={"tool": tool, **(log_extra or {})})
        return {"success": True, **result}

    # -- session lifecycle -----------------------------------------------

    async def _init(project_path: str, task: str, context: Context | None = None) -> dict[str, Any]:
        """Start a swarm session on a clean git repository."""

        return await _invoke(
            "swarm_init",
            context,
            lambda: service.init_session(project_path, task),
            log_extra={"project_path": project_path},
        )

    async def _finalize(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """Merge remaining work, soft-reset to the start commit and delete the session."""

        return await _invoke(
            "swarm_finalize", context, lambda: service.finalize(session_id), log_extra={"session_id": session_id}
        )

    async def _abort(
        session_id: str,
        reason: str | None = None,
        failed_task: str | None = None,
        error: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Hard-reset to the start commit and keep only the plan and a failure record."""

        return await _invoke(
            "swarm_abort",
            context,
            lambda: service.abort(session_id, reason=reason, failed_task=failed_task, error=error),
            log_extra={"session_id": session_id},
        )

    async def _gc(context: Context | None = None) -> dict[str, Any]:
        """Delete expired sessions and orphaned worktree directories."""

        return await _invoke("swarm_gc", context, service.collect_garbage)

    tool_init = server.tool(
        name="swarm_init",
        description=(
            "Initialize a swarm session for a git repository with no uncommitted changes. "
            "Records the branch and start commit; returns the session id."
        ),
    )(_init)

    tool_finalize = server.tool(
        name="swarm_finalize",
        description=(
            "Finish a session whose tasks are all complete: merge outstanding commits, remove "
            "worktrees, soft-reset to the start commit leaving changes staged, report a diff stat."
        ),
    )(_finalize)

    tool_abort = server.tool(
        name="swarm_abort",
        description=(
            "Abort a session: remove worktrees, hard-reset to the start commit and write a "
            "failure record. The plan and failure stay on disk for inspection."
        ),
        annotations={"destructiveHint": True},
    )(_abort)

    tool_gc = server.tool(
        name="swarm_gc",
        description="Delete sessions idle longer than the TTL and worktrees no session owns.",
    )(_gc)

    # -- planning --------------------------------------------------------

    async def _plan_prompt(
        session_id: str, context_notes: str | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        """Render the decomposition prompt for the planner agent."""

        return await _invoke(
            "swarm_plan_prompt",
            context,
            lambda: service.plan_prompt(session_id, context_notes),
            log_extra={"session_id": session_id},
        )

    async def _plan_validate(
        session_id: str,
        decomposition_json: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Validate a decomposition and store it as the session plan."""

        return await _invoke(
            "swarm_plan_validate",
            context,
            lambda: service.validate_plan(session_id, decomposition_json),
            log_extra={"session_id": session_id},
        )

    async def _get_ready_tasks(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """List pending tasks whose dependencies are complete and that have a worktree."""

        return await _invoke(
            "swarm_get_ready_tasks",
            context,
            lambda: service.ready_tasks(session_id),
            log_extra={"session_id": session_id},
        )

    tool_plan_prompt = server.tool(
        name="swarm_plan_prompt",
        description=(
            "Generate the prompt that asks the planner to decompose the session task into "
            "parallelizable subtasks as JSON."
        ),
    )(_plan_prompt)

    tool_plan_validate = server.tool(
        name="swarm_plan_validate",
        description=(
            "Validate a JSON decomposition (file conflicts, dangling or circular dependencies) "
            "and save it as the session plan."
        ),
    )(_plan_validate)

    tool_ready = server.tool(
        name="swarm_get_ready_tasks",
        description="Report ready tasks, running count and how many more workers may be spawned.",
    )(_get_ready_tasks)

    # -- worktrees -------------------------------------------------------

    async def _worktree_create(session_id: str, task_id: str, context: Context | None = None) -> dict[str, Any]:
        """Create an isolated worktree for a pending task at the session start commit."""

        return await _invoke(
            "swarm_worktree_create",
            context,
            lambda: service.create_worktree(session_id, task_id),
            log_extra={"session_id": session_id, "task_id": task_id},
        )

    async def _worktree_remove(session_id: str, task_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _invoke(
            "swarm_worktree_remove",
            context,
            lambda: service.remove_worktree(session_id, task_id),
            log_extra={"session_id": session_id, "task_id": task_id},
        )

    async def _worktree_list(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _invoke(
            "swarm_worktree_list",
            context,
            lambda: service.list_worktrees(session_id),
            log_extra={"session_id": session_id},
        )

    async def _worktree_cleanup(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _invoke(
            "swarm_worktree_cleanup",
            context,
            lambda: service.cleanup_worktrees(session_id),
            log_extra={"session_id": session_id},
        )

    tool_worktree_create = server.tool(
        name="swarm_worktree_create",
        description="Create a detached git worktree for a task at the session start commit.",
    )(_worktree_create)

    tool_worktree_remove = server.tool(
        name="swarm_worktree_remove",
        description="Remove a task's worktree. Removing an absent worktree succeeds with removed=false.",
    )(_worktree_remove)

    tool_worktree_list = server.tool(
        name="swarm_worktree_list",
        description="List the worktrees that belong to the session's project.",
    )(_worktree_list)

    tool_worktree_cleanup = server.tool(
        name="swarm_worktree_cleanup",
        description="Remove every worktree of the project, reporting removed and failed paths.",
    )(_worktree_cleanup)

    # -- task lifecycle --------------------------------------------------

    async def _spawn(session_id: str, task_id: str, context: Context | None = None) -> dict[str, Any]:
        """Admit a ready task and return the worker prompt to launch it with."""

        return await _invoke(
            "swarm_spawn",
            context,
            lambda: service.spawn(session_id, task_id),
            log_extra={"session_id": session_id, "task_id": task_id},
        )

    async def _request_review(session_id: str, task_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _invoke(
            "swarm_request_review",
            context,
            lambda: service.request_review(session_id, task_id),
            log_extra={"session_id": session_id, "task_id": task_id},
        )

    async def _review_feedback(
        session_id: str,
        task_id: str,
        status: Literal["approved", "needs_changes"],
        issues: str | None = None,
        summary: str | None = None,
        worker_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record a reviewer verdict and deliver it to the worker."""

        return await _invoke(
            "swarm_review_feedback",
            context,
            lambda: service.review_feedback(
                session_id, task_id, status, issues=issues, summary=summary, worker_id=worker_id
            ),
            log_extra={"session_id": session_id, "task_id": task_id, "verdict": status},
        )

    async def _worker_complete(
        session_id: str,
        task_id: str,
        summary: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Commit the worker's changes and mark the task complete."""

        return await _invoke(
            "swarm_worker_complete",
            context,
            lambda: service.complete_task(session_id, task_id, summary),
            log_extra={"session_id": session_id, "task_id": task_id},
        )

    async def _cancel_task(
        session_id: str,
        task_id: str,
        reason: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        return await _invoke(
            "swarm_cancel_task",
            context,
            lambda: service.cancel_task(session_id, task_id, reason),
            log_extra={"session_id": session_id, "task_id": task_id},
        )

    tool_spawn = server.tool(
        name="swarm_spawn",
        description=(
            "Spawn a worker for a ready task: checks dependencies, the parallel bound and the "
            "worktree, marks the task running and returns the worker prompt."
        ),
    )(_spawn)

    tool_request_review = server.tool(
        name="swarm_request_review",
        description="Move a running task to reviewing before handing it to the reviewer.",
    )(_request_review)

    tool_review_feedback = server.tool(
        name="swarm_review_feedback",
        description=(
            "Send a review verdict (approved or needs_changes with a JSON array of issues). "
            "Too many needs_changes verdicts fail the task."
        ),
    )(_review_feedback)

    tool_worker_complete = server.tool(
        name="swarm_worker_complete",
        description="Commit the task's worktree changes and mark the task complete.",
    )(_worker_complete)

    tool_cancel_task = server.tool(
        name="swarm_cancel_task",
        description="Cancel a task that has not completed.",
    )(_cancel_task)

    # -- merging ---------------------------------------------------------

    async def _merge_task(session_id: str, task_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _invoke(
            "swarm_merge_task",
            context,
            lambda: service.merge_task(session_id, task_id),
            log_extra={"session_id": session_id, "task_id": task_id},
        )

    async def _merge_all(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _invoke(
            "swarm_merge_all",
            context,
            lambda: service.merge_all(session_id),
            log_extra={"session_id": session_id},
        )

    tool_merge_task = server.tool(
        name="swarm_merge_task",
        description="Cherry-pick one completed task's commit once its dependencies are merged.",
    )(_merge_task)

    tool_merge_all = server.tool(
        name="swarm_merge_all",
        description=(
            "Cherry-pick every completed task's commit one at a time in dependency order; "
            "failures are reported per task."
        ),
    )(_merge_all)

    # -- mailbox ---------------------------------------------------------

    async def _message_send(
        session_id: str,
        sender: str,
        recipient: str,
        type: str,
        body: str,
        data: dict[str, Any] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        return await _invoke(
            "swarm_message_send",
            context,
            lambda: service.send_message(session_id, sender, recipient, type, body, data),
            log_extra={"session_id": session_id, "recipient": recipient},
        )

    async def _message_inbox(
        session_id: str,
        agent_id: str,
        limit: int = 10,
        context: Context | None = None,
    ) -> dict[str, Any]:
        return await _invoke(
            "swarm_message_inbox",
            context,
            lambda: service.inbox(session_id, agent_id, limit),
            log_extra={"session_id": session_id, "agent_id": agent_id},
        )

    async def _message_poll(
        session_id: str,
        agent_id: str,
        type: str,
        sender: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        return await _invoke(
            "swarm_message_poll",
            context,
            lambda: service.poll(session_id, agent_id, type, sender),
            log_extra={"session_id": session_id, "agent_id": agent_id},
        )

    async def _message_wait(
        session_id: str,
        agent_id: str,
        type: str,
        sender: str | None = None,
        timeout: float = 30.0,
        context: Context | None = None,
    ) -> dict[str, Any]:
        return await _invoke(
            "swarm_message_wait",
            context,
            lambda: service.wait(session_id, agent_id, type, sender=sender, timeout=timeout),
            log_extra={"session_id": session_id, "agent_id": agent_id},
        )

    tool_message_send = server.tool(
        name="swarm_message_send",
        description=(
            "Append a message (progress, complete, blocker, question, feedback, approved, spawn) "
            "to an agent's mailbox."
        ),
    )(_message_send)

    tool_message_inbox = server.tool(
        name="swarm_message_inbox",
        description="Read the most recent messages for an agent, oldest first.",
    )(_message_inbox)

    tool_message_poll = server.tool(
        name="swarm_message_poll",
        description=(
            "Check recent messages for an agent by type and optional sender without blocking. "
            "Call again to observe new messages."
        ),
    )(_message_poll)

    tool_message_wait = server.tool(
        name="swarm_message_wait",
        description="Wait up to `timeout` seconds for a new message of a type to arrive.",
    )(_message_wait)

    # -- inspection ------------------------------------------------------

    async def _status(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _invoke(
            "swarm_status", context, lambda: service.status(session_id), log_extra={"session_id": session_id}
        )

    async def _get_context(
        session_id: str, task_id: str | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        return await _invoke(
            "swarm_get_context",
            context,
            lambda: service.get_context(session_id, task_id),
            log_extra={"session_id": session_id},
        )

    async def _get_task_for_review(session_id: str, task_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _invoke(
            "swarm_get_task_for_review",
            context,
            lambda: service.task_for_review(session_id, task_id),
            log_extra={"session_id": session_id, "task_id": task_id},
        )

    async def _timeline(session_id: str, limit: int | None = None, context: Context | None = None) -> dict[str, Any]:
        return await _invoke(
            "swarm_timeline",
            context,
            lambda: service.timeline(session_id, limit),
            log_extra={"session_id": session_id},
        )

    tool_status = server.tool(
        name="swarm_status",
        description="Report per-task state, counts and progress for a session.",
    )(_status)

    tool_get_context = server.tool(
        name="swarm_get_context",
        description="Return the epic and every subtask with its status, optionally highlighting one task.",
    )(_get_context)

    tool_get_task_for_review = server.tool(
        name="swarm_get_task_for_review",
        description="Return what a reviewer needs for one task: requirements, neighbours and review focus.",
    )(_get_task_for_review)

    tool_timeline = server.tool(
        name="swarm_timeline",
        description="List journal events recorded for a session (requires SWARM_JOURNAL_PATH).",
    )(_timeline)

    return ToolHandles(
        init=tool_init,
        plan_prompt=tool_plan_prompt,
        plan_validate=tool_plan_validate,
        get_ready_tasks=tool_ready,
        worktree_create=tool_worktree_create,
        worktree_remove=tool_worktree_remove,
        worktree_list=tool_worktree_list,
        worktree_cleanup=tool_worktree_cleanup,
        spawn=tool_spawn,
        message_send=tool_message_send,
        message_inbox=tool_message_inbox,
        message_poll=tool_message_poll,
        message_wait=tool_message_wait,
        request_review=tool_request_review,
        review_feedback=tool_review_feedback,
        worker_complete=tool_worker_complete,
        cancel_task=tool_cancel_task,
        merge_task=tool_merge_task,
        merge_all=tool_merge_all,
        status=tool_status,
        get_context=tool_get_context,
        get_task_for_review=tool_get_task_for_review,
        finalize=tool_finalize,
        abort=tool_abort,
        gc=tool_gc,
        timeline=tool_timeline,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
