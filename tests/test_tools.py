from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest

from swarm_mcp.service import SwarmService
from swarm_mcp.storage import ChromaJournal
from swarm_mcp.tools import register_tools


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict]] = []

    def debug(self, message, extra=None):
        self.records.append(("debug", message, extra or {}))

    def warning(self, message, extra=None):
        self.records.append(("warning", message, extra or {}))


class StubContext:
    def __init__(self) -> None:
        self.logger = StubLogger()


def _decomposition(*specs) -> str:
    return json.dumps(
        {
            "epic": {"title": "Add caching"},
            "subtasks": [
                {
                    "id": task_id,
                    "title": f"work on {task_id}",
                    "description": f"implement {task_id}",
                    "files": files,
                    "dependencies": deps,
                    "complexity": 2,
                }
                for task_id, files, deps in specs
            ],
        }
    )


def test_register_tools_exposes_swarm_tools(service: SwarmService) -> None:
    server = StubServer()

    handles = register_tools(server, service=service)

    assert len(server._tools) == 26
    assert all(name.startswith("swarm_") for name in server._tools)
    assert handles.init.name == "swarm_init"
    assert handles.message_wait.name == "swarm_message_wait"


def test_full_swarm_through_tools(service: SwarmService, git, project) -> None:
    handles = register_tools(StubServer(), service=service)

    init = asyncio.run(handles.init.fn(project_path=str(project), task="add caching"))
    assert init["success"] is True
    session_id = init["session_id"]

    prompt = asyncio.run(handles.plan_prompt.fn(session_id=session_id, context_notes="small repo"))
    assert prompt["success"] is True and "## context" in prompt["prompt"]

    plan = asyncio.run(
        handles.plan_validate.fn(
            session_id=session_id,
            decomposition_json=_decomposition(("a", ["a.py"], []), ("b", ["b.py"], ["a"])),
        )
    )
    assert plan["success"] is True
    assert plan["subtask_count"] == 2
    assert plan["independent_tasks"] == 1

    created = asyncio.run(handles.worktree_create.fn(session_id=session_id, task_id="a"))
    assert created["success"] is True
    ready = asyncio.run(handles.get_ready_tasks.fn(session_id=session_id))
    assert [task["id"] for task in ready["ready"]] == ["a"]

    spawned = asyncio.run(handles.spawn.fn(session_id=session_id, task_id="a"))
    assert spawned["success"] is True
    assert spawned["worker_id"] == "worker-a"

    verdict = asyncio.run(
        handles.review_feedback.fn(session_id=session_id, task_id="a", status="approved")
    )
    assert verdict["task_status"] == "reviewing"

    git.dirty.add(created["worktree_path"])
    completed = asyncio.run(handles.worker_complete.fn(session_id=session_id, task_id="a", summary="done"))
    assert completed["commit"] == "commit001"

    polled = asyncio.run(
        handles.message_poll.fn(session_id=session_id, agent_id="orchestrator", type="complete")
    )
    assert polled["found"] is True

    status = asyncio.run(handles.status.fn(session_id=session_id))
    assert status["counts"]["complete"] == 1
    assert status["progress"] == {"total": 2, "complete": 1, "running": 0, "pending": 1}

    context = asyncio.run(handles.get_context.fn(session_id=session_id, task_id="b"))
    assert context["highlighted_task"]["id"] == "b"

    merged = asyncio.run(handles.merge_task.fn(session_id=session_id, task_id="a"))
    assert merged["success"] is True
    assert git.picked == ["commit001"]


def test_errors_become_payloads(service: SwarmService, project) -> None:
    handles = register_tools(StubServer(), service=service)

    missing = asyncio.run(handles.status.fn(session_id="nope"))
    assert missing == {"success": False, "error": "session nope not found", "kind": "not_found"}

    session_id = asyncio.run(handles.init.fn(project_path=str(project), task="add caching"))["session_id"]

    conflict = asyncio.run(
        handles.plan_validate.fn(
            session_id=session_id,
            decomposition_json=_decomposition(("a", ["x.ts"], []), ("b", ["x.ts"], [])),
        )
    )
    assert conflict["success"] is False
    assert conflict["kind"] == "validation"
    assert "x.ts" in conflict["error"]

    again = asyncio.run(handles.init.fn(project_path=str(project), task="again"))
    assert again["kind"] == "precondition"

    bad_type = asyncio.run(
        handles.message_send.fn(
            session_id=session_id, sender="orchestrator", recipient="worker-a", type="shout", body="hi"
        )
    )
    assert bad_type["kind"] == "validation"

    timeline = asyncio.run(handles.timeline.fn(session_id=session_id))
    assert timeline["kind"] == "precondition"


def test_tool_logs_go_to_context_logger(service: SwarmService) -> None:
    handles = register_tools(StubServer(), service=service)
    context = StubContext()

    asyncio.run(handles.status.fn(session_id="nope", context=context))
    asyncio.run(handles.gc.fn(context=context))

    (level, message, extra), (ok_level, _, ok_extra) = context.logger.records
    assert level == "warning"
    assert message == "Swarm tool failed"
    assert extra["kind"] == "not_found"
    assert extra["session_id"] == "nope"
    assert ok_level == "debug"
    assert ok_extra == {"tool": "swarm_gc"}


def test_message_tools_round_trip(service: SwarmService, start_session) -> None:
    handles = register_tools(StubServer(), service=service)
    session_id = start_session()

    sent = asyncio.run(
        handles.message_send.fn(
            session_id=session_id,
            sender="worker-a",
            recipient="orchestrator",
            type="blocker",
            body="need schema",
            data={"file": "db.py"},
        )
    )
    inbox = asyncio.run(handles.message_inbox.fn(session_id=session_id, agent_id="orchestrator"))
    waited = asyncio.run(
        handles.message_wait.fn(session_id=session_id, agent_id="orchestrator", type="blocker", timeout=0.05)
    )

    assert sent["message"]["type"] == "blocker"
    assert inbox["count"] == 1
    assert inbox["messages"][0]["data"] == {"file": "db.py"}
    assert waited["success"] is True
    assert waited["timed_out"] is True


class FullDiskCollection:
    def add(self, *, documents, metadatas, ids) -> None:
        raise RuntimeError("journal disk full")


class FullDiskClient:
    def get_or_create_collection(self, name: str) -> FullDiskCollection:
        return FullDiskCollection()


def test_journal_failure_does_not_fail_the_operation(
    settings, repository_factory, store, clock, project: Path, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    service = SwarmService(
        settings,
        repository_factory=repository_factory,
        store=store,
        clock=clock,
        journal=ChromaJournal(tmp_path / "journal", client_factory=FullDiskClient),
    )
    handles = register_tools(StubServer(), service=service)

    with caplog.at_level(logging.WARNING, logger="swarm_mcp.service"):
        init = asyncio.run(handles.init.fn(project_path=str(project), task="add caching"))

    assert init["success"] is True
    assert store.list_session_ids() == [init["session_id"]]
    assert any(
        record.getMessage() == "Journal write failed" and record.error == "journal disk full"
        for record in caplog.records
    )

    retry = asyncio.run(handles.init.fn(project_path=str(project), task="add caching"))
    assert retry["success"] is False
    assert retry["kind"] == "precondition"
