from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from swarm_mcp.errors import PreconditionError
from swarm_mcp.service import SwarmService
from swarm_mcp.storage import ChromaJournal


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if where:
            for key, value in where.items():
                filtered = [record for record in filtered if record.metadata.get(key) == value]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


def _journal(tmp_path: Path) -> ChromaJournal:
    return ChromaJournal(
        tmp_path,
        client_factory=lambda: StubClient(),
        clock=lambda: datetime.fromisoformat("2025-01-01T00:00:00+00:00"),
    )


def test_record_and_fetch_events(tmp_path: Path) -> None:
    journal = _journal(tmp_path)

    event = journal.record_event(
        session_id="session-1",
        event_type="task_spawned",
        body={"task_id": "a"},
        metadata={"worker_id": "worker-a", "files": ["a.py"], "skipped": None},
    )

    assert event.metadata["sequence"] == 1
    assert event.metadata["files"] == '["a.py"]'
    assert "skipped" not in event.metadata

    events = journal.fetch_session_events("session-1")
    assert len(events) == 1
    assert events[0].event_type == "task_spawned"
    assert events[0].document == '{"task_id": "a"}'


def test_sequence_orders_events_with_equal_timestamps(tmp_path: Path) -> None:
    journal = _journal(tmp_path)

    journal.record_event(session_id="s", event_type="a", body="A")
    journal.record_event(session_id="s", event_type="b", body="B")
    journal.record_event(session_id="other", event_type="c", body="C")

    events = journal.fetch_session_events("s")
    assert [event.metadata["sequence"] for event in events] == [1, 2]
    assert [event.event_type for event in events] == ["a", "b"]


def test_search_matches_documents_and_metadata(tmp_path: Path) -> None:
    journal = _journal(tmp_path)

    journal.record_event(session_id="s", event_type="task_failed", body="review attempts exhausted")
    journal.record_event(session_id="s", event_type="task_merged", body="ok", metadata={"task_id": "auth"})

    assert len(journal.search_events("exhausted")) == 1
    assert journal.search_events("auth")[0].event_type == "task_merged"
    assert len(journal.search_events(filters={"event_type": "task_failed"})) == 1


def test_service_records_lifecycle_timeline(
    settings, repository_factory, store, clock, project: Path, tmp_path: Path, decompose
) -> None:
    service = SwarmService(
        settings,
        repository_factory=repository_factory,
        store=store,
        clock=clock,
        journal=_journal(tmp_path / "journal"),
    )
    session_id = asyncio.run(service.init_session(str(project), "add caching"))["session_id"]
    service.validate_plan(session_id, decompose(("a", ["a.py"], [])).model_dump())
    asyncio.run(service.create_worktree(session_id, "a"))
    service.spawn(session_id, "a")

    timeline = service.timeline(session_id)

    assert [event["event_type"] for event in timeline["events"]] == [
        "session_initialized",
        "plan_validated",
        "worktree_created",
        "task_spawned",
    ]
    assert service.timeline(session_id, limit=1)["event_count"] == 1


def test_timeline_requires_journal(service: SwarmService, start_session) -> None:
    session_id = start_session()

    with pytest.raises(PreconditionError, match="SWARM_JOURNAL_PATH"):
        service.timeline(session_id)
