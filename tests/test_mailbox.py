from __future__ import annotations

import asyncio

import pytest

from swarm_mcp.errors import PlanValidationError
from swarm_mcp.models import MessageType
from swarm_mcp.orchestration.mailbox import POLL_LOOKBACK, Mailbox
from swarm_mcp.storage import SessionStore


def _send(mailbox: Mailbox, body: str, *, type: str = "progress", sender: str = "worker-a") -> None:
    mailbox.send("s1", sender=sender, recipient="orchestrator", type=type, body=body)


def test_read_returns_newest_window_oldest_first(store: SessionStore) -> None:
    mailbox = Mailbox(store)
    for index in range(15):
        _send(mailbox, f"m{index}")

    messages = mailbox.read("s1", "orchestrator", limit=10)

    assert [message.body for message in messages] == [f"m{index}" for index in range(5, 15)]
    assert mailbox.read("s1", "nobody") == []


def test_send_persists_one_line_per_message(store: SessionStore) -> None:
    mailbox = Mailbox(store)
    message = mailbox.send(
        "s1",
        sender="orchestrator",
        recipient="worker-a",
        type=MessageType.SPAWN,
        body="start",
        data={"task_id": "a"},
    )

    lines = store.message_path("s1", "worker-a").read_text(encoding="utf-8").splitlines()

    assert len(lines) == 1
    assert message.id in lines[0]
    assert mailbox.read("s1", "worker-a")[0].data == {"task_id": "a"}


def test_invalid_agent_and_type_are_rejected(store: SessionStore) -> None:
    mailbox = Mailbox(store)

    with pytest.raises(PlanValidationError, match="agent id"):
        mailbox.send("s1", sender="../etc", recipient="orchestrator", type="progress", body="x")
    with pytest.raises(PlanValidationError, match="invalid message type 'shout'"):
        mailbox.send("s1", sender="worker-a", recipient="orchestrator", type="shout", body="x")
    with pytest.raises(PlanValidationError):
        mailbox.read("s1", "bad/agent")


def test_poll_filters_by_type_and_sender(store: SessionStore) -> None:
    mailbox = Mailbox(store)
    _send(mailbox, "working")
    _send(mailbox, "done a", type="complete")
    _send(mailbox, "done b", type="complete", sender="worker-b")

    result = mailbox.poll("s1", "orchestrator", "complete")
    assert result.found is True
    assert result.count == 2
    assert result.latest.body == "done b"

    only_a = mailbox.poll("s1", "orchestrator", "complete", sender="worker-a")
    assert [message.body for message in only_a.all] == ["done a"]

    assert mailbox.poll("s1", "orchestrator", "blocker").found is False


def test_poll_only_looks_at_recent_window(store: SessionStore) -> None:
    mailbox = Mailbox(store)
    _send(mailbox, "old", type="complete")
    for index in range(POLL_LOOKBACK):
        _send(mailbox, f"chatter {index}")

    assert mailbox.poll("s1", "orchestrator", "complete").found is False


def test_wait_returns_only_messages_that_arrive_later(store: SessionStore) -> None:
    mailbox = Mailbox(store)
    _send(mailbox, "earlier", type="complete")

    async def scenario():
        async def deliver() -> None:
            await asyncio.sleep(0.05)
            _send(mailbox, "later", type="complete")

        waiter = asyncio.create_task(
            mailbox.wait("s1", "orchestrator", "complete", timeout=5.0, interval=0.01)
        )
        await deliver()
        return await waiter

    result = asyncio.run(scenario())

    assert result.found is True
    assert [message.body for message in result.all] == ["later"]


def test_wait_times_out_with_empty_result(store: SessionStore) -> None:
    mailbox = Mailbox(store)
    _send(mailbox, "earlier", type="complete")

    result = asyncio.run(mailbox.wait("s1", "orchestrator", "complete", timeout=0.05, interval=0.01))

    assert result.found is False
    assert result.count == 0
    assert result.latest is None
