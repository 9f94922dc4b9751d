"""Durable per-recipient message log between agents."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

from ..errors import PlanValidationError
from ..models import Message, MessageType, check_agent_id
from ..storage import SessionStore

DEFAULT_READ_LIMIT = 10
POLL_LOOKBACK = 20


@dataclass(slots=True)
class PollResult:
    found: bool
    count: int
    latest: Message | None
    all: list[Message] = field(default_factory=list)


def _agent(agent_id: str) -> str:
    try:
        return check_agent_id(agent_id)
    except ValueError as exc:
        raise PlanValidationError(str(exc)) from exc


def _message_type(value: MessageType | str) -> MessageType:
    try:
        return MessageType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in MessageType)
        raise PlanValidationError(f"invalid message type '{value}'; expected one of {allowed}") from exc


class Mailbox:
    """Append, read and poll messages. History is never rewritten."""

    def __init__(self, store: SessionStore, *, clock: Callable[[], datetime] | None = None) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def send(
        self,
        session_id: str,
        *,
        sender: str,
        recipient: str,
        type: MessageType | str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> Message:
        message = Message(
            id=uuid4().hex[:8],
            sender=_agent(sender),
            recipient=_agent(recipient),
            type=_message_type(type),
            body=body,
            data=data,
            timestamp=self._clock(),
        )
        self._store.append_message(session_id, message)
        return message

    def read(self, session_id: str, agent_id: str, limit: int = DEFAULT_READ_LIMIT) -> list[Message]:
        """Return the newest ``limit`` messages, oldest first."""

        return self._store.read_messages(session_id, _agent(agent_id), limit=limit)

    def poll(
        self,
        session_id: str,
        agent_id: str,
        type: MessageType | str,
        *,
        sender: str | None = None,
    ) -> PollResult:
        """Non-blocking check of the recent window for messages of ``type``."""

        wanted = _message_type(type)
        window = self._store.read_messages(session_id, _agent(agent_id), limit=POLL_LOOKBACK)
        matches = [
            message
            for message in window
            if message.type is wanted and (sender is None or message.sender == sender)
        ]
        return PollResult(
            found=bool(matches),
            count=len(matches),
            latest=matches[-1] if matches else None,
            all=matches,
        )

    async def wait(
        self,
        session_id: str,
        agent_id: str,
        type: MessageType | str,
        *,
        sender: str | None = None,
        timeout: float = 30.0,
        interval: float = 0.5,
    ) -> PollResult:
        """Re-poll until a message not present at call time arrives or ``timeout`` elapses.

        Returns only the newly arrived matches; an empty result means the wait timed out.
        """

        seen = {message.id for message in self.poll(session_id, agent_id, type, sender=sender).all}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout, 0.0)
        while True:
            result = self.poll(session_id, agent_id, type, sender=sender)
            fresh = [message for message in result.all if message.id not in seen]
            if fresh:
                return PollResult(found=True, count=len(fresh), latest=fresh[-1], all=fresh)
            remaining = deadline - loop.time()
            if remaining <= 0:
                return PollResult(found=False, count=0, latest=None, all=[])
            await asyncio.sleep(min(interval, remaining))


__all__ = ["DEFAULT_READ_LIMIT", "Mailbox", "POLL_LOOKBACK", "PollResult"]
