"""File-backed persistence for swarm sessions.

Layout under ``<swarm_root>/sessions/<session_id>/``::

    plan.json               epic, subtasks, branch, start commit, task text
    tasks.json              subtask id -> TaskState
    messages/<agent>.jsonl  append-only mailbox, one Message per line
    failure.json            written on abort only
    .lock                   flock target serializing read-modify-write updates
"""

from __future__ import annotations

import fcntl
import json
import os
import shutil
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from pydantic import ValidationError

from ..errors import SessionNotFoundError, StorageError
from ..models import Failure, Message, Plan, TaskState
from .models import SessionSummary

T = TypeVar("T")

PLAN_FILE = "plan.json"
TASKS_FILE = "tasks.json"
FAILURE_FILE = "failure.json"
MESSAGES_DIR = "messages"
LOCK_FILE = ".lock"


class SessionStore:
    """Read and write session records as JSON documents."""

    def __init__(self, sessions_dir: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self._root = Path(sessions_dir)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def root(self) -> Path:
        return self._root

    def session_dir(self, session_id: str) -> Path:
        return self._root / session_id

    def plan_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / PLAN_FILE

    def tasks_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / TASKS_FILE

    def failure_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / FAILURE_FILE

    def messages_dir(self, session_id: str) -> Path:
        return self.session_dir(session_id) / MESSAGES_DIR

    def message_path(self, session_id: str, agent_id: str) -> Path:
        return self.messages_dir(session_id) / f"{agent_id}.jsonl"

    # -- low level -----------------------------------------------------

    def _read_json(self, path: Path) -> Any | None:
        try:
            if not path.exists():
                return None
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"failed to read {path}: {exc}") from exc

    def _write_json(self, path: Path, payload: Any) -> None:
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageError(f"failed to write {path}: {exc}") from exc

    @contextmanager
    def locked(self, session_id: str) -> Iterator[None]:
        """Hold the session's exclusive lock for a read-modify-write cycle."""

        lock_path = self.session_dir(session_id) / LOCK_FILE
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = lock_path.open("a+", encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"failed to open lock {lock_path}: {exc}") from exc
        with handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    # -- plan ------------------------------------------------------------

    def read_plan(self, session_id: str) -> Plan | None:
        document = self._read_json(self.plan_path(session_id))
        if document is None:
            return None
        try:
            return Plan.model_validate(document)
        except ValidationError as exc:
            raise StorageError(f"corrupt plan for session {session_id}: {exc}") from exc

    def require_plan(self, session_id: str) -> Plan:
        plan = self.read_plan(session_id)
        if plan is None:
            raise SessionNotFoundError(session_id)
        return plan

    def write_plan(self, plan: Plan) -> None:
        self._write_json(self.plan_path(plan.session_id), plan.model_dump(mode="json"))

    # -- task states -----------------------------------------------------

    def read_tasks(self, session_id: str) -> dict[str, TaskState]:
        document = self._read_json(self.tasks_path(session_id)) or {}
        try:
            return {
                task_id: TaskState.model_validate({"task_id": task_id, **state})
                for task_id, state in document.items()
            }
        except (ValidationError, AttributeError, TypeError) as exc:
            raise StorageError(f"corrupt task states for session {session_id}: {exc}") from exc

    def write_tasks(self, session_id: str, tasks: dict[str, TaskState]) -> None:
        payload = {task_id: state.model_dump(mode="json") for task_id, state in tasks.items()}
        self._write_json(self.tasks_path(session_id), payload)

    def update_tasks(
        self,
        session_id: str,
        mutate: Callable[[dict[str, TaskState]], T],
    ) -> T:
        """Apply ``mutate`` to the task states under the session lock and persist them.

        ``mutate`` edits the mapping in place; whatever it returns is passed back.
        Nothing is written when it raises.
        """

        with self.locked(session_id):
            tasks = self.read_tasks(session_id)
            result = mutate(tasks)
            self.write_tasks(session_id, tasks)
            return result

    # -- mailbox ---------------------------------------------------------

    def append_message(self, session_id: str, message: Message) -> None:
        path = self.message_path(session_id, message.recipient)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(message.model_dump_json() + "\n")
        except OSError as exc:
            raise StorageError(f"failed to append to {path}: {exc}") from exc

    def read_messages(self, session_id: str, agent_id: str, limit: int | None = None) -> list[Message]:
        path = self.message_path(session_id, agent_id)
        try:
            if not path.exists():
                return []
            lines = [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
        except OSError as exc:
            raise StorageError(f"failed to read {path}: {exc}") from exc
        if limit is not None:
            lines = lines[-limit:] if limit > 0 else []
        try:
            return [Message.model_validate_json(line) for line in lines]
        except ValidationError as exc:
            raise StorageError(f"corrupt mailbox {path}: {exc}") from exc

    # -- failure ---------------------------------------------------------

    def write_failure(self, session_id: str, failure: Failure) -> None:
        self._write_json(self.failure_path(session_id), failure.model_dump(mode="json"))

    def read_failure(self, session_id: str) -> Failure | None:
        document = self._read_json(self.failure_path(session_id))
        if document is None:
            return None
        try:
            return Failure.model_validate(document)
        except ValidationError as exc:
            raise StorageError(f"corrupt failure record for session {session_id}: {exc}") from exc

    # -- whole sessions --------------------------------------------------

    def delete_session(self, session_id: str, *, keep_plan_and_failure: bool = False) -> None:
        session_dir = self.session_dir(session_id)
        if not session_dir.exists():
            return
        try:
            if keep_plan_and_failure:
                messages_dir = self.messages_dir(session_id)
                if messages_dir.exists():
                    shutil.rmtree(messages_dir)
                self.tasks_path(session_id).unlink(missing_ok=True)
            else:
                shutil.rmtree(session_dir)
        except OSError as exc:
            raise StorageError(f"failed to delete session {session_id}: {exc}") from exc

    def list_session_ids(self) -> list[str]:
        if not self._root.exists():
            return []
        return sorted(entry.name for entry in self._root.iterdir() if entry.is_dir())

    def last_touched(self, session_id: str) -> datetime:
        """Newest modification time of anything stored for the session.

        Files removed while the directory is being walked are skipped.
        """

        session_dir = self.session_dir(session_id)
        try:
            newest = session_dir.stat().st_mtime
        except OSError as exc:
            raise StorageError(f"failed to inspect session {session_id}: {exc}") from exc
        for path in session_dir.rglob("*"):
            if path.name == LOCK_FILE:
                continue
            try:
                newest = max(newest, path.stat().st_mtime)
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageError(f"failed to inspect {path}: {exc}") from exc
        return datetime.fromtimestamp(newest, tz=timezone.utc)

    def summarize(self, session_id: str) -> SessionSummary | None:
        plan = self.read_plan(session_id)
        if plan is None:
            return None
        return SessionSummary(
            session_id=session_id,
            project_path=plan.project_path,
            task=plan.task,
            created_at=plan.created_at,
            last_touched=self.last_touched(session_id),
            aborted=self.failure_path(session_id).exists(),
        )

    def list_sessions(self) -> list[SessionSummary]:
        summaries: list[SessionSummary] = []
        for session_id in self.list_session_ids():
            try:
                summary = self.summarize(session_id)
            except StorageError:
                continue
            if summary is not None:
                summaries.append(summary)
        return summaries

    def find_active_session(self, project_path: str) -> str | None:
        """Return the session bound to ``project_path`` that has a plan and no failure."""

        for summary in self.list_sessions():
            if summary.project_path == project_path and not summary.aborted:
                return summary.session_id
        return None

    def find_latest_session(self, project_path: str) -> str | None:
        candidates = [summary for summary in self.list_sessions() if summary.project_path == project_path]
        if not candidates:
            return None
        return max(candidates, key=lambda summary: summary.last_touched).session_id

    def expired_session_ids(self, ttl: timedelta) -> list[str]:
        cutoff = self._clock() - ttl
        expired: list[str] = []
        for session_id in self.list_session_ids():
            try:
                touched = self.last_touched(session_id)
            except StorageError:
                continue
            if touched < cutoff:
                expired.append(session_id)
        return expired

    def cleanup_expired(self, ttl: timedelta) -> list[str]:
        """Delete every session whose storage has not been touched within ``ttl``."""

        deleted: list[str] = []
        for session_id in self.expired_session_ids(ttl):
            try:
                shutil.rmtree(self.session_dir(session_id))
            except OSError as exc:
                raise StorageError(f"failed to expire session {session_id}: {exc}") from exc
            deleted.append(session_id)
        return deleted


__all__ = ["SessionStore"]
