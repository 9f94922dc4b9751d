"""Persisted records for swarm sessions."""

from __future__ import annotations

import posixpath
import re
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _check_identifier(value: str, label: str) -> str:
    normalized = value.strip()
    if not _IDENTIFIER_RE.match(normalized):
        raise ValueError(
            f"{label} '{value}' must start with a letter or digit and contain only "
            "letters, digits, '.', '_' or '-'"
        )
    return normalized


def normalize_file_path(value: str) -> str:
    """Normalize a repository-relative path so equal files compare equal."""

    candidate = value.strip().replace("\\", "/")
    if not candidate:
        raise ValueError("file paths must not be empty")
    if candidate.startswith("/"):
        raise ValueError(f"file path '{value}' must be relative to the repository root")
    normalized = posixpath.normpath(candidate)
    if normalized == ".." or normalized.startswith("../"):
        raise ValueError(f"file path '{value}' escapes the repository root")
    return normalized


class TaskStatus(str, Enum):
    """Closed set of task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    REVIEWING = "reviewing"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETE, TaskStatus.FAILED, TaskStatus.CANCELLED}

    @property
    def is_active(self) -> bool:
        return self in {TaskStatus.RUNNING, TaskStatus.REVIEWING}


class MessageType(str, Enum):
    PROGRESS = "progress"
    COMPLETE = "complete"
    BLOCKER = "blocker"
    QUESTION = "question"
    FEEDBACK = "feedback"
    APPROVED = "approved"
    SPAWN = "spawn"


class Epic(BaseModel):
    """Overall goal the subtasks add up to."""

    title: str = Field(..., description="Short title of the overall goal.")
    description: str | None = Field(default=None, description="Optional longer summary.")


class SubtaskDraft(BaseModel):
    """A subtask as proposed by the planning agent, before ids are assigned."""

    id: str | None = None
    title: str
    description: str
    files: list[str] = Field(default_factory=list)
    dependencies: list[str] | None = None
    complexity: int = Field(..., ge=1, le=5)


class Decomposition(BaseModel):
    """Planner response: an epic plus its subtask drafts."""

    epic: Epic
    subtasks: list[SubtaskDraft] = Field(..., min_length=1)


class Subtask(BaseModel):
    """A unit of work that exclusively owns a set of files."""

    id: str = Field(..., description="Identifier unique within the plan.")
    title: str
    description: str
    files: list[str] = Field(default_factory=list, description="Files this subtask may modify.")
    dependencies: list[str] = Field(
        default_factory=list, description="Ids of subtasks that must complete first."
    )
    complexity: int = Field(..., ge=1, le=5)

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        return _check_identifier(value, "subtask id")

    @field_validator("files")
    @classmethod
    def _normalize_files(cls, value: list[str]) -> list[str]:
        seen: dict[str, None] = {}
        for item in value:
            seen.setdefault(normalize_file_path(item), None)
        return list(seen)

    @field_validator("dependencies")
    @classmethod
    def _strip_dependencies(cls, value: list[str]) -> list[str]:
        return [item.strip() for item in value]


class Plan(BaseModel):
    """Session root record: where the swarm runs and what it is doing."""

    session_id: str
    project_path: str
    branch: str
    start_commit: str
    task: str
    created_at: datetime
    epic: Epic = Field(default_factory=lambda: Epic(title=""))
    subtasks: list[Subtask] = Field(default_factory=list)

    def get_subtask(self, task_id: str) -> Subtask | None:
        for subtask in self.subtasks:
            if subtask.id == task_id:
                return subtask
        return None

    @property
    def subtask_ids(self) -> list[str]:
        return [subtask.id for subtask in self.subtasks]


class TaskState(BaseModel):
    """Lifecycle record for one subtask."""

    task_id: str
    status: TaskStatus = TaskStatus.PENDING
    worktree: str | None = None
    worker_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    commit: str | None = None
    empty_diff: bool = False
    merged_at: datetime | None = None
    review_attempts: int = 0
    error: str | None = None
    updated_at: datetime | None = None


class Message(BaseModel):
    """Immutable inter-agent message, one line of a recipient's mailbox."""

    id: str
    sender: str
    recipient: str
    type: MessageType
    body: str
    data: dict[str, Any] | None = None
    timestamp: datetime


class ReviewIssue(BaseModel):
    file: str
    line: int | None = None
    issue: str
    suggestion: str | None = None


class ReviewVerdict(BaseModel):
    """Structured reviewer decision for a task."""

    status: Literal["approved", "needs_changes"]
    issues: list[ReviewIssue] = Field(default_factory=list)
    summary: str | None = None


class Failure(BaseModel):
    """Post-mortem written when a session is aborted."""

    failed_task: str
    error: str
    attempt: int
    completed_tasks: list[str] = Field(default_factory=list)
    pending_tasks: list[str] = Field(default_factory=list)
    timestamp: datetime


def check_agent_id(value: str) -> str:
    """Validate an agent id used as a mailbox file name."""

    return _check_identifier(value, "agent id")


__all__ = [
    "Decomposition",
    "Epic",
    "Failure",
    "Message",
    "MessageType",
    "Plan",
    "ReviewIssue",
    "ReviewVerdict",
    "Subtask",
    "SubtaskDraft",
    "TaskState",
    "TaskStatus",
    "check_agent_id",
    "normalize_file_path",
]
