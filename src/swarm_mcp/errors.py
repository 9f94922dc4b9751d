"""Error taxonomy shared by every swarm component."""

from __future__ import annotations


class SwarmError(RuntimeError):
    """Base class for swarm failures surfaced to callers."""

    kind = "error"


class NotFoundError(SwarmError):
    """Raised when a session or task cannot be located."""

    kind = "not_found"


class SessionNotFoundError(NotFoundError):
    """Raised when no plan exists for the requested session id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session {session_id} not found")
        self.session_id = session_id


class TaskNotFoundError(NotFoundError):
    """Raised when a task id is not part of the session plan."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"task {task_id} not found in plan")
        self.task_id = task_id


class PlanValidationError(SwarmError):
    """Raised when a decomposition is malformed, conflicting or cyclic."""

    kind = "validation"


class PreconditionError(SwarmError):
    """Raised when an operation is attempted before its requirements hold."""

    kind = "precondition"


class CapacityError(PreconditionError):
    """Raised when the parallel worker bound is already reached."""


class DependencyNotReadyError(PreconditionError):
    """Raised when a task is started before its dependencies complete."""


class ReviewAttemptsExhaustedError(PreconditionError):
    """Raised when a needs-changes verdict uses up the last review attempt."""

    def __init__(self, task_id: str, attempts: int) -> None:
        super().__init__(f"task {task_id} failed after {attempts} review attempts")
        self.task_id = task_id
        self.attempts = attempts


class StateConflictError(SwarmError):
    """Raised when a task or session is in a state that forbids the operation."""

    kind = "state_conflict"


class BackendError(SwarmError):
    """Raised when the version-control or storage backend fails."""

    kind = "backend"


class StorageError(BackendError):
    """Raised when session records cannot be read or written."""


__all__ = [
    "BackendError",
    "CapacityError",
    "DependencyNotReadyError",
    "NotFoundError",
    "PlanValidationError",
    "PreconditionError",
    "ReviewAttemptsExhaustedError",
    "SessionNotFoundError",
    "StateConflictError",
    "StorageError",
    "SwarmError",
    "TaskNotFoundError",
]
