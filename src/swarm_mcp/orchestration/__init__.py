"""Orchestration core: planning, admission, review, merge and session lifecycle."""

from .admission import AdmissionReport
from .mailbox import Mailbox, PollResult
from .merge import MergeCoordinator
from .planner import PlanReport, dependency_order, parse_decomposition, validate_plan
from .results import BatchFailure, BatchResult
from .review import ReviewLoop, ReviewOutcome
from .session import AbortReport, FinalizeReport, GarbageReport, SessionLifecycle, collect_garbage
from .state_machine import InvalidTransitionError
from .tasks import RepositoryFactory, TaskController
from .worktrees import WorktreeManager

__all__ = [
    "AbortReport",
    "AdmissionReport",
    "BatchFailure",
    "BatchResult",
    "FinalizeReport",
    "GarbageReport",
    "InvalidTransitionError",
    "Mailbox",
    "MergeCoordinator",
    "PlanReport",
    "PollResult",
    "RepositoryFactory",
    "ReviewLoop",
    "ReviewOutcome",
    "SessionLifecycle",
    "TaskController",
    "WorktreeManager",
    "collect_garbage",
    "dependency_order",
    "parse_decomposition",
    "validate_plan",
]
