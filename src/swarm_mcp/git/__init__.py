"""Git orchestration utilities."""

from .repository import GitRepository
from .runner import FakeGitRunner, GitCommandError, GitExecutionResult, GitNotFoundError, GitRunner

__all__ = [
    "FakeGitRunner",
    "GitCommandError",
    "GitExecutionResult",
    "GitNotFoundError",
    "GitRepository",
    "GitRunner",
]
