"""Storage abstractions for Swarm MCP."""

from .chroma import ChromaJournal, ChromaUnavailableError, JournalEvent
from .models import SessionSummary
from .sessions import SessionStore

__all__ = [
    "ChromaJournal",
    "ChromaUnavailableError",
    "JournalEvent",
    "SessionStore",
    "SessionSummary",
]
