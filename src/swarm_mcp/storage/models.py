"""Data models for persistent tracking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class SessionSummary:
    session_id: str
    project_path: str
    task: str
    created_at: datetime
    last_touched: datetime
    aborted: bool


__all__ = ["SessionSummary"]
