"""Profile models for swarm agent roles."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

ROLES = ("planner", "worker", "reviewer")


class ChecklistItem(BaseModel):
    """A step the agent must tick off before it reports back."""

    id: str = Field(..., description="Stable identifier for the checklist item.")
    description: str = Field(..., description="Human-friendly description of the action.")
    required: bool = Field(default=True)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Checklist item id must not be empty")
        return normalized


class AgentProfile(BaseModel):
    """How the swarm primes one agent role when it renders prompts."""

    id: str = Field(..., description="Unique identifier for the profile; matches the role it serves.")
    title: str = Field(..., description="Display title for the agent profile.")
    persona: str = Field(..., description="Narrative framing for the agent's tone and role.")
    system_prompt: str = Field(..., description="Opening instructions placed at the top of rendered prompts.")
    goalset: list[str] = Field(
        default_factory=list,
        description="Numbered requirements rendered into the prompt.",
    )
    constraints: list[str] = Field(
        default_factory=list,
        description="Guidelines rendered as a bullet list.",
    )
    checklist_template: list[ChecklistItem] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Agent profile id must not be empty")
        return normalized

    @field_validator("goalset", "constraints", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("Goalset and constraints must be sequences of strings")


__all__ = ["AgentProfile", "ChecklistItem", "ROLES"]
