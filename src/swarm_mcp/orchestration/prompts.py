"""Render planner, worker and reviewer prompts from agent profiles."""

from __future__ import annotations

import json
from typing import Any

from ..models import Plan, Subtask, TaskState
from ..profiles import AgentProfile


class _Fields(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _render(text: str, values: dict[str, Any]) -> str:
    return text.format_map(_Fields(values))


def _numbered(items: list[str], values: dict[str, Any]) -> str:
    return "\n".join(f"{index}. {_render(item, values)}" for index, item in enumerate(items, start=1))


def _bullets(items: list[str], values: dict[str, Any]) -> str:
    return "\n".join(f"- {_render(item, values)}" for item in items)


def _opening(profile: AgentProfile) -> str:
    return f"{profile.system_prompt.strip()}\n\n_{profile.persona.strip()}_"


def _checklist(profile: AgentProfile, values: dict[str, Any]) -> str:
    lines = []
    for item in profile.checklist_template:
        suffix = "" if item.required else " (optional)"
        lines.append(f"- [ ] {_render(item.description, values)}{suffix}")
    return "\n".join(lines)


_DECOMPOSITION_SCHEMA = {
    "epic": {"title": "string - overall task title", "description": "string - brief description"},
    "subtasks": [
        {
            "id": "task-1",
            "title": "what this subtask accomplishes",
            "description": "detailed instructions for the worker agent",
            "files": ["src/module_a.py", "tests/test_module_a.py"],
            "dependencies": [],
            "complexity": "1-5",
        }
    ],
}


def decomposition_prompt(profile: AgentProfile, plan: Plan, context: str | None = None) -> str:
    values = dict(profile.metadata)
    sections = [_opening(profile), "## task", plan.task]
    if context:
        sections += ["## context", context]
    sections += [
        "## requirements",
        _numbered(profile.goalset, values),
        "## response format",
        "respond with a json object matching this schema:",
        "```json\n" + json.dumps(_DECOMPOSITION_SCHEMA, indent=2) + "\n```",
    ]
    if profile.constraints:
        sections += ["## guidelines", _bullets(profile.constraints, values)]
    if profile.checklist_template:
        sections += ["## before you respond", _checklist(profile, values)]
    sections.append("now decompose the task into subtasks:")
    return "\n\n".join(sections)


def worker_prompt(
    profile: AgentProfile,
    plan: Plan,
    subtask: Subtask,
    state: TaskState,
    *,
    max_attempts: int,
) -> str:
    values = {
        **profile.metadata,
        "session_id": plan.session_id,
        "task_id": subtask.id,
        "worktree": state.worktree,
        "max_attempts": max_attempts,
    }
    epic_lines = [f"**goal**: {plan.epic.title}"]
    if plan.epic.description:
        epic_lines.append(f"**description**: {plan.epic.description}")
    epic_lines.append(f"**original request**: {plan.task}")

    roster = []
    for other in plan.subtasks:
        if other.id == subtask.id:
            roster.append(f"- → {other.id}: {other.title} (your task)")
        else:
            roster.append(f"-   {other.id}: {other.title}")

    task_lines = [
        f"**id**: {subtask.id}",
        f"**title**: {subtask.title}",
        f"**description**: {subtask.description}",
        f"**files to modify**: {', '.join(subtask.files)}",
        f"**worktree**: {state.worktree}",
    ]
    if subtask.dependencies:
        task_lines.append(f"**depends on**: {', '.join(subtask.dependencies)} (already complete)")

    sections = [
        _opening(profile),
        "## epic context",
        "\n".join(epic_lines),
        "## all subtasks in this swarm",
        "\n".join(roster),
        "## your task",
        "\n".join(task_lines),
        "## instructions",
        _numbered(profile.goalset, values),
    ]
    if profile.constraints:
        sections.append(_bullets(profile.constraints, values))
    if profile.checklist_template:
        sections += ["## checklist", _checklist(profile, values)]
    return "\n\n".join(sections)


def review_focus(profile: AgentProfile, plan: Plan, subtask: Subtask) -> list[str]:
    """Questions the reviewer should answer, derived from the task's place in the plan."""

    values = {**profile.metadata, "task_title": subtask.title, "epic_title": plan.epic.title}
    focus = [_render(item, values) for item in profile.goalset]
    downstream = [other.id for other in plan.subtasks if subtask.id in other.dependencies]
    if downstream:
        focus.append(f"will downstream tasks ({', '.join(downstream)}) be able to use this code?")
    if subtask.dependencies:
        focus.append(
            f"does it properly integrate with dependencies ({', '.join(subtask.dependencies)})?"
        )
    return focus


def reviewer_brief(profile: AgentProfile) -> dict[str, Any]:
    return {
        "instructions": profile.system_prompt.strip(),
        "persona": profile.persona.strip(),
        "guidelines": list(profile.constraints),
        "checklist": [
            {"id": item.id, "description": item.description, "required": item.required}
            for item in profile.checklist_template
        ],
    }


__all__ = ["decomposition_prompt", "review_focus", "reviewer_brief", "worker_prompt"]
