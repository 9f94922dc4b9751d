"""Turn a proposed decomposition into a validated plan."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable

from pydantic import ValidationError

from ..errors import PlanValidationError
from ..models import Decomposition, Epic, Subtask


@dataclass(slots=True)
class PlanReport:
    epic: Epic
    subtasks: list[Subtask]
    subtask_count: int
    independent_tasks: int
    can_parallelize: int


def parse_decomposition(payload: str | dict[str, Any]) -> Decomposition:
    """Decode the planner's JSON (string or already-parsed) into a Decomposition."""

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise PlanValidationError(f"invalid json in decomposition: {exc}") from exc
    try:
        return Decomposition.model_validate(payload)
    except ValidationError as exc:
        raise PlanValidationError(f"invalid decomposition schema: {exc}") from exc


def assign_defaults(decomposition: Decomposition) -> list[Subtask]:
    """Give drafts without an id ``task-N`` (input order) and empty dependency lists."""

    subtasks: list[Subtask] = []
    for index, draft in enumerate(decomposition.subtasks, start=1):
        try:
            subtasks.append(
                Subtask(
                    id=draft.id or f"task-{index}",
                    title=draft.title,
                    description=draft.description,
                    files=draft.files,
                    dependencies=draft.dependencies or [],
                    complexity=draft.complexity,
                )
            )
        except ValidationError as exc:
            raise PlanValidationError(f"invalid subtask #{index}: {exc}") from exc

    duplicates = sorted(task_id for task_id, count in Counter(s.id for s in subtasks).items() if count > 1)
    if duplicates:
        raise PlanValidationError(f"duplicate subtask ids: {', '.join(duplicates)}")
    return subtasks


def detect_file_conflicts(subtasks: Iterable[Subtask]) -> list[str]:
    """Return every file path claimed by two or more subtasks, in first-seen order."""

    counts: Counter[str] = Counter()
    conflicts: list[str] = []
    for subtask in subtasks:
        for path in subtask.files:
            counts[path] += 1
            if counts[path] == 2:
                conflicts.append(path)
    return conflicts


def validate_dependency_refs(subtasks: list[Subtask]) -> list[str]:
    ids = {subtask.id for subtask in subtasks}
    errors: list[str] = []
    for subtask in subtasks:
        for dep in subtask.dependencies:
            if dep == subtask.id:
                errors.append(f'subtask "{subtask.id}" depends on itself')
            elif dep not in ids:
                errors.append(f'subtask "{subtask.id}" depends on non-existent task "{dep}"')
    return errors


def find_cycle(subtasks: list[Subtask]) -> str | None:
    """Return the first subtask found to sit on a dependency cycle, if any."""

    by_id = {subtask.id: subtask for subtask in subtasks}
    visited: set[str] = set()
    in_stack: set[str] = set()

    def visit(task_id: str) -> bool:
        if task_id in in_stack:
            return True
        if task_id in visited:
            return False
        visited.add(task_id)
        in_stack.add(task_id)
        subtask = by_id.get(task_id)
        if subtask is not None:
            for dep in subtask.dependencies:
                if visit(dep):
                    return True
        in_stack.discard(task_id)
        return False

    for subtask in subtasks:
        if visit(subtask.id):
            return subtask.id
    return None


def validate_plan(decomposition: Decomposition, *, max_parallel: int) -> PlanReport:
    """Run the file, reference and cycle checks in order; raise on the first failing one."""

    subtasks = assign_defaults(decomposition)

    conflicts = detect_file_conflicts(subtasks)
    if conflicts:
        raise PlanValidationError(
            f"file conflicts detected: {', '.join(conflicts)}. "
            "each file can only be assigned to one subtask."
        )

    ref_errors = validate_dependency_refs(subtasks)
    if ref_errors:
        raise PlanValidationError(f"dependency errors: {'; '.join(ref_errors)}")

    cyclic = find_cycle(subtasks)
    if cyclic is not None:
        raise PlanValidationError(f'dependency errors: circular dependency detected involving "{cyclic}"')

    independent = sum(1 for subtask in subtasks if not subtask.dependencies)
    return PlanReport(
        epic=decomposition.epic,
        subtasks=subtasks,
        subtask_count=len(subtasks),
        independent_tasks=independent,
        can_parallelize=min(independent, max_parallel),
    )


def dependency_order(subtasks: list[Subtask]) -> list[Subtask]:
    """Order subtasks level by level: roots first, then whatever they unblock.

    Plan order is kept within a level. Dependencies outside ``subtasks`` are ignored.
    """

    remaining = {subtask.id: subtask for subtask in subtasks}
    ordered: list[Subtask] = []
    while remaining:
        level = [
            subtask
            for subtask in remaining.values()
            if not any(dep in remaining for dep in subtask.dependencies)
        ]
        if not level:
            raise PlanValidationError("circular dependency among subtasks")
        for subtask in level:
            ordered.append(subtask)
            del remaining[subtask.id]
    return ordered


__all__ = [
    "PlanReport",
    "assign_defaults",
    "dependency_order",
    "detect_file_conflicts",
    "find_cycle",
    "parse_decomposition",
    "validate_dependency_refs",
    "validate_plan",
]
