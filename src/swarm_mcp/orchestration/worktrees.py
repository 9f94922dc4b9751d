"""Bind each task to an isolated git worktree at the session's start commit."""

from __future__ import annotations

import logging
from pathlib import Path

from ..errors import SwarmError
from ..git import GitRepository
from .results import BatchResult

logger = logging.getLogger(__name__)


class WorktreeManager:
    """Create, enumerate and tear down the worktrees of one project.

    Paths are ``<worktrees_dir>/<project>-<task_id>`` so they can be recomputed
    from the task id alone.
    """

    def __init__(self, repository: GitRepository, worktrees_dir: Path) -> None:
        self._repository = repository
        self._worktrees_dir = Path(worktrees_dir)

    @property
    def project_name(self) -> str:
        return self._repository.project_name

    def path_for(self, task_id: str) -> Path:
        return self._worktrees_dir / f"{self.project_name}-{task_id}"

    def _belongs_to_project(self, path: Path) -> bool:
        root = self._worktrees_dir.resolve()
        resolved = path.resolve()
        return resolved.parent == root and resolved.name.startswith(f"{self.project_name}-")

    async def create(self, task_id: str, commit: str) -> Path:
        """Add a detached worktree at ``commit`` for the task.

        Registrations whose directory is gone are pruned first so a path left
        behind by an expired session can be reused.
        """

        path = self.path_for(task_id)
        await self._repository.prune_worktrees()
        await self._repository.add_worktree(path, commit)
        logger.info("Created worktree", extra={"task_id": task_id, "path": str(path), "commit": commit})
        return path

    async def remove(self, path: Path) -> bool:
        """Remove one worktree. Removing an absent path is a no-op returning False."""

        removed = await self._repository.remove_worktree(path)
        if removed:
            logger.info("Removed worktree", extra={"path": str(path)})
        return removed

    async def list_active(self) -> list[Path]:
        worktrees = await self._repository.list_worktrees()
        return [path for path in worktrees if self._belongs_to_project(path)]

    async def cleanup(self) -> BatchResult:
        """Remove every worktree of the project; one stuck path does not stop the rest."""

        result = BatchResult()
        for path in await self.list_active():
            try:
                await self._repository.remove_worktree(path)
            except SwarmError as exc:
                logger.warning("Worktree removal failed", extra={"path": str(path), "error": str(exc)})
                result.add_failure(str(path), str(exc))
                continue
            result.succeeded.append(str(path))

        try:
            await self._repository.prune_worktrees()
        except SwarmError as exc:
            result.add_failure("worktree-prune", str(exc))
        return result


__all__ = ["WorktreeManager"]
