"""Repository-level git operations used by the swarm."""

from __future__ import annotations

import logging
from pathlib import Path

from ..errors import BackendError
from .runner import GitCommandError, GitExecutionResult, GitRunner

logger = logging.getLogger(__name__)


class GitRepository:
    """Inspection and isolation primitives for one working tree."""

    def __init__(self, path: Path | str, runner: GitRunner) -> None:
        self._path = Path(path)
        self._runner = runner

    @property
    def path(self) -> Path:
        return self._path

    @property
    def project_name(self) -> str:
        return self._path.name

    async def _git(self, operation: str, *args: str) -> GitExecutionResult:
        result = await self._runner.run(*args, cwd=self._path)
        if not result.ok:
            raise GitCommandError(operation, result)
        return result

    async def is_repo(self) -> bool:
        if not self._path.is_dir():
            return False
        result = await self._runner.run("rev-parse", "--is-inside-work-tree", cwd=self._path)
        return result.ok and result.stdout.strip() == "true"

    async def current_branch(self) -> str:
        result = await self._git("get-branch", "rev-parse", "--abbrev-ref", "HEAD")
        return result.stdout.strip()

    async def current_commit(self) -> str:
        result = await self._git("get-commit", "rev-parse", "HEAD")
        return result.stdout.strip()

    async def has_uncommitted_changes(self) -> bool:
        result = await self._git("status", "status", "--porcelain")
        return bool(result.stdout.strip())

    async def add_worktree(self, path: Path, commit: str) -> Path:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackendError(f"cannot create worktree directory {path.parent}: {exc}") from exc
        await self._git("worktree-add", "worktree", "add", "--detach", str(path), commit)
        return path

    async def remove_worktree(self, path: Path) -> bool:
        """Remove a worktree; returns False when it was already gone."""

        if not path.exists():
            return False
        await self._git("worktree-remove", "worktree", "remove", "--force", str(path))
        return True

    async def list_worktrees(self) -> list[Path]:
        result = await self._git("worktree-list", "worktree", "list", "--porcelain")
        paths: list[Path] = []
        for line in result.stdout.splitlines():
            if line.startswith("worktree "):
                paths.append(Path(line[len("worktree "):]))
        return paths

    async def prune_worktrees(self) -> None:
        await self._git("worktree-prune", "worktree", "prune")

    async def commit_all(self, message: str) -> str | None:
        """Stage and commit everything; returns None when there is nothing to commit."""

        await self._git("add", "add", "-A")
        if not await self.has_uncommitted_changes():
            return None
        await self._git("commit", "commit", "--no-verify", "-m", message)
        return await self.current_commit()

    async def cherry_pick(self, commit: str) -> None:
        try:
            await self._git("cherry-pick", "cherry-pick", commit)
        except GitCommandError:
            abort = await self._runner.run("cherry-pick", "--abort", cwd=self._path)
            if not abort.ok:
                logger.warning(
                    "cherry-pick abort failed",
                    extra={"commit": commit, "stderr": abort.stderr.strip()},
                )
            raise

    async def reset(self, commit: str, *, mode: str) -> None:
        if mode not in {"soft", "hard"}:
            raise ValueError("reset mode must be 'soft' or 'hard'")
        await self._git(f"{mode}-reset", "reset", f"--{mode}", commit)

    async def diff_stat(self, ref: str = "HEAD") -> str:
        result = await self._git("diff", "diff", "--stat", ref)
        return result.stdout.strip()


__all__ = ["GitRepository"]
