"""FastMCP server bootstrap for Swarm MCP."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import SwarmSettings, get_settings
from .errors import SwarmError
from .git import GitNotFoundError, GitRunner
from .profiles import ProfileLoadError, ProfileLoader
from .service import SwarmService
from .storage import ChromaJournal, ChromaUnavailableError
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the swarm server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[SwarmSettings] = None,
    git_runner: GitRunner | None = None,
    journal: ChromaJournal | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the swarm tools and status resource."""

    settings = settings or get_settings()
    log = logging.getLogger(__name__)

    profile_loader = ProfileLoader(settings.profile_paths)

    git_metadata = {"available": False, "path": settings.git_path, "version": None, "error": None}
    if git_runner is None:
        try:
            git_runner = GitRunner(Path(settings.git_path) if settings.git_path else None)
        except GitNotFoundError as exc:
            git_metadata["error"] = str(exc)
    if git_runner is not None:
        git_metadata["available"] = True
        git_metadata["path"] = str(git_runner.executable)
        version_result = _run_sync(git_runner.version())
        if version_result.ok:
            git_metadata["version"] = version_result.stdout.strip()
        else:
            git_metadata["error"] = version_result.stderr.strip() or "git --version failed"

    journal_metadata = {
        "available": False,
        "path": str(settings.journal_path) if settings.journal_path else None,
        "error": None,
    }
    if journal is None and settings.journal_path is not None:
        try:
            journal = ChromaJournal(settings.journal_path)
            journal.ping()
        except ChromaUnavailableError as exc:
            journal_metadata["error"] = str(exc)
            journal = None
    journal_metadata["available"] = journal is not None

    service = SwarmService(settings, git_runner=git_runner, profiles=profile_loader, journal=journal)

    startup_gc: dict = {}
    try:
        startup_gc = service.collect_garbage()
    except SwarmError as exc:
        log.warning("Startup garbage collection failed", extra={"error": str(exc)})

    server = FastMCP(
        name="Swarm MCP",
        version=__version__,
        instructions=(
            "Swarm MCP coordinates parallel agents on one git repository: initialize a session, "
            "plan subtasks with exclusive file ownership, give each task its own worktree, spawn "
            "workers within the parallel bound, review, merge, then finalize or abort."
        ),
    )

    handles = register_tools(server, service=service)

    @server.resource(
        "resource://swarm/status",
        name="swarm_status",
        title="Swarm MCP Status",
        description="Provides the current runtime status for the Swarm MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing configuration, backends and known sessions."""

        try:
            profile_ids = sorted(profile_loader.load_all().keys())
            profile_error: str | None = None
        except ProfileLoadError as exc:
            profile_ids = []
            profile_error = str(exc)

        try:
            sessions = service.overview()
            sessions_error: str | None = None
        except SwarmError as exc:
            sessions = {"count": 0, "sessions": []}
            sessions_error = str(exc)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "swarm_root": str(settings.swarm_root),
            "limits": {
                "max_parallel_workers": settings.max_parallel_workers,
                "max_review_attempts": settings.max_review_attempts,
                "session_ttl_days": settings.session_ttl_days,
            },
            "profiles": {"count": len(profile_ids), "ids": profile_ids, "error": profile_error},
            "git": git_metadata,
            "journal": journal_metadata,
            "sessions": {**sessions, "error": sessions_error},
            "startup_gc": startup_gc,
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "profile_loader", profile_loader)
    setattr(server, "git_runner", git_runner)
    setattr(server, "git_metadata", git_metadata)
    setattr(server, "journal", journal)
    setattr(server, "journal_metadata", journal_metadata)
    setattr(server, "swarm_service", service)
    setattr(server, "startup_gc", startup_gc)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Swarm MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Swarm MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "swarm_root": str(settings.swarm_root),
            "git_available": getattr(server, "git_metadata", {}).get("available"),
            "journal_available": getattr(server, "journal_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
