"""Swarm MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from swarm_mcp.config import SwarmSettings
from swarm_mcp.errors import SwarmError
from swarm_mcp.models import check_agent_id
from swarm_mcp.orchestration import collect_garbage
from swarm_mcp.storage import ChromaJournal, ChromaUnavailableError, SessionStore


def load_store(settings: SwarmSettings) -> SessionStore:
    return SessionStore(settings.sessions_dir)


def load_journal(settings: SwarmSettings) -> ChromaJournal:
    if settings.journal_path is None:
        print("Journal unavailable: SWARM_JOURNAL_PATH is not set")
        raise SystemExit(1)
    try:
        journal = ChromaJournal(settings.journal_path)
        journal.ping()
    except ChromaUnavailableError as exc:
        print(f"Journal unavailable: {exc}")
        raise SystemExit(1)
    return journal


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = SwarmSettings()
    store = load_store(settings)
    summaries = store.list_sessions()
    if args.project:
        summaries = [summary for summary in summaries if summary.project_path == args.project]
    if args.json:
        payload = [
            {
                "session_id": summary.session_id,
                "project_path": summary.project_path,
                "task": summary.task,
                "created_at": summary.created_at.isoformat(),
                "last_touched": summary.last_touched.isoformat(),
                "aborted": summary.aborted,
            }
            for summary in summaries
        ]
        print(json.dumps(payload, indent=2))
    else:
        for summary in summaries:
            state = "aborted" if summary.aborted else "active"
            print(f"{summary.session_id} [{state}] {summary.project_path}: {summary.task}")


def cmd_tasks(args: argparse.Namespace) -> None:
    settings = SwarmSettings()
    store = load_store(settings)
    try:
        plan = store.require_plan(args.session_id)
        tasks = store.read_tasks(args.session_id)
        failure = store.read_failure(args.session_id)
    except SwarmError as exc:
        print(f"Error: {exc}")
        raise SystemExit(1)

    counts: dict[str, int] = {}
    rows = []
    for subtask in plan.subtasks:
        state = tasks.get(subtask.id)
        status = state.status.value if state else "pending"
        counts[status] = counts.get(status, 0) + 1
        rows.append(
            {
                "task_id": subtask.id,
                "title": subtask.title,
                "status": status,
                "worktree": state.worktree if state else None,
                "review_attempts": state.review_attempts if state else 0,
                "commit": state.commit if state else None,
            }
        )
    payload = {
        "session_id": plan.session_id,
        "project_path": plan.project_path,
        "start_commit": plan.start_commit,
        "status_counts": counts,
        "tasks": rows,
        "failure": failure.model_dump(mode="json") if failure else None,
    }
    print(json.dumps(payload, indent=2))


def cmd_messages(args: argparse.Namespace) -> None:
    settings = SwarmSettings()
    store = load_store(settings)
    try:
        store.require_plan(args.session_id)
        messages = store.read_messages(args.session_id, check_agent_id(args.agent_id), limit=args.limit)
    except (SwarmError, ValueError) as exc:
        print(f"Error: {exc}")
        raise SystemExit(1)
    print(json.dumps([message.model_dump(mode="json") for message in messages], indent=2))


def cmd_gc(args: argparse.Namespace) -> None:
    settings = SwarmSettings()
    store = load_store(settings)
    if args.dry_run:
        expired = store.expired_session_ids(settings.session_ttl)
        print(json.dumps({"dry_run": True, "expired_sessions": expired}, indent=2))
        return
    print(json.dumps(collect_garbage(settings, store).to_dict(), indent=2))


def cmd_journal(args: argparse.Namespace) -> None:
    settings = SwarmSettings()
    journal = load_journal(settings)
    events = journal.fetch_session_events(args.session_id)
    if args.event_type:
        events = [event for event in events if event.event_type == args.event_type]
    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]
    payload = [
        {
            "event_id": event.id,
            "event_type": event.event_type,
            "timestamp": event.timestamp.isoformat(),
            "metadata": event.metadata,
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Swarm MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List stored sessions")
    p_sessions.add_argument("--project", help="Only sessions for this absolute project path")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_tasks = sub.add_parser("tasks", help="Show task states for a session")
    p_tasks.add_argument("session_id")
    p_tasks.set_defaults(func=cmd_tasks)

    p_messages = sub.add_parser("messages", help="Show an agent's mailbox")
    p_messages.add_argument("session_id")
    p_messages.add_argument("agent_id")
    p_messages.add_argument("--limit", type=int, default=None)
    p_messages.set_defaults(func=cmd_messages)

    p_gc = sub.add_parser("gc", help="Delete expired sessions and orphaned worktrees")
    p_gc.add_argument("--dry-run", action="store_true", help="Only list expired sessions")
    p_gc.set_defaults(func=cmd_gc)

    p_journal = sub.add_parser("journal", help="List journal events for a session")
    p_journal.add_argument("session_id")
    p_journal.add_argument("--event-type")
    p_journal.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_journal.set_defaults(func=cmd_journal)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
