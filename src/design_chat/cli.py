"""
Command-line interface for design-chat-stream.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import structlog

from .config import get_settings

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="design-chat",
        description="design-chat-stream - aggregate agent chat streams and build model messages",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    replay_parser = subparsers.add_parser("replay", help="Apply recorded stream events to a session")
    replay_parser.add_argument("events", help="JSON Lines file with one event per line")
    replay_parser.add_argument("--session", default="default", help="Session key")
    replay_parser.add_argument(
        "--agent",
        action="store_true",
        help="Lines are raw agent SDK messages instead of stream events",
    )

    show_parser = subparsers.add_parser("show", help="Show a session's history")
    show_parser.add_argument("--session", default="default", help="Session key")

    convert_parser = subparsers.add_parser("convert", help="Print a session's history as model messages")
    convert_parser.add_argument("--session", default="default", help="Session key")
    convert_parser.add_argument(
        "--format",
        choices=["normalized", "anthropic", "openai"],
        default="normalized",
        help="Output shape",
    )
    convert_parser.add_argument("--validate", action="store_true", help="Report validation warnings")

    clear_parser = subparsers.add_parser("clear", help="Clear a session's history")
    clear_parser.add_argument("--session", default="default", help="Session key")

    subparsers.add_parser("sessions", help="List stored sessions")
    subparsers.add_parser("config", help="Show configuration")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "replay":
        asyncio.run(replay_events(Path(args.events), args.session, args.agent))
    elif args.command == "show":
        asyncio.run(show_history(args.session))
    elif args.command == "convert":
        asyncio.run(convert_history(args.session, args.format, args.validate))
    elif args.command == "clear":
        asyncio.run(clear_history(args.session))
    elif args.command == "sessions":
        asyncio.run(list_sessions())
    elif args.command == "config":
        show_config()
    else:
        parser.print_help()


def _open_session(session_key: str):
    from .chat import ChatSession

    return ChatSession(session_key, settings=get_settings(), start_ticker=False)


async def replay_events(path: Path, session_key: str, agent_messages: bool) -> tuple[int, int]:
    """Apply recorded events to a session; returns (applied, skipped) counts."""
    from .chat import parse_event, translate_agent_message

    if not path.exists():
        logger.error("Events file not found", path=str(path))
        return 0, 0

    applied = 0
    skipped = 0

    async with _open_session(session_key) as session:
        for line_number, line in enumerate(path.read_text().splitlines(), start=1):
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except ValueError as e:
                logger.warning("Skipping unreadable line", line=line_number, error=str(e))
                skipped += 1
                continue

            if agent_messages:
                events = translate_agent_message(payload)
            else:
                event = parse_event(payload)
                events = [event] if event is not None else []

            if not events:
                skipped += 1
            for event in events:
                if session.apply(event):
                    applied += 1
                else:
                    skipped += 1

        session.tick()
        warnings = list(session.warnings)
        entry_count = len(session.entries)

    logger.info(
        "Replay complete",
        session_key=session_key,
        applied=applied,
        skipped=skipped,
        entries=entry_count,
    )
    for warning in warnings:
        print(f"  warning: {warning}")
    return applied, skipped


def _describe_entry(entry) -> str:
    from .chat import ToolEntry, ToolGroupEntry

    if isinstance(entry, ToolGroupEntry):
        status = "running" if entry.is_loading else ("error" if entry.result_is_error else "done")
        return f"tool-group {entry.group_id} ({len(entry.children)} tools, {status})"
    if isinstance(entry, ToolEntry):
        tool = entry.tool
        status = "error" if tool.result_is_error else ("done" if tool.result_received else f"{tool.progress_pct:.0f}%")
        return f"tool {tool.tool_name} [{tool.tool_id}] {status}"

    text = entry.text.replace("\n", " ")
    preview = text[:80] + ("..." if len(text) > 80 else "")
    subtype = f" ({entry.subtype})" if entry.subtype else ""
    return f"{entry.kind}{subtype}: {preview}"


async def show_history(session_key: str) -> None:
    """Print a session's history."""
    from .chat import ToolGroupEntry

    async with _open_session(session_key) as session:
        entries = list(session.entries)

    if not entries:
        print(f"No history for session '{session_key}'.")
        return

    for index, entry in enumerate(entries):
        print(f"[{index}] {_describe_entry(entry)}")
        if isinstance(entry, ToolGroupEntry):
            for child in entry.children:
                print(f"      - {_describe_entry(child)}")


async def convert_history(session_key: str, output_format: str, validate: bool) -> None:
    """Print a session's history as model messages."""
    from .llm import (
        messages_to_json,
        to_anthropic_messages,
        to_openai_messages,
        validate_messages,
    )

    async with _open_session(session_key) as session:
        messages = session.build_model_messages()

    if output_format == "anthropic":
        print(json.dumps(to_anthropic_messages(messages), indent=2, ensure_ascii=False))
    elif output_format == "openai":
        print(json.dumps(to_openai_messages(messages), indent=2, ensure_ascii=False))
    else:
        print(messages_to_json(messages, indent=2))

    if validate:
        validation = validate_messages(messages)
        if validation.is_valid:
            print("✅ Messages look valid", file=sys.stderr)
        else:
            print("⚠️  Warnings:", file=sys.stderr)
            for warning in validation.warnings:
                print(f"   - {warning}", file=sys.stderr)


async def clear_history(session_key: str) -> None:
    """Clear a session's history."""
    async with _open_session(session_key) as session:
        await session.clear()
    print(f"Cleared history for session '{session_key}'.")


async def list_sessions() -> None:
    """List stored sessions."""
    from .chat import SQLHistoryStore

    store = SQLHistoryStore(get_settings().database_url)
    try:
        sessions = await store.list_sessions()
    finally:
        await store.close()

    if not sessions:
        print("No stored sessions.")
        return

    print(f"\n{'Session':<40} {'Entries':<10}")
    print("-" * 50)
    for key, count in sessions:
        print(f"{key:<40} {count:<10}")


def show_config() -> None:
    """Show current configuration."""
    settings = get_settings()

    print("\n=== design-chat-stream Configuration ===\n")

    print("Storage:")
    print(f"  Database URL: {settings.database_url}")
    print(f"  Persist: {settings.persist_enabled}")

    print("\nProgress:")
    print(f"  Interval: {settings.progress_interval_sec}s")
    print(f"  Cap: {settings.progress_cap_pct}%")
    print(f"  Default Duration: {settings.default_tool_duration_sec}s")
    if settings.tool_durations:
        for name, duration in sorted(settings.tool_durations.items()):
            print(f"  {name}: {duration}s")

    print("\nStream:")
    print(f"  Parked Result Limit: {settings.orphan_result_limit}")
    print(f"  Stop Notice: {settings.stopped_notice}")

    print("\nLogging:")
    print(f"  Level: {settings.log_level}")
    print(f"  Debug: {settings.debug}")


if __name__ == "__main__":
    main()
