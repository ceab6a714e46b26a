"""Entry point for ``python -m calsync``.

Provides the operator CLI for the calendar sync engine.  Uses stdlib
:mod:`argparse` for argument parsing.

Subcommands:
    sync            -- Sync one calendar of a user (incremental by default).
    connect         -- Run the OAuth browser flow and store the tokens.
    disconnect      -- Remove a user's stored tokens.
    calendars       -- List the calendars a user can sync.
    watch           -- Create (or replace) the webhook channel of a calendar.
    unwatch         -- Deactivate a webhook channel.
    sweep-channels  -- Deactivate expired webhook channels.
    conflicts       -- Show cached events flagged as conflicting.
    cleanup-orphans -- Clear cache links to shoots that no longer exist.
    init-db         -- Create the database tables.
    serve           -- Run the webhook endpoint.

Exit codes:
    0 -- Command completed successfully.
    1 -- An error occurred (configuration, provider or sync failure).
    2 -- Argument parsing error (handled by argparse).
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable

from sqlalchemy.exc import SQLAlchemyError

from calsync.calendar.exceptions import CalendarAPIError
from calsync.config import ConfigError, Settings, load_settings
from calsync.log import setup_logging
from calsync.services import Services, build_services
from calsync.store import init_db


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser with subcommands."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable debug-level logging.",
    )

    parser = argparse.ArgumentParser(
        prog="calsync",
        description="Keep a local cache of Google Calendar events in sync.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- "sync" -------------------------------------------------------
    sync_parser = subparsers.add_parser(
        "sync", parents=[common], help="Sync one calendar of a user."
    )
    sync_parser.add_argument("user", help="Email address of the calendar owner.")
    _add_calendar_option(sync_parser)
    sync_parser.add_argument(
        "--full",
        action="store_true",
        default=False,
        help="Discard the stored sync token and refetch the whole window.",
    )

    # --- "connect" / "disconnect" ------------------------------------
    connect_parser = subparsers.add_parser(
        "connect", parents=[common], help="Authorize access to a user's calendar."
    )
    connect_parser.add_argument("user", help="Email address of the calendar owner.")
    connect_parser.add_argument(
        "--client-secrets",
        default="credentials.json",
        help="OAuth client secrets file (default: credentials.json).",
    )

    disconnect_parser = subparsers.add_parser(
        "disconnect", parents=[common], help="Remove a user's stored tokens."
    )
    disconnect_parser.add_argument("user", help="Email address of the calendar owner.")

    calendars_parser = subparsers.add_parser(
        "calendars", parents=[common], help="List the calendars a user can sync."
    )
    calendars_parser.add_argument("user", help="Email address of the calendar owner.")

    # --- Webhook channels --------------------------------------------
    watch_parser = subparsers.add_parser(
        "watch", parents=[common], help="Create the webhook channel of a calendar."
    )
    watch_parser.add_argument("user", help="Email address of the calendar owner.")
    _add_calendar_option(watch_parser)

    unwatch_parser = subparsers.add_parser(
        "unwatch", parents=[common], help="Deactivate a webhook channel."
    )
    unwatch_parser.add_argument("channel_id", help="Channel id returned by 'watch'.")

    subparsers.add_parser(
        "sweep-channels", parents=[common], help="Deactivate expired webhook channels."
    )

    # --- Cache maintenance -------------------------------------------
    conflicts_parser = subparsers.add_parser(
        "conflicts", parents=[common], help="Show cached events flagged as conflicting."
    )
    conflicts_parser.add_argument("user", help="Email address of the calendar owner.")
    _add_calendar_option(conflicts_parser)

    orphans_parser = subparsers.add_parser(
        "cleanup-orphans",
        parents=[common],
        help="Clear cache links to shoots that no longer exist.",
    )
    orphans_parser.add_argument("user", help="Email address of the calendar owner.")
    _add_calendar_option(orphans_parser)

    subparsers.add_parser("init-db", parents=[common], help="Create the database tables.")

    serve_parser = subparsers.add_parser(
        "serve", parents=[common], help="Run the webhook endpoint."
    )
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address.")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port.")

    return parser


def _add_calendar_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--calendar",
        default="primary",
        help="Calendar id (default: primary).",
    )


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


def _handle_sync(args: argparse.Namespace, services: Services) -> int:
    result = services.sync_engine.sync_calendar(
        args.user, args.calendar, force_full_sync=args.full
    )
    if not result.success:
        print(f"Error ({result.error_kind}): {result.error}", file=sys.stderr)
        return 1

    mode = "full" if result.full_sync else "incremental"
    print(
        f"Synced {args.calendar} for {args.user} ({mode}): "
        f"{result.synced_count} updated, {result.deleted_count} deleted, "
        f"{result.conflict_count} conflict(s)"
    )
    return 0


def _handle_connect(args: argparse.Namespace, services: Services) -> int:
    services.credentials.connect(args.user, args.client_secrets)
    print(f"Google Calendar connected for {args.user}")
    return 0


def _handle_disconnect(args: argparse.Namespace, services: Services) -> int:
    if not services.credentials.disconnect(args.user):
        print(f"No stored credential for {args.user}")
        return 0
    print(f"Google Calendar disconnected for {args.user}")
    return 0


def _handle_calendars(args: argparse.Namespace, services: Services) -> int:
    for entry in services.sync_engine.list_calendars(args.user):
        marker = "*" if entry.get("primary") else " "
        print(f"{marker} {entry['id']}  {entry.get('summary', '')}  ({entry.get('accessRole', '?')})")
    return 0


def _handle_watch(args: argparse.Namespace, services: Services) -> int:
    channel = services.channels.create_channel(args.user, args.calendar)
    expires = channel.expiration.isoformat() if channel.expiration else "unknown"
    print(f"Watching {args.calendar} for {args.user}: channel {channel.channel_id} (expires {expires})")
    return 0


def _handle_unwatch(args: argparse.Namespace, services: Services) -> int:
    if not services.channels.deactivate_channel(args.channel_id):
        print(f"Channel {args.channel_id} was not active")
        return 0
    print(f"Channel {args.channel_id} deactivated")
    return 0


def _handle_sweep(args: argparse.Namespace, services: Services) -> int:  # noqa: ARG001
    count = services.channels.sweep_expired_channels()
    print(f"Deactivated {count} expired channel(s)")
    return 0


def _handle_conflicts(args: argparse.Namespace, services: Services) -> int:
    flagged = [
        event
        for event in services.events.list_cached_events(args.user, args.calendar)
        if event.conflict_detected
    ]
    if not flagged:
        print("No conflicts.")
        return 0

    for event in flagged:
        print(f"{event.start_time.isoformat()}  {event.title} ({event.remote_event_id})")
        for other in event.conflict_details or []:
            print(f"    overlaps {other['title']} ({other['startTime']} - {other['endTime']})")
    return 0


def _handle_cleanup(args: argparse.Namespace, services: Services) -> int:
    count = services.reconciler.cleanup_orphaned_events(args.user, args.calendar)
    print(f"Cleared {count} orphaned link(s)")
    return 0


def _handle_init_db(args: argparse.Namespace, services: Services) -> int:  # noqa: ARG001
    init_db(services.db_engine)
    print("Database tables created.")
    return 0


def _handle_serve(args: argparse.Namespace, services: Services) -> int:
    import uvicorn

    from calsync.web import create_app

    uvicorn.run(create_app(services.channels), host=args.host, port=args.port)
    return 0


_HANDLERS: dict[str, Callable[[argparse.Namespace, Services], int]] = {
    "sync": _handle_sync,
    "connect": _handle_connect,
    "disconnect": _handle_disconnect,
    "calendars": _handle_calendars,
    "watch": _handle_watch,
    "unwatch": _handle_unwatch,
    "sweep-channels": _handle_sweep,
    "conflicts": _handle_conflicts,
    "cleanup-orphans": _handle_cleanup,
    "init-db": _handle_init_db,
    "serve": _handle_serve,
}


def main(argv: list[str] | None = None) -> int:
    """Run the calsync CLI.

    Args:
        argv: Command-line arguments.  Defaults to ``sys.argv[1:]``
            when ``None`` (the normal case).

    Returns:
        Exit code: ``0`` on success, ``1`` on error.
    """
    parser = build_parser()
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    try:
        settings: Settings = load_settings()
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    setup_logging("DEBUG" if args.verbose else settings.log_level)

    try:
        services = build_services(settings)
        return _HANDLERS[args.command](args, services)
    except (CalendarAPIError, SQLAlchemyError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
