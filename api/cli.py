#!/usr/bin/env python3
"""CLI for Gym Streak API management tasks.

Usage:
    python -m cli <command>

Commands:
    repair-streaks  Recompute stored streaks from the check-in history
    migrate         Run database migrations
"""

import argparse
import asyncio
import sys

from core.logger import configure_logging, get_logger
from core.wide_event import wide_event_scope

configure_logging()
logger = get_logger(__name__)


async def _repair_streaks(user_ids: list[str] | None, include_inactive: bool) -> int:
    from core.database import (
        create_engine,
        create_session_maker,
        dispose_engine,
        session_scope,
    )
    from services.streaks_service import StreakEngine

    engine = create_engine()
    session_maker = create_session_maker(engine)

    try:
        with wide_event_scope(
            "cli.repair_streaks",
            selected_users=len(user_ids) if user_ids else None,
            include_inactive=include_inactive,
        ):
            async with session_scope(session_maker) as session:
                report = await StreakEngine.for_session(session).repair(
                    user_ids, include_inactive=include_inactive
                )
    finally:
        await dispose_engine(engine)

    return 1 if report.failures else 0


def cmd_repair_streaks(args: argparse.Namespace) -> int:
    """Recompute stored streaks and overwrite drifted values."""
    user_ids = args.user_id or None
    return asyncio.run(_repair_streaks(user_ids, include_inactive=args.all))


def cmd_migrate() -> int:
    """Run database migrations."""
    from alembic import command
    from scripts.migrate import _get_alembic_config

    logger.info("cli.migrate.started")
    cfg = _get_alembic_config()
    command.upgrade(cfg, "head")
    logger.info("cli.migrate.complete")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Gym Streak API CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    repair = subparsers.add_parser(
        "repair-streaks",
        help="Recompute stored streaks from the check-in history",
    )
    repair.add_argument(
        "--user-id",
        action="append",
        help="Repair a single user (repeatable). Default: every active streak",
    )
    repair.add_argument(
        "--all",
        action="store_true",
        help="Include users whose stored streak is already zero",
    )
    subparsers.add_parser(
        "migrate",
        help="Run database migrations",
    )

    args = parser.parse_args()

    if args.command == "repair-streaks":
        return cmd_repair_streaks(args)
    elif args.command == "migrate":
        return cmd_migrate()
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
