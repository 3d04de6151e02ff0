#!/usr/bin/env python3
"""Apply or inspect the Gym Streak schema migrations.

Usage:
    cd api
    python -m scripts.migrate upgrade
    python -m scripts.migrate downgrade base
    python -m scripts.migrate current
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

API_DIR = Path(__file__).resolve().parents[1]


def _get_alembic_config() -> Config:
    """Alembic config usable from any working directory."""
    # env.py imports models and core, which live in api/
    if str(API_DIR) not in sys.path:
        sys.path.insert(0, str(API_DIR))

    cfg = Config(str(API_DIR / "alembic.ini"))
    cfg.set_main_option("script_location", str(API_DIR / "alembic"))
    return cfg


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Gym Streak schema migrations")
    sub = parser.add_subparsers(dest="cmd", required=True)

    upgrade = sub.add_parser("upgrade", help="Apply migrations")
    upgrade.add_argument("target", nargs="?", default="head")
    downgrade = sub.add_parser("downgrade", help="Revert migrations")
    downgrade.add_argument("target", nargs="?", default="-1")
    sub.add_parser("current", help="Show the applied revision")

    args = parser.parse_args(argv)
    cfg = _get_alembic_config()

    match args.cmd:
        case "upgrade":
            command.upgrade(cfg, args.target)
        case "downgrade":
            command.downgrade(cfg, args.target)
        case "current":
            command.current(cfg)


if __name__ == "__main__":
    main()
