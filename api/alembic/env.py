"""Alembic environment for the Gym Streak schema.

Migrations run with the synchronous psycopg2 driver. Replicas that start at
the same time serialize on a PostgreSQL advisory lock so only one of them
applies a revision.
"""

from __future__ import annotations

import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import Connection, create_engine, text
from tenacity import (
    RetryError,
    Retrying,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)

sys.path.insert(0, str(Path(__file__).parent.parent))

import models  # noqa: E402,F401  registers tables on Base.metadata
from alembic import context  # noqa: E402
from core.config import get_settings  # noqa: E402
from core.database import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata

MIGRATION_LOCK_KEY = 418203377
LOCK_WAIT_SECONDS = 120


def _try_lock(connection: Connection) -> bool:
    return bool(
        connection.execute(
            text("SELECT pg_try_advisory_lock(:key)"), {"key": MIGRATION_LOCK_KEY}
        ).scalar()
    )


def _wait_for_lock(connection: Connection) -> None:
    retrying = Retrying(
        retry=retry_if_result(lambda acquired: not acquired),
        stop=stop_after_delay(LOCK_WAIT_SECONDS),
        wait=wait_fixed(2),
        before_sleep=lambda _: logger.info("Migration lock held elsewhere, waiting"),
    )
    try:
        retrying(_try_lock, connection)
    except RetryError as e:
        raise RuntimeError(
            f"Migration lock not acquired within {LOCK_WAIT_SECONDS}s; "
            "another replica may be stuck holding it."
        ) from e
    # Alembic expects to open its own transaction
    connection.commit()


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of applying it."""
    context.configure(
        url=get_settings().sync_database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(get_settings().sync_database_url)

    with engine.connect() as connection:
        _wait_for_lock(connection)
        logger.info("Migration lock acquired")
        try:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                compare_type=True,
            )
            with context.begin_transaction():
                context.run_migrations()
        finally:
            connection.execute(
                text("SELECT pg_advisory_unlock(:key)"), {"key": MIGRATION_LOCK_KEY}
            )
            connection.commit()
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
