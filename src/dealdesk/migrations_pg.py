from __future__ import annotations

import logging
from typing import Callable

from .migrations import (
    ACCOUNTS_DDL,
    CONTENT_DDL,
    POSTS_PROGRAM_COLUMN,
    PROGRAMS_DDL,
    REVIEW_QUEUE_DDL,
)
from .utils import utc_now_iso

PgMigration = Callable[[object], None]


def apply_migrations_pg(conn) -> None:
    logger = logging.getLogger("dealdesk.migrations")
    conn.execute("BEGIN")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations_pg():
            if version in applied:
                continue
            migration(conn)
            conn.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?) "
                "ON CONFLICT (version) DO NOTHING",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _run_all(conn, statements: list[str]) -> None:
    for statement in statements:
        conn.execute(statement)


def _migrate_programs(conn) -> None:
    _run_all(conn, PROGRAMS_DDL)
    conn.execute(f"ALTER TABLE posts ADD COLUMN IF NOT EXISTS {POSTS_PROGRAM_COLUMN}")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_posts_program ON posts(program_id)")


def _get_migrations_pg() -> list[tuple[str, PgMigration]]:
    return [
        ("001_accounts", lambda conn: _run_all(conn, ACCOUNTS_DDL)),
        ("002_content", lambda conn: _run_all(conn, CONTENT_DDL)),
        ("003_review_queue", lambda conn: _run_all(conn, REVIEW_QUEUE_DDL)),
        ("004_programs", _migrate_programs),
    ]
