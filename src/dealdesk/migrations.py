from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]

# DDL shared with the Postgres bootstrap; keep it portable (TEXT/INTEGER/REAL only).
ACCOUNTS_DDL = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        name TEXT NULL,
        password_hash TEXT NOT NULL,
        is_admin INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        token TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)",
    """
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
]

CONTENT_DDL = [
    """
    CREATE TABLE IF NOT EXISTS banks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        slug TEXT NOT NULL UNIQUE,
        logo TEXT NULL,
        brand_color TEXT NULL,
        description TEXT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        slug TEXT NOT NULL UNIQUE,
        label TEXT NOT NULL,
        description TEXT NULL,
        color TEXT NULL,
        parent_id TEXT NULL REFERENCES categories(id),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_categories_parent ON categories(parent_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS card_configs (
        id TEXT PRIMARY KEY,
        category_type TEXT NOT NULL UNIQUE,
        display_name TEXT NOT NULL,
        description TEXT NULL,
        form_schema_json TEXT NOT NULL,
        render_config_json TEXT NOT NULL,
        requires_bank INTEGER NOT NULL DEFAULT 0,
        requires_expiry INTEGER NOT NULL DEFAULT 0,
        supports_verification INTEGER NOT NULL DEFAULT 0,
        supports_active INTEGER NOT NULL DEFAULT 0,
        supports_author INTEGER NOT NULL DEFAULT 0,
        card_layout TEXT NOT NULL DEFAULT 'standard',
        sort_order INTEGER NOT NULL DEFAULT 0,
        is_enabled INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS posts (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        excerpt TEXT NULL,
        content TEXT NULL,
        category_type TEXT NULL,
        categories TEXT NULL,
        category_data_json TEXT NULL,
        published INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'draft',
        author_id TEXT NOT NULL REFERENCES users(id),
        bank_id TEXT NULL REFERENCES banks(id),
        expiry_at TEXT NULL,
        details_content TEXT NULL,
        cta_url TEXT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_posts_category_created ON posts(category_type, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_posts_bank ON posts(bank_id)",
    """
    CREATE TABLE IF NOT EXISTS comments (
        id TEXT PRIMARY KEY,
        post_id TEXT NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES users(id),
        author_name TEXT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_comments_post ON comments(post_id, created_at)",
]

REVIEW_QUEUE_DDL = [
    """
    CREATE TABLE IF NOT EXISTS raw_tweets (
        id TEXT PRIMARY KEY,
        tweet_url TEXT NOT NULL UNIQUE,
        tweet_id TEXT NOT NULL,
        content TEXT NOT NULL,
        author_handle TEXT NOT NULL,
        author_name TEXT NULL,
        posted_at TEXT NOT NULL,
        fetched_at TEXT NOT NULL,
        metadata_json TEXT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pending_posts (
        id TEXT PRIMARY KEY,
        raw_tweet_id TEXT NOT NULL UNIQUE REFERENCES raw_tweets(id),
        category TEXT NOT NULL,
        extracted_data_json TEXT NOT NULL,
        confidence REAL NULL,
        low_confidence_fields_json TEXT NULL,
        status TEXT NOT NULL,
        admin_notes TEXT NULL,
        reviewer_notes TEXT NULL,
        published_post_id TEXT NULL REFERENCES posts(id),
        version INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_pending_posts_status ON pending_posts(status, created_at)",
]

PROGRAMS_DDL = [
    """
    CREATE TABLE IF NOT EXISTS programs (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        slug TEXT NOT NULL UNIQUE,
        type TEXT NOT NULL,
        logo TEXT NULL,
        brand_color TEXT NULL,
        description TEXT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_programs_type ON programs(type, name)",
]

POSTS_PROGRAM_COLUMN = "program_id TEXT NULL REFERENCES programs(id)"


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("dealdesk.migrations")
    conn.execute("BEGIN IMMEDIATE")
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
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _run_all(conn: sqlite3.Connection, statements: list[str]) -> None:
    for statement in statements:
        conn.execute(statement)


def _migration_accounts(conn: sqlite3.Connection) -> None:
    _run_all(conn, ACCOUNTS_DDL)


def _migration_content(conn: sqlite3.Connection) -> None:
    _run_all(conn, CONTENT_DDL)


def _migration_review_queue(conn: sqlite3.Connection) -> None:
    _run_all(conn, REVIEW_QUEUE_DDL)


def _migration_programs(conn: sqlite3.Connection) -> None:
    _run_all(conn, PROGRAMS_DDL)
    if "program_id" not in _table_columns(conn, "posts"):
        conn.execute(f"ALTER TABLE posts ADD COLUMN {POSTS_PROGRAM_COLUMN}")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_posts_program ON posts(program_id)")


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_accounts", _migration_accounts),
        ("002_content", _migration_content),
        ("003_review_queue", _migration_review_queue),
        ("004_programs", _migration_programs),
    ]


def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row[1] for row in rows}
