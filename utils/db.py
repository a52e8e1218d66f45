"""
Database utilities for SQLite operations.

Provides connection management and schema initialization for the article
store. Every store call opens its own connection so worker threads never
share one; a connection used as a context manager commits on success and
rolls back on error, which gives each call its own transaction.
"""

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000


def get_conn(db_path: str | Path) -> sqlite3.Connection:
    """
    Get SQLite database connection with dict-friendly row factory.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        SQLite connection with row_factory set to sqlite3.Row

    Raises:
        sqlite3.Error: If connection fails
    """
    # Ensure database directory exists
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_MS / 1000)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
    return conn


def init_schema(db_path: str | Path) -> None:
    """
    Initialize database schema by creating required tables if they don't exist.

    Creates:
    - articles: one row per submitted URL or message
    - tags: per-user tag names, unique case-insensitively
    - article_tags: article/tag association
    - article_summaries: LLM summaries generated on demand

    Raises:
        sqlite3.Error: If schema creation fails
    """
    conn = get_conn(db_path)
    try:
        conn.execute("PRAGMA journal_mode = WAL")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS articles (
                id TEXT PRIMARY KEY NOT NULL,
                user_id TEXT NOT NULL,
                url TEXT NOT NULL,
                title TEXT,
                description TEXT,
                site_name TEXT,
                image_url TEXT,
                language TEXT,
                word_count INTEGER,
                reading_time_seconds INTEGER,
                status TEXT NOT NULL DEFAULT 'pending',
                processing_attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                archived INTEGER NOT NULL DEFAULT 0,
                archived_at REAL,
                rating INTEGER NOT NULL DEFAULT 0,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL,
                processed_at REAL,
                read_at REAL,
                reading_position_element INTEGER,
                reading_position_offset INTEGER
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS articles_user_id_idx ON articles (user_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS articles_status_idx ON articles (status)")
        conn.execute("CREATE INDEX IF NOT EXISTS articles_archived_idx ON articles (archived)")
        conn.execute("CREATE INDEX IF NOT EXISTS articles_created_at_idx ON articles (created_at)")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS tags (
                id TEXT PRIMARY KEY NOT NULL,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                auto_generated INTEGER NOT NULL DEFAULT 1,
                created_at REAL NOT NULL
            )
        """)
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS tags_user_id_name_idx "
            "ON tags (user_id, name COLLATE NOCASE)"
        )

        conn.execute("""
            CREATE TABLE IF NOT EXISTS article_tags (
                article_id TEXT NOT NULL REFERENCES articles (id) ON DELETE CASCADE,
                tag_id TEXT NOT NULL REFERENCES tags (id) ON DELETE CASCADE,
                created_at REAL NOT NULL,
                PRIMARY KEY (article_id, tag_id)
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS article_tags_tag_id_idx ON article_tags (tag_id)")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS article_summaries (
                article_id TEXT PRIMARY KEY NOT NULL REFERENCES articles (id) ON DELETE CASCADE,
                one_sentence TEXT NOT NULL,
                one_paragraph TEXT NOT NULL,
                long TEXT NOT NULL,
                created_at REAL NOT NULL
            )
        """)

        conn.commit()
    finally:
        conn.close()

    logger.info("DB schema ready")
