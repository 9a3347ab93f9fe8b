"""SQLite migration system using PRAGMA user_version."""

import sqlite3

# Each migration is (version, sql). Append-only, sequential.
MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS books (
            id INTEGER PRIMARY KEY,
            title TEXT NOT NULL,
            author_name TEXT,
            cover_url TEXT,
            isbn_13 TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS chapters (
            id INTEGER PRIMARY KEY,
            book_id INTEGER NOT NULL REFERENCES books(id),
            chapter_number INTEGER NOT NULL DEFAULT 0,
            chapter_title TEXT NOT NULL,
            chapter_text TEXT NOT NULL DEFAULT '',
            chapter_summary TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE VIRTUAL TABLE IF NOT EXISTS chapters_fts USING fts5(
            chapter_title,
            chapter_text,
            chapter_summary,
            content='chapters',
            content_rowid='id'
        );

        CREATE TABLE IF NOT EXISTS event_log (
            id TEXT PRIMARY KEY,
            account_id TEXT,
            event_type TEXT NOT NULL,
            data TEXT NOT NULL DEFAULT '{}' CHECK(json_valid(data)),
            duration_ms INTEGER,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE INDEX IF NOT EXISTS idx_chapters_book ON chapters(book_id);
        CREATE INDEX IF NOT EXISTS idx_log_account ON event_log(account_id);
        CREATE INDEX IF NOT EXISTS idx_log_type ON event_log(event_type);
        CREATE INDEX IF NOT EXISTS idx_log_time ON event_log(created_at);
        """,
    ),
    (
        2,
        """
        CREATE TABLE IF NOT EXISTS accounts (
            id TEXT PRIMARY KEY,
            plan TEXT NOT NULL DEFAULT 'free',
            queries_used INTEGER NOT NULL DEFAULT 0 CHECK(queries_used >= 0),
            period_start TEXT NOT NULL DEFAULT (strftime('%Y-%m', 'now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """,
    ),
    (
        3,
        """
        CREATE TABLE IF NOT EXISTS analysis_cache (
            chapter_id INTEGER NOT NULL,
            query_text TEXT NOT NULL,
            analysis_level TEXT NOT NULL,
            enhanced_score REAL NOT NULL,
            relevance_reason TEXT NOT NULL,
            key_topics TEXT NOT NULL DEFAULT '[]' CHECK(json_valid(key_topics)),
            analysis_text TEXT,
            hit_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            PRIMARY KEY (chapter_id, query_text, analysis_level)
        );
        """,
    ),
    (
        4,
        """
        CREATE TABLE IF NOT EXISTS searches (
            id INTEGER PRIMARY KEY,
            account_id TEXT NOT NULL,
            query_text TEXT NOT NULL,
            normalized_query TEXT NOT NULL,
            plan TEXT NOT NULL,
            results_count INTEGER NOT NULL DEFAULT 0,
            books_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
        );

        CREATE INDEX IF NOT EXISTS idx_searches_account ON searches(account_id, created_at);
        """,
    ),
]

LATEST_VERSION = MIGRATIONS[-1][0]


def get_version(conn: sqlite3.Connection) -> int:
    """Get the current schema version."""
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def migrate(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations sequentially.

    Uses EXCLUSIVE lock to prevent concurrent migration races.
    """
    current = get_version(conn)
    for version, sql in MIGRATIONS:
        if version > current:
            # Acquire exclusive lock, re-check version to handle races
            conn.execute("BEGIN EXCLUSIVE")
            try:
                actual = int(conn.execute("PRAGMA user_version").fetchone()[0])
                if version > actual:
                    for stmt in _split_sql(sql):
                        conn.execute(stmt)
                    conn.execute(f"PRAGMA user_version = {version}")
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            current = version


def _split_sql(sql: str) -> list[str]:
    """Split a multi-statement SQL string into individual statements."""
    return [s.strip() for s in sql.strip().split(";") if s.strip()]
