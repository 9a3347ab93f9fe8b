"""SQLite storage with WAL mode: corpus, accounts and event log."""

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from chapterlens.storage.migrations import migrate
from chapterlens.storage.models import (
    Account,
    Book,
    Chapter,
    EventLogEntry,
    QueryCount,
    SearchHistoryEntry,
    SearchStats,
)

# Stats only look at this many recent searches when ranking top queries.
TOP_QUERY_WINDOW = 50
TOP_QUERY_LIMIT = 5


def current_period() -> str:
    """Quota period key (calendar month, UTC)."""
    return datetime.now(UTC).strftime("%Y-%m")



def normalize_query(query: str) -> str:
    """Lowercase and collapse whitespace so equivalent queries share a key."""
    return " ".join(query.lower().split())


class SQLiteStore:
    """Thread-safe SQLite store. Each thread/process should use its own instance."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(
            str(db_path),
            isolation_level=None,
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.execute("PRAGMA busy_timeout=3000")
        migrate(self.conn)

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    # -----------------------------------------------------------------------
    # Books
    # -----------------------------------------------------------------------
    def add_book(
        self,
        title: str,
        *,
        author_name: str | None = None,
        cover_url: str | None = None,
        isbn_13: str | None = None,
    ) -> Book:
        cursor = self.conn.execute(
            "INSERT INTO books (title, author_name, cover_url, isbn_13) VALUES (?, ?, ?, ?)",
            (title, author_name, cover_url, isbn_13),
        )
        book = self.get_book(cursor.lastrowid)
        assert book is not None  # Just inserted
        return book

    def get_book(self, book_id: int) -> Book | None:
        row = self.conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            return None
        return Book(**dict(row))

    def find_book(self, title: str) -> Book | None:
        """Case-insensitive exact title lookup, used to keep ingest idempotent."""
        row = self.conn.execute(
            "SELECT * FROM books WHERE lower(title) = lower(?) ORDER BY id LIMIT 1", (title,)
        ).fetchone()
        if row is None:
            return None
        return Book(**dict(row))

    # -----------------------------------------------------------------------
    # Chapters
    # -----------------------------------------------------------------------
    def add_chapter(
        self,
        *,
        book_id: int,
        chapter_title: str,
        chapter_text: str = "",
        chapter_summary: str = "",
        chapter_number: int = 0,
    ) -> Chapter:
        """Insert a chapter and its FTS row in one transaction."""
        self.conn.execute("BEGIN")
        try:
            chapter_id = self._insert_chapter(
                book_id, chapter_number, chapter_title, chapter_text, chapter_summary
            )
            self.conn.execute("COMMIT")
        except Exception:
            self.conn.execute("ROLLBACK")
            raise
        chapter = self.get_chapter(chapter_id)
        assert chapter is not None
        return chapter

    def add_book_with_chapters(
        self,
        title: str,
        chapters: list[dict],
        *,
        author_name: str | None = None,
        cover_url: str | None = None,
        isbn_13: str | None = None,
    ) -> tuple[Book, list[int]]:
        """Insert a book and all of its chapters, or nothing at all.

        Each chapter dict carries chapter_title, chapter_text, chapter_summary
        and chapter_number.
        """
        self.conn.execute("BEGIN")
        try:
            cursor = self.conn.execute(
                "INSERT INTO books (title, author_name, cover_url, isbn_13) VALUES (?, ?, ?, ?)",
                (title, author_name, cover_url, isbn_13),
            )
            book_id = cursor.lastrowid
            chapter_ids = [
                self._insert_chapter(
                    book_id,
                    ch["chapter_number"],
                    ch["chapter_title"],
                    ch.get("chapter_text", ""),
                    ch.get("chapter_summary", ""),
                )
                for ch in chapters
            ]
            self.conn.execute("COMMIT")
        except Exception:
            self.conn.execute("ROLLBACK")
            raise
        book = self.get_book(book_id)
        assert book is not None
        return book, chapter_ids

    def delete_book(self, book_id: int) -> None:
        """Remove a book, its chapters and their FTS rows."""
        self.conn.execute("BEGIN")
        try:
            rows = self.conn.execute(
                """SELECT id, chapter_title, chapter_text, chapter_summary
                   FROM chapters WHERE book_id = ?""",
                (book_id,),
            ).fetchall()
            # External-content FTS needs the old column values to drop a row
            self.conn.executemany(
                """INSERT INTO chapters_fts
                   (chapters_fts, rowid, chapter_title, chapter_text, chapter_summary)
                   VALUES ('delete', ?, ?, ?, ?)""",
                [tuple(r) for r in rows],
            )
            self.conn.execute("DELETE FROM chapters WHERE book_id = ?", (book_id,))
            self.conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            self.conn.execute("COMMIT")
        except Exception:
            self.conn.execute("ROLLBACK")
            raise

    def _insert_chapter(
        self,
        book_id: int,
        chapter_number: int,
        chapter_title: str,
        chapter_text: str,
        chapter_summary: str,
    ) -> int:
        cursor = self.conn.execute(
            """INSERT INTO chapters
               (book_id, chapter_number, chapter_title, chapter_text, chapter_summary)
               VALUES (?, ?, ?, ?, ?)""",
            (book_id, chapter_number, chapter_title, chapter_text, chapter_summary),
        )
        chapter_id = cursor.lastrowid
        self.conn.execute(
            """INSERT INTO chapters_fts
               (rowid, chapter_title, chapter_text, chapter_summary)
               VALUES (?, ?, ?, ?)""",
            (chapter_id, chapter_title, chapter_text, chapter_summary),
        )
        return chapter_id

    def get_chapter(self, chapter_id: int) -> Chapter | None:
        row = self.conn.execute("SELECT * FROM chapters WHERE id = ?", (chapter_id,)).fetchone()
        if row is None:
            return None
        return Chapter(**dict(row))

    def list_chapters(self, book_id: int | None = None) -> list[Chapter]:
        """List chapters ordered by book and chapter number."""
        query = "SELECT * FROM chapters"
        params: list = []
        if book_id is not None:
            query += " WHERE book_id = ?"
            params.append(book_id)
        query += " ORDER BY book_id, chapter_number, id"
        rows = self.conn.execute(query, params).fetchall()
        return [Chapter(**dict(r)) for r in rows]

    def chapter_rows(self, chapter_ids: list[int] | None = None) -> list[dict]:
        """Chapters joined with their book title, in the row shape the stores return."""
        query = (
            "SELECT c.id, b.title AS book_title, c.chapter_title, "
            "c.chapter_summary, c.chapter_text "
            "FROM chapters c JOIN books b ON b.id = c.book_id"
        )
        params: list = []
        if chapter_ids is not None:
            if not chapter_ids:
                return []
            placeholders = ", ".join("?" for _ in chapter_ids)
            query += f" WHERE c.id IN ({placeholders})"
            params.extend(chapter_ids)
        query += " ORDER BY c.id"
        return [dict(r) for r in self.conn.execute(query, params).fetchall()]

    def count_chapters(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM chapters").fetchone()[0])

    def count_books(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM books").fetchone()[0])

    def rebuild_fts(self) -> None:
        """Rebuild the external-content FTS index from the chapters table."""
        self.conn.execute("INSERT INTO chapters_fts(chapters_fts) VALUES ('rebuild')")

    # -----------------------------------------------------------------------
    # Accounts (quota counter)
    # -----------------------------------------------------------------------
    def get_account(self, account_id: str) -> Account | None:
        row = self.conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        if row is None:
            return None
        return Account(**dict(row))

    def ensure_account(self, account_id: str, plan: str = "free") -> Account:
        """Fetch an account, creating it if missing and resetting a stale quota period."""
        period = current_period()
        self.conn.execute(
            "INSERT OR IGNORE INTO accounts (id, plan, period_start) VALUES (?, ?, ?)",
            (account_id, plan, period),
        )
        self.conn.execute(
            """UPDATE accounts SET queries_used = 0, period_start = ?,
                   updated_at = datetime('now')
               WHERE id = ? AND period_start != ?""",
            (period, account_id, period),
        )
        account = self.get_account(account_id)
        assert account is not None
        return account

    def set_plan(self, account_id: str, plan: str) -> Account:
        self.ensure_account(account_id)
        self.conn.execute(
            "UPDATE accounts SET plan = ?, updated_at = datetime('now') WHERE id = ?",
            (plan, account_id),
        )
        account = self.get_account(account_id)
        assert account is not None
        return account

    def save_queries_used(self, account_id: str, queries_used: int) -> None:
        """Overwrite the counter. Used by admin tooling and tests, not by searches."""
        self.conn.execute(
            "UPDATE accounts SET queries_used = ?, updated_at = datetime('now') WHERE id = ?",
            (queries_used, account_id),
        )

    def increment_queries_used(self, account_id: str) -> int:
        """Add one to the counter and return the new value, atomically."""
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            cursor = self.conn.execute(
                """UPDATE accounts SET queries_used = queries_used + 1,
                       updated_at = datetime('now')
                   WHERE id = ?""",
                (account_id,),
            )
            if cursor.rowcount == 0:
                raise KeyError(account_id)
            row = self.conn.execute(
                "SELECT queries_used FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
            self.conn.execute("COMMIT")
        except Exception:
            self.conn.execute("ROLLBACK")
            raise
        return int(row[0])

    # -----------------------------------------------------------------------
    # Search history
    # -----------------------------------------------------------------------
    def save_search(
        self,
        account_id: str,
        query: str,
        *,
        plan: str,
        results_count: int = 0,
        books_count: int = 0,
    ) -> SearchHistoryEntry:
        cursor = self.conn.execute(
            """INSERT INTO searches
               (account_id, query_text, normalized_query, plan, results_count, books_count)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (account_id, query.strip(), normalize_query(query), plan, results_count, books_count),
        )
        row = self.conn.execute(
            "SELECT * FROM searches WHERE id = ?", (cursor.lastrowid,)
        ).fetchone()
        return SearchHistoryEntry(**dict(row))

    def get_search_history(self, account_id: str, limit: int = 20) -> list[SearchHistoryEntry]:
        """Most recent searches first."""
        rows = self.conn.execute(
            "SELECT * FROM searches WHERE account_id = ? ORDER BY id DESC LIMIT ?",
            (account_id, limit),
        ).fetchall()
        return [SearchHistoryEntry(**dict(r)) for r in rows]

    def delete_search(self, account_id: str, search_id: int) -> bool:
        """Delete one entry. Entries owned by another account are left alone."""
        cursor = self.conn.execute(
            "DELETE FROM searches WHERE id = ? AND account_id = ?",
            (search_id, account_id),
        )
        return cursor.rowcount > 0

    def clear_search_history(self, account_id: str) -> int:
        cursor = self.conn.execute("DELETE FROM searches WHERE account_id = ?", (account_id,))
        return cursor.rowcount

    def get_search_stats(self, account_id: str) -> SearchStats:
        """Totals, this month's count, and the most frequent recent queries."""
        total = self.conn.execute(
            "SELECT COUNT(*) FROM searches WHERE account_id = ?", (account_id,)
        ).fetchone()[0]
        this_month = self.conn.execute(
            "SELECT COUNT(*) FROM searches WHERE account_id = ? AND substr(created_at, 1, 7) = ?",
            (account_id, current_period()),
        ).fetchone()[0]
        # Ties go to the query searched most recently
        rows = self.conn.execute(
            """SELECT normalized_query, COUNT(*) AS n, MAX(id) AS last_id
               FROM (
                   SELECT id, normalized_query FROM searches
                   WHERE account_id = ? ORDER BY id DESC LIMIT ?
               )
               GROUP BY normalized_query
               ORDER BY n DESC, last_id DESC
               LIMIT ?""",
            (account_id, TOP_QUERY_WINDOW, TOP_QUERY_LIMIT),
        ).fetchall()
        return SearchStats(
            total_searches=int(total),
            this_month_searches=int(this_month),
            top_queries=[QueryCount(query=r["normalized_query"], count=r["n"]) for r in rows],
        )

    # -----------------------------------------------------------------------
    # Event log
    # -----------------------------------------------------------------------
    def query_events(
        self,
        event_type: str | None = None,
        account_id: str | None = None,
    ) -> list[EventLogEntry]:
        """Query events by type and/or account."""
        query = "SELECT * FROM event_log WHERE 1=1"
        params: list = []
        if event_type is not None:
            query += " AND event_type = ?"
            params.append(event_type)
        if account_id is not None:
            query += " AND account_id = ?"
            params.append(account_id)
        query += " ORDER BY created_at, rowid"
        rows = self.conn.execute(query, params).fetchall()
        return [EventLogEntry(**dict(r)) for r in rows]
