"""Search event log: a daily JSONL stream mirrored into the event_log table.

Events record what the pipeline did for one request (``search.completed``,
``search.gated``, ``ingest.book`` and so on). The JSONL stream is what gets
shipped and replayed; the table copy exists so ``query_events`` can filter
by account without parsing files.
"""

import json
import logging
import sqlite3
import time
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class SearchLogger:
    """Appends search events to ``chapterlens-YYYY-MM-DD.jsonl`` and mirrors them to SQLite."""

    def __init__(self, log_dir: Path, db_conn: sqlite3.Connection | None = None) -> None:
        self.log_dir = log_dir
        self.db_conn = db_conn
        self.log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def _log_file(self) -> Path:
        day = datetime.now(UTC).strftime("%Y-%m-%d")
        return self.log_dir / f"chapterlens-{day}.jsonl"

    def log(
        self,
        event_type: str,
        data: dict,
        *,
        account_id: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        """Record one search event.

        A failed file append raises, since the event would otherwise be lost.
        A failed table insert only warns: the event is already in the stream.
        """
        record = {
            "event_type": event_type,
            "data": data,
            "account_id": account_id,
            "duration_ms": duration_ms,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        with self._log_file.open("a") as f:
            f.write(json.dumps(record) + "\n")

        if self.db_conn is None:
            return
        try:
            self.db_conn.execute(
                """INSERT INTO event_log
                   (id, account_id, event_type, data, duration_ms)
                   VALUES (?, ?, ?, ?, ?)""",
                (str(uuid.uuid4()), account_id, event_type, json.dumps(data), duration_ms),
            )
        except sqlite3.Error:
            logger.warning("Event %s not mirrored to event_log", event_type, exc_info=True)

    @contextmanager
    def timed(self, event_type: str, **kwargs):
        """Time a block of pipeline work and log it as one event on exit.

        The caller adds fields (result counts, stage names) to the yielded dict.
        ``status`` ends as ``success`` or ``error``, and errors are re-raised.
        """
        fields = {"status": "started"}
        start = time.monotonic()
        try:
            yield fields
            fields["status"] = "success"
        except Exception as e:
            fields["status"] = "error"
            fields["error"] = str(e)
            raise
        finally:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self.log(event_type, fields, duration_ms=elapsed_ms, **kwargs)
