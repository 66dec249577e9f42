"""
Board snapshot storage (SQLite).

The board is persisted as a full snapshot: every save replaces all rows,
every load returns the whole board. There is no incremental contract.
"""
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from .schema import utc_now

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS todos (
    id               TEXT PRIMARY KEY,
    title            TEXT NOT NULL,
    description      TEXT NOT NULL DEFAULT '',
    status           TEXT NOT NULL DEFAULT 'todo',
    sort_order       INTEGER NOT NULL DEFAULT 0,
    timer_minutes    INTEGER,
    timer_started_at TEXT,
    timer_ended_at   TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,
    position         INTEGER NOT NULL  -- insertion order, breaks sort_order ties
);

CREATE TABLE IF NOT EXISTS system_state (
    key        TEXT PRIMARY KEY,
    value      TEXT,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_todos_status ON todos(status, sort_order);
"""

TODO_COLUMNS = (
    "id", "title", "description", "status", "timer_minutes",
    "timer_started_at", "timer_ended_at", "created_at", "updated_at",
)


@contextmanager
def _connect(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Open a connection, commit on success, always close."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL")
        yield conn
        conn.commit()
    finally:
        conn.close()


class SnapshotStore:
    """SQLite-backed snapshot storage for the to-do board."""

    def __init__(self, db_path: str):
        """Initialize storage and create tables if needed."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with _connect(self.db_path) as conn:
            conn.executescript(SCHEMA_SQL)

    def save(self, snapshot: Dict[str, Any]) -> None:
        """Replace the stored board with `snapshot`."""
        todos = snapshot.get("todos", [])
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM todos")
            for position, t in enumerate(todos):
                conn.execute(
                    """
                    INSERT INTO todos
                    (id, title, description, status, sort_order, timer_minutes,
                     timer_started_at, timer_ended_at, created_at, updated_at, position)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        t["id"],
                        t["title"],
                        t.get("description") or "",
                        t.get("status", "todo"),
                        int(t.get("order", 0)),
                        t.get("timer_minutes"),
                        t.get("timer_started_at"),
                        t.get("timer_ended_at"),
                        t["created_at"],
                        t["updated_at"],
                        position,
                    ),
                )
            conn.execute(
                """
                INSERT INTO system_state (key, value, updated_at)
                VALUES ('active_timer_id', ?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
                """,
                (snapshot.get("active_timer_id"), utc_now().isoformat()),
            )
        logger.info(f"Saved snapshot: {len(todos)} todos -> {self.db_path}")

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored snapshot, or None if nothing was ever saved."""
        with _connect(self.db_path) as conn:
            state = conn.execute(
                "SELECT value FROM system_state WHERE key = 'active_timer_id'"
            ).fetchone()
            rows = conn.execute(
                "SELECT * FROM todos ORDER BY position ASC"
            ).fetchall()

        if state is None and not rows:
            return None

        todos = []
        for row in rows:
            data = {col: row[col] for col in TODO_COLUMNS}
            data["order"] = row["sort_order"]
            todos.append(data)
        return {
            "todos": todos,
            "active_timer_id": state["value"] if state else None,
        }
