"""SQLite-backed persistence gateway.

Database: data/gate.db (WAL mode)
Tables: gate_state (key/value), schema_version
"""
import logging
import sqlite3
from pathlib import Path
from typing import Optional

from .base import KeyValuePersistence


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1


def init_database(db_path: str | Path) -> None:
    """Initialize gate state database with schema.

    Creates tables if they don't exist.
    Enables WAL mode for concurrent reads.

    Args:
        db_path: Path to SQLite database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    try:
        conn.execute("PRAGMA journal_mode=WAL")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        current_version = cursor.fetchone()[0] or 0

        if current_version < SCHEMA_VERSION:
            _apply_schema(conn)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info("Gate database schema initialized (version %s)", SCHEMA_VERSION)
        else:
            logger.debug("Gate database schema up to date (version %s)", current_version)

    finally:
        conn.close()


def _apply_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS gate_state (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


class SQLitePersistence(KeyValuePersistence):
    """Gateway storing each persisted fact as one row of gate_state."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize SQLite persistence.

        Args:
            db_path: Path to SQLite database file (created if missing)
        """
        self.db_path = Path(db_path)
        init_database(self.db_path)
        self._conn: Optional[sqlite3.Connection] = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    async def _get(self, key: str) -> Optional[str]:
        cursor = self._connection().execute(
            "SELECT value FROM gate_state WHERE key=?", (key,)
        )
        row = cursor.fetchone()
        return None if row is None else row[0]

    async def _set(self, key: str, value: str) -> None:
        conn = self._connection()
        conn.execute(
            """
            INSERT INTO gate_state (key, value)
            VALUES (?, ?)
            ON CONFLICT(key)
            DO UPDATE SET
                value=excluded.value,
                updated_at=CURRENT_TIMESTAMP
            """,
            (key, value),
        )
        conn.commit()

    async def _delete(self, key: str) -> None:
        conn = self._connection()
        conn.execute("DELETE FROM gate_state WHERE key=?", (key,))
        conn.commit()

    def close(self) -> None:
        """Close the underlying connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
