"""Namespaced key/value storage on SQLite.

Both the refreshing process and any read-only viewer open the same
database file; WAL journaling lets readers proceed while a refresh writes.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from typing import List, Optional

DB_FILE = os.getenv("FARE_DB", "fare_tracker.db")
DEFAULT_NAMESPACE = "group.fare-tracker"
SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    namespace  TEXT NOT NULL,
    key        TEXT NOT NULL,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);
"""

logger = logging.getLogger(__name__)


def migrate(db_path: str = DB_FILE) -> None:
    """Run pending migrations on the database."""
    logger.debug("Running migrations for %s", db_path)
    with closing(sqlite3.connect(db_path)) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version "
            "(version INTEGER NOT NULL)"
        )
        row = conn.execute("SELECT version FROM schema_version").fetchone()
        current = row[0] if row else 0
        if current < SCHEMA_VERSION:
            logger.info("Applying schema version %s to %s", SCHEMA_VERSION, db_path)
            conn.executescript(SCHEMA)
            if row:
                conn.execute(
                    "UPDATE schema_version SET version=?", (SCHEMA_VERSION,)
                )
            else:
                conn.execute(
                    "INSERT INTO schema_version(version) VALUES (?)",
                    (SCHEMA_VERSION,),
                )
            conn.commit()


class KeyValueStore:
    """String values keyed by ``(namespace, key)``."""

    def __init__(self, db_path: str = DB_FILE, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.db_path = db_path
        self.namespace = namespace
        migrate(db_path)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=10)

    def get(self, key: str) -> Optional[str]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE namespace=? AND key=?",
                (self.namespace, key),
            ).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with closing(self._connect()) as conn:
            conn.execute(
                """
                INSERT INTO kv (namespace, key, value, updated_at)
                VALUES (?,?,?,?)
                ON CONFLICT(namespace, key)
                DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
                """,
                (self.namespace, key, value, now),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with closing(self._connect()) as conn:
            conn.execute(
                "DELETE FROM kv WHERE namespace=? AND key=?", (self.namespace, key)
            )
            conn.commit()

    def keys(self, prefix: str = "") -> List[str]:
        pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT key FROM kv WHERE namespace=? AND key LIKE ? ESCAPE '\\' "
                "ORDER BY key",
                (self.namespace, pattern),
            ).fetchall()
        return [r[0] for r in rows]

    def clear(self) -> None:
        with closing(self._connect()) as conn:
            conn.execute("DELETE FROM kv WHERE namespace=?", (self.namespace,))
            conn.commit()


__all__ = ["KeyValueStore", "migrate", "DB_FILE", "DEFAULT_NAMESPACE"]
