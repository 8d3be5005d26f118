"""Local durable cache for the last known-good snapshot.

One SQLite key-value table, one row per account identity. The cache is a
fallback only: it is read when the cloud pull fails and written on every
local change. It is never treated as the source of truth.
"""

import contextlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional, Union

from foamsync.types import utc_now
from foamsync.utils import get_foamsync_home

logger = logging.getLogger(__name__)

KEY_PREFIX = "foamsync_state"

SCHEMA = """
CREATE TABLE IF NOT EXISTS state_cache (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class LocalCache:
    """Per-identity snapshot cache.

    Args:
        db_path: SQLite file; defaults to ``<foamsync home>/cache.db``.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else get_foamsync_home() / "cache.db"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(SCHEMA)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Commit on success, roll back on error, always close."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def key_for(identity: str) -> str:
        """Namespaced cache key for an account identity (e.g. its e-mail)."""
        if not identity or not identity.strip():
            raise ValueError("identity cannot be empty")
        return f"{KEY_PREFIX}:{identity.strip().lower()}"

    def save(self, identity: str, snapshot: Union[str, Dict[str, Any]]) -> bool:
        """Store the serialized snapshot for ``identity``.

        Accepts either an already-serialized string or a dict. Storage
        failures are logged and reported as False; they never propagate.
        """
        value = snapshot if isinstance(snapshot, str) else json.dumps(snapshot)
        try:
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO state_cache (key, value, updated_at)
                       VALUES (?, ?, ?)
                       ON CONFLICT(key) DO UPDATE SET
                           value = excluded.value,
                           updated_at = excluded.updated_at""",
                    (self.key_for(identity), value, utc_now()),
                )
            return True
        except sqlite3.Error as e:
            logger.warning(f"Local backup write failed for {identity}: {e}")
            return False

    def load(self, identity: str) -> Optional[Dict[str, Any]]:
        """Return the cached snapshot for ``identity``, or None.

        A corrupt entry is treated as absent.
        """
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT value FROM state_cache WHERE key = ?", (self.key_for(identity),)
                ).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Local backup read failed for {identity}: {e}")
            return None

        if row is None:
            return None
        try:
            data = json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning(f"Ignoring corrupt local backup for {identity}")
            return None
        return data if isinstance(data, dict) else None

    def updated_at(self, identity: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT updated_at FROM state_cache WHERE key = ?", (self.key_for(identity),)
            ).fetchone()
        return row["updated_at"] if row else None

    def clear(self, identity: str) -> bool:
        """Remove the entry for ``identity``. Returns True if one existed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM state_cache WHERE key = ?", (self.key_for(identity),)
            )
            return cursor.rowcount > 0
