"""SQLite adapter for the persisted store.

One connection in autocommit mode; transactions are opened explicitly by
``atomic()`` so nested scopes can map onto savepoints. A re-entrant lock
serializes all access, so the same instance is safe to share between the
event loop and the request thread pool.
"""

import contextlib
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..database import (
    COMPANIES_TABLE,
    CREW_TIME_LOGS_TABLE,
    SETTINGS_TABLE,
    USERS_TABLE,
    project_columns,
    validate_collection,
)

logger = logging.getLogger("foamsync.stores.sqlite")

SCHEMA = """
CREATE TABLE IF NOT EXISTS companies (
    id TEXT PRIMARY KEY,
    name TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    role TEXT NOT NULL DEFAULT 'admin' CHECK (role IN ('admin', 'crew')),
    email TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    company_id TEXT NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (company_id, key)
);

CREATE TABLE IF NOT EXISTS inventory (
    company_id TEXT NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    id TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    name TEXT,
    quantity REAL,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (company_id, id)
);

CREATE TABLE IF NOT EXISTS customers (
    company_id TEXT NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    id TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    name TEXT,
    email TEXT,
    status TEXT,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (company_id, id)
);

CREATE TABLE IF NOT EXISTS estimates (
    company_id TEXT NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    id TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    customer_id TEXT,
    status TEXT,
    execution_status TEXT,
    total_value REAL,
    date TEXT,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (company_id, id)
);

CREATE TABLE IF NOT EXISTS material_logs (
    company_id TEXT NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    id TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    date TEXT,
    job_id TEXT,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (company_id, id)
);

CREATE TABLE IF NOT EXISTS crew_time_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id TEXT NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    work_order_url TEXT,
    start_time TEXT,
    end_time TEXT,
    user_name TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_company ON users(company_id);
CREATE INDEX IF NOT EXISTS idx_estimates_status ON estimates(company_id, status);
CREATE INDEX IF NOT EXISTS idx_customers_email ON customers(company_id, email);
CREATE INDEX IF NOT EXISTS idx_material_logs_job ON material_logs(company_id, job_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore:
    """Persisted store backed by a single SQLite database file.

    Args:
        db_path: File path, or ``":memory:"`` for a private in-memory database.
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON")
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
        self._lock = threading.RLock()
        self._depth = 0
        self._conn.executescript(SCHEMA)

    def close(self):
        with self._lock:
            self._conn.close()

    @contextlib.contextmanager
    def atomic(self):
        """Transaction scope; nested scopes become savepoints.

        An exception rolls back only the innermost scope and re-raises.
        """
        with self._lock:
            savepoint = f"sp_{self._depth}" if self._depth else None
            self._conn.execute(f"SAVEPOINT {savepoint}" if savepoint else "BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self
            except BaseException as e:
                self._depth -= 1
                logger.debug(f"Transaction failed, rolling back: {e}")
                if savepoint:
                    self._conn.execute(f"ROLLBACK TO {savepoint}")
                    self._conn.execute(f"RELEASE {savepoint}")
                else:
                    self._conn.execute("ROLLBACK")
                raise
            else:
                self._depth -= 1
                self._conn.execute(f"RELEASE {savepoint}" if savepoint else "COMMIT")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self.atomic():
            return self._conn.execute(sql, params)

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def ping(self) -> bool:
        try:
            self._query("SELECT 1")
        except sqlite3.Error as e:
            logger.warning(f"SQLite ping failed: {e}")
            return False
        return True

    # -------------------------------------------------------------------------
    # Tenants
    # -------------------------------------------------------------------------

    def create_company(self, company_id: str, name: str | None = None) -> None:
        self._execute(
            f"INSERT OR IGNORE INTO {COMPANIES_TABLE} (id, name, created_at) VALUES (?, ?, ?)",
            (company_id, name, _now()),
        )

    def company_exists(self, company_id: str) -> bool:
        rows = self._query(f"SELECT 1 FROM {COMPANIES_TABLE} WHERE id = ?", (company_id,))
        return bool(rows)

    def add_user(
        self, user_id: str, company_id: str, role: str = "admin", email: str | None = None
    ) -> None:
        self._execute(
            f"""INSERT INTO {USERS_TABLE} (id, company_id, role, email, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    company_id = excluded.company_id,
                    role = excluded.role,
                    email = excluded.email""",
            (user_id, company_id, role, email, _now()),
        )

    def get_company_for_user(self, user_id: str) -> str | None:
        rows = self._query(f"SELECT company_id FROM {USERS_TABLE} WHERE id = ?", (user_id,))
        return rows[0]["company_id"] if rows else None

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_settings(self, company_id: str) -> dict[str, Any]:
        rows = self._query(
            f"SELECT key, value FROM {SETTINGS_TABLE} WHERE company_id = ?", (company_id,)
        )
        return {row["key"]: json.loads(row["value"]) for row in rows}

    def upsert_setting(self, company_id: str, key: str, value: Any) -> None:
        self._execute(
            f"""INSERT INTO {SETTINGS_TABLE} (company_id, key, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(company_id, key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at""",
            (company_id, key, json.dumps(value), _now()),
        )

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    def list_rows(self, table: str, company_id: str) -> list[dict[str, Any]]:
        validate_collection(table)
        rows = self._query(
            f"SELECT data FROM {table} WHERE company_id = ? ORDER BY position, id",
            (company_id,),
        )
        return [json.loads(row["data"]) for row in rows]

    def get_row(self, table: str, company_id: str, row_id: str) -> dict[str, Any] | None:
        validate_collection(table)
        rows = self._query(
            f"SELECT data FROM {table} WHERE company_id = ? AND id = ?", (company_id, row_id)
        )
        return json.loads(rows[0]["data"]) if rows else None

    def _write_row(self, table: str, company_id: str, row: dict[str, Any], position: int):
        row_id = row.get("id")
        if row_id is None or row_id == "":
            raise ValueError(f"{table} row without id")
        columns = project_columns(table, row)
        names = ["company_id", "id", "position", *columns, "data", "updated_at"]
        values = [company_id, str(row_id), position, *columns.values(), json.dumps(row), _now()]
        updates = ", ".join(f"{n} = excluded.{n}" for n in names[2:])
        self._conn.execute(
            f"""INSERT INTO {table} ({", ".join(names)})
                VALUES ({", ".join("?" for _ in names)})
                ON CONFLICT(company_id, id) DO UPDATE SET {updates}""",
            values,
        )

    def replace_rows(self, table: str, company_id: str, rows: list[dict[str, Any]]) -> None:
        validate_collection(table)
        with self.atomic():
            self._conn.execute(f"DELETE FROM {table} WHERE company_id = ?", (company_id,))
            for position, row in enumerate(rows):
                self._write_row(table, company_id, row, position)

    def upsert_row(
        self, table: str, company_id: str, row: dict[str, Any], position: int | None = None
    ) -> None:
        validate_collection(table)
        with self.atomic():
            if position is None:
                existing = self._conn.execute(
                    f"SELECT position FROM {table} WHERE company_id = ? AND id = ?",
                    (company_id, str(row.get("id"))),
                ).fetchone()
                if existing is not None:
                    position = existing["position"]
                else:
                    position = self._conn.execute(
                        f"SELECT COALESCE(MAX(position) + 1, 0) FROM {table} WHERE company_id = ?",
                        (company_id,),
                    ).fetchone()[0]
            self._write_row(table, company_id, row, position)

    def delete_row(self, table: str, company_id: str, row_id: str) -> bool:
        validate_collection(table)
        cursor = self._execute(
            f"DELETE FROM {table} WHERE company_id = ? AND id = ?", (company_id, row_id)
        )
        return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Crew time
    # -------------------------------------------------------------------------

    def append_time_log(self, company_id: str, entry: dict[str, Any]) -> None:
        self._execute(
            f"""INSERT INTO {CREW_TIME_LOGS_TABLE}
                (company_id, work_order_url, start_time, end_time, user_name, created_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
            (
                company_id,
                entry.get("workOrderUrl"),
                entry.get("startTime"),
                entry.get("endTime"),
                entry.get("user"),
                _now(),
            ),
        )

    def list_time_logs(self, company_id: str) -> list[dict[str, Any]]:
        rows = self._query(
            f"""SELECT work_order_url, start_time, end_time, user_name, created_at
                FROM {CREW_TIME_LOGS_TABLE} WHERE company_id = ? ORDER BY id""",
            (company_id,),
        )
        return [dict(row) for row in rows]
