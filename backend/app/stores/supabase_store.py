"""Supabase (PostgREST) adapter for the persisted store.

Replace-all goes through the ``replace_company_rows`` Postgres function so
the delete and the re-insert of one collection commit together. PostgREST
has no multi-statement transaction, so ``atomic()`` is a plain scope here
and a push spanning several collections is not atomic across them.
"""

import contextlib
import logging
from datetime import datetime, timezone
from typing import Any

from supabase import Client, create_client

from ..config import Settings
from ..database import (
    COMPANIES_TABLE,
    CREW_TIME_LOGS_TABLE,
    SETTINGS_TABLE,
    USERS_TABLE,
    project_columns,
    validate_collection,
)

logger = logging.getLogger("foamsync.stores.supabase")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_supabase_client(settings: Settings) -> Client:
    """Build a service-role Supabase client from settings."""
    if not settings.supabase_url:
        raise ValueError("SUPABASE_URL must be set when STORE_BACKEND=supabase")
    # Prefer new secret key, fall back to legacy service_role_key
    api_key = settings.supabase_secret_key or settings.supabase_service_role_key
    if not api_key:
        raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
    return create_client(settings.supabase_url, api_key)


class SupabaseStore:
    """Persisted store on Supabase tables created by the bundled migration."""

    def __init__(self, client: Client):
        self.db = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseStore":
        return cls(create_supabase_client(settings))

    @contextlib.contextmanager
    def atomic(self):
        yield self

    def ping(self) -> bool:
        try:
            self.db.table(COMPANIES_TABLE).select("id").limit(1).execute()
        except Exception as e:
            logger.warning(f"Supabase ping failed: {str(e)[:100]}")
            return False
        return True

    # -------------------------------------------------------------------------
    # Tenants
    # -------------------------------------------------------------------------

    def create_company(self, company_id: str, name: str | None = None) -> None:
        self.db.table(COMPANIES_TABLE).upsert(
            {"id": company_id, "name": name}, on_conflict="id", ignore_duplicates=True
        ).execute()

    def company_exists(self, company_id: str) -> bool:
        result = self.db.table(COMPANIES_TABLE).select("id").eq("id", company_id).limit(1).execute()
        return bool(result.data)

    def add_user(
        self, user_id: str, company_id: str, role: str = "admin", email: str | None = None
    ) -> None:
        self.db.table(USERS_TABLE).upsert(
            {"id": user_id, "company_id": company_id, "role": role, "email": email},
            on_conflict="id",
        ).execute()

    def get_company_for_user(self, user_id: str) -> str | None:
        result = self.db.table(USERS_TABLE).select("company_id").eq("id", user_id).execute()
        return result.data[0]["company_id"] if result.data else None

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_settings(self, company_id: str) -> dict[str, Any]:
        result = (
            self.db.table(SETTINGS_TABLE)
            .select("key, value")
            .eq("company_id", company_id)
            .execute()
        )
        return {row["key"]: row["value"] for row in result.data}

    def upsert_setting(self, company_id: str, key: str, value: Any) -> None:
        self.db.table(SETTINGS_TABLE).upsert(
            {"company_id": company_id, "key": key, "value": value, "updated_at": _now()},
            on_conflict="company_id,key",
        ).execute()

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    def _record(self, table: str, company_id: str, row: dict[str, Any], position: int) -> dict:
        row_id = row.get("id")
        if row_id is None or row_id == "":
            raise ValueError(f"{table} row without id")
        return {
            "company_id": company_id,
            "id": str(row_id),
            "position": position,
            **project_columns(table, row),
            "data": row,
            "updated_at": _now(),
        }

    def list_rows(self, table: str, company_id: str) -> list[dict[str, Any]]:
        validate_collection(table)
        result = (
            self.db.table(table)
            .select("data")
            .eq("company_id", company_id)
            .order("position")
            .order("id")
            .execute()
        )
        return [row["data"] for row in result.data]

    def get_row(self, table: str, company_id: str, row_id: str) -> dict[str, Any] | None:
        validate_collection(table)
        result = (
            self.db.table(table)
            .select("data")
            .eq("company_id", company_id)
            .eq("id", row_id)
            .execute()
        )
        return result.data[0]["data"] if result.data else None

    def replace_rows(self, table: str, company_id: str, rows: list[dict[str, Any]]) -> None:
        validate_collection(table)
        records = [self._record(table, company_id, row, i) for i, row in enumerate(rows)]
        self.db.rpc(
            "replace_company_rows",
            {"p_table": table, "p_company_id": company_id, "p_rows": records},
        ).execute()

    def upsert_row(
        self, table: str, company_id: str, row: dict[str, Any], position: int | None = None
    ) -> None:
        validate_collection(table)
        if position is None:
            position = self._next_position(table, company_id, str(row.get("id")))
        self.db.table(table).upsert(
            self._record(table, company_id, row, position), on_conflict="company_id,id"
        ).execute()

    def _next_position(self, table: str, company_id: str, row_id: str) -> int:
        existing = (
            self.db.table(table)
            .select("position")
            .eq("company_id", company_id)
            .eq("id", row_id)
            .execute()
        )
        if existing.data:
            return existing.data[0]["position"]
        last = (
            self.db.table(table)
            .select("position")
            .eq("company_id", company_id)
            .order("position", desc=True)
            .limit(1)
            .execute()
        )
        return last.data[0]["position"] + 1 if last.data else 0

    def delete_row(self, table: str, company_id: str, row_id: str) -> bool:
        validate_collection(table)
        result = (
            self.db.table(table)
            .delete()
            .eq("company_id", company_id)
            .eq("id", row_id)
            .execute()
        )
        return len(result.data) > 0

    # -------------------------------------------------------------------------
    # Crew time
    # -------------------------------------------------------------------------

    def append_time_log(self, company_id: str, entry: dict[str, Any]) -> None:
        self.db.table(CREW_TIME_LOGS_TABLE).insert(
            {
                "company_id": company_id,
                "work_order_url": entry.get("workOrderUrl"),
                "start_time": entry.get("startTime"),
                "end_time": entry.get("endTime"),
                "user_name": entry.get("user"),
            }
        ).execute()
