"""Persisted store interface and FastAPI wiring.

Every read and write is partitioned by ``company_id``. Adapters live in
``app.stores``; the one in use is chosen by ``Settings.store_backend``.
"""

from contextlib import AbstractContextManager
from typing import Annotated, Any, Protocol, runtime_checkable

from fastapi import Depends

from .config import Settings, get_settings

# =============================================================================
# Table Names
# =============================================================================

COMPANIES_TABLE = "companies"
USERS_TABLE = "users"
SETTINGS_TABLE = "settings"
INVENTORY_TABLE = "inventory"
CUSTOMERS_TABLE = "customers"
ESTIMATES_TABLE = "estimates"
MATERIAL_LOGS_TABLE = "material_logs"
CREW_TIME_LOGS_TABLE = "crew_time_logs"

# Collection tables: column name -> key in the record's data payload.
# Columns are projections of ``data`` and are rewritten on every write.
INDEXED_COLUMNS: dict[str, dict[str, str]] = {
    INVENTORY_TABLE: {"name": "name", "quantity": "quantity"},
    CUSTOMERS_TABLE: {"name": "name", "email": "email", "status": "status"},
    ESTIMATES_TABLE: {
        "customer_id": "customerId",
        "status": "status",
        "execution_status": "executionStatus",
        "total_value": "totalValue",
        "date": "date",
    },
    MATERIAL_LOGS_TABLE: {"date": "date", "job_id": "jobId"},
}

NUMERIC_COLUMNS = frozenset({"quantity", "total_value"})

COLLECTION_TABLES = frozenset(INDEXED_COLUMNS)


def validate_collection(table: str) -> str:
    """Reject table names that are not collection tables."""
    if table not in COLLECTION_TABLES:
        raise ValueError(f"Invalid collection table: {table}")
    return table


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def project_columns(table: str, data: dict[str, Any]) -> dict[str, Any]:
    """Derive the indexed column values of a collection row from its data."""
    columns = {}
    for column, key in INDEXED_COLUMNS[validate_collection(table)].items():
        value = data.get(key)
        if column in NUMERIC_COLUMNS:
            value = _to_number(value)
        elif value is not None and not isinstance(value, str):
            value = str(value)
        columns[column] = value
    return columns


# =============================================================================
# Store Protocol
# =============================================================================


@runtime_checkable
class PersistedStore(Protocol):
    """Tenant-partitioned relational storage used by the reconciliation service.

    Implementations: SQLiteStore, SupabaseStore.
    """

    def ping(self) -> bool:
        """True when the backing database answers a trivial query."""
        ...

    def atomic(self) -> AbstractContextManager:
        """Transaction scope. Nested use opens a savepoint where supported."""
        ...

    # Tenants
    def create_company(self, company_id: str, name: str | None = None) -> None: ...

    def company_exists(self, company_id: str) -> bool: ...

    def add_user(
        self, user_id: str, company_id: str, role: str = "admin", email: str | None = None
    ) -> None: ...

    def get_company_for_user(self, user_id: str) -> str | None: ...

    # Settings
    def get_settings(self, company_id: str) -> dict[str, Any]: ...

    def upsert_setting(self, company_id: str, key: str, value: Any) -> None: ...

    # Collections (rows are the records' data payloads, in stored order)
    def list_rows(self, table: str, company_id: str) -> list[dict[str, Any]]: ...

    def get_row(self, table: str, company_id: str, row_id: str) -> dict[str, Any] | None: ...

    def replace_rows(self, table: str, company_id: str, rows: list[dict[str, Any]]) -> None: ...

    def upsert_row(
        self, table: str, company_id: str, row: dict[str, Any], position: int | None = None
    ) -> None: ...

    def delete_row(self, table: str, company_id: str, row_id: str) -> bool: ...

    # Crew time
    def append_time_log(self, company_id: str, entry: dict[str, Any]) -> None: ...


# =============================================================================
# Dependency wiring
# =============================================================================

_store: PersistedStore | None = None


def build_store(settings: Settings) -> PersistedStore:
    """Create the store adapter named by ``settings.store_backend``."""
    if settings.store_backend == "supabase":
        from .stores.supabase_store import SupabaseStore

        return SupabaseStore.from_settings(settings)

    from .stores.sqlite_store import SQLiteStore

    return SQLiteStore(settings.sqlite_path)


def get_store(settings: Settings | None = None) -> PersistedStore:
    """Get the cached store instance."""
    global _store
    if _store is None:
        _store = build_store(settings or get_settings())
    return _store


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> PersistedStore:
    """FastAPI dependency for the persisted store."""
    return get_store(settings)


# Type alias for dependency injection
Database = Annotated[PersistedStore, Depends(get_db)]
