"""Reconciliation service: applies a client snapshot to the persisted store.

Per collection policy:

- settings (config objects, warehouse counts, lifetime usage): one row per
  key, last write wins, absent keys untouched
- inventory, customers: replace-all
- material logs: upsert by id, never deleted by a push
- estimates: field-level merge through ``reconcile_estimate``

Every method takes the tenant id resolved from the verified session.
Methods are synchronous; the route layer runs them in a worker thread.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

from ..auth import SessionContext
from ..database import (
    CUSTOMERS_TABLE,
    ESTIMATES_TABLE,
    INVENTORY_TABLE,
    MATERIAL_LOGS_TABLE,
    PersistedStore,
)
from ..logging_config import log_sync_operation
from ..models import EstimateBatchResult, SyncUpResult
from .merge import (
    EXECUTION_COMPLETED,
    STATUS_PAID,
    execution_status,
    reconcile_estimate,
)

logger = logging.getLogger("foamsync.sync")

# Config objects stored under their own snapshot name
CONFIG_KEYS = ("companyProfile", "costs", "yields", "expenses")
WAREHOUSE_COUNTS_KEY = "warehouse_counts"
LIFETIME_USAGE_KEY = "lifetime_usage"


class TenantResolutionError(Exception):
    """The session does not map to a known company."""

    def __init__(self, message: str = "Company not found"):
        super().__init__(message)


class EstimateNotFoundError(Exception):
    """No estimate with this id exists for the company."""

    def __init__(self, estimate_id: str):
        self.estimate_id = estimate_id
        super().__init__(f"Estimate not found: {estimate_id}")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _number(value: Any) -> float:
    """Coerce a stored or reported quantity; anything non-numeric counts as 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    # "nan" and "inf" parse but would poison the running totals
    return number if math.isfinite(number) else 0.0


def _with_ids(rows: list[Any], table: str, prefix: str) -> list[dict[str, Any]]:
    kept = []
    for row in rows:
        if isinstance(row, dict) and row.get("id") not in (None, ""):
            kept.append(row)
        else:
            log_sync_operation(prefix, "skip", table, None, False, "missing id")
    return kept


class ReconciliationService:
    """Tenant-scoped reads and writes of the synchronized document."""

    def __init__(self, store: PersistedStore, work_order_base_url: str = ""):
        self.store = store
        self.work_order_base_url = work_order_base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Tenant resolution
    # ------------------------------------------------------------------

    def resolve_company(self, session: SessionContext) -> str:
        """Company id for this session; the token claim first, then membership.

        Raises:
            TenantResolutionError: If neither source names a known company.
        """
        company_id = session.company_id or self.store.get_company_for_user(session.user_id)
        if not company_id or not self.store.company_exists(company_id):
            logger.warning(f"Tenant resolution failed for user {session.user_id}")
            raise TenantResolutionError()
        return company_id

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def sync_down(self, company_id: str, session: SessionContext | None = None) -> dict[str, Any]:
        """Read the full snapshot straight from the store."""
        settings = self.store.get_settings(company_id)
        snapshot: dict[str, Any] = {
            key: settings[key] for key in CONFIG_KEYS if key in settings
        }

        warehouse = dict(settings.get(WAREHOUSE_COUNTS_KEY) or {})
        warehouse["items"] = self.store.list_rows(INVENTORY_TABLE, company_id)
        snapshot["warehouse"] = warehouse

        if LIFETIME_USAGE_KEY in settings:
            snapshot["lifetimeUsage"] = settings[LIFETIME_USAGE_KEY]

        snapshot["savedEstimates"] = self.store.list_rows(ESTIMATES_TABLE, company_id)
        snapshot["customers"] = self.store.list_rows(CUSTOMERS_TABLE, company_id)
        snapshot["materialLogs"] = self.store.list_rows(MATERIAL_LOGS_TABLE, company_id)

        if session is not None:
            snapshot["session"] = {
                "companyId": company_id,
                "userId": session.user_id,
                "role": session.role,
                "email": session.email,
            }
        return snapshot

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def sync_up(self, company_id: str, state: dict[str, Any], prefix: str = "") -> SyncUpResult:
        """Apply one pushed snapshot.

        Runs in one store transaction. Each estimate is written in its own
        nested scope so a failing record rolls back alone.
        """
        prefix = prefix or company_id
        with self.store.atomic():
            self._write_settings(company_id, state)

            warehouse = state.get("warehouse")
            if isinstance(warehouse, dict) and isinstance(warehouse.get("items"), list):
                items = _with_ids(warehouse["items"], INVENTORY_TABLE, prefix)
                self.store.replace_rows(INVENTORY_TABLE, company_id, items)
                log_sync_operation(prefix, "replace", INVENTORY_TABLE, f"*{len(items)}", True)

            if isinstance(state.get("customers"), list):
                customers = _with_ids(state["customers"], CUSTOMERS_TABLE, prefix)
                self.store.replace_rows(CUSTOMERS_TABLE, company_id, customers)
                log_sync_operation(prefix, "replace", CUSTOMERS_TABLE, f"*{len(customers)}", True)

            if isinstance(state.get("materialLogs"), list):
                for entry in _with_ids(state["materialLogs"], MATERIAL_LOGS_TABLE, prefix):
                    self.store.upsert_row(MATERIAL_LOGS_TABLE, company_id, entry)

            batch = EstimateBatchResult()
            if isinstance(state.get("savedEstimates"), list):
                batch = self._reconcile_estimates(company_id, state["savedEstimates"], prefix)

        logger.info(
            f"PUSH COMPLETE | {prefix} | estimates upserted={batch.upserted} "
            f"skipped={batch.skipped} failed={len(batch.failed)}"
        )
        return SyncUpResult(synced=True, estimates=batch)

    def _write_settings(self, company_id: str, state: dict[str, Any]) -> None:
        for key in CONFIG_KEYS:
            if isinstance(state.get(key), dict):
                self.store.upsert_setting(company_id, key, state[key])

        warehouse = state.get("warehouse")
        if isinstance(warehouse, dict):
            counts = {k: v for k, v in warehouse.items() if k != "items"}
            if counts:
                self.store.upsert_setting(company_id, WAREHOUSE_COUNTS_KEY, counts)

        if isinstance(state.get("lifetimeUsage"), dict):
            self.store.upsert_setting(company_id, LIFETIME_USAGE_KEY, state["lifetimeUsage"])

    def _reconcile_estimates(
        self, company_id: str, estimates: list[Any], prefix: str
    ) -> EstimateBatchResult:
        result = EstimateBatchResult()
        persisted = {
            str(e.get("id")): e for e in self.store.list_rows(ESTIMATES_TABLE, company_id)
        }

        for position, incoming in enumerate(estimates):
            if not isinstance(incoming, dict) or incoming.get("id") in (None, ""):
                result.skipped += 1
                log_sync_operation(prefix, "skip", ESTIMATES_TABLE, None, False, "missing id")
                continue

            estimate_id = str(incoming["id"])
            merged = reconcile_estimate(persisted.get(estimate_id), incoming)
            try:
                with self.store.atomic():
                    self.store.upsert_row(ESTIMATES_TABLE, company_id, merged, position)
            except Exception as e:
                # Log full error server-side; the client gets a generic message
                logger.error(f"Estimate upsert failed for {prefix}/{estimate_id}: {e}")
                log_sync_operation(prefix, "upsert", ESTIMATES_TABLE, estimate_id, False, str(e))
                result.failed.append(
                    {"id": estimate_id, "error": "Database error: operation failed"}
                )
                continue

            result.upserted += 1
            log_sync_operation(prefix, "upsert", ESTIMATES_TABLE, estimate_id, True)

        return result

    # ------------------------------------------------------------------
    # Single-estimate operations
    # ------------------------------------------------------------------

    def _get_estimate(self, company_id: str, estimate_id: str) -> dict[str, Any]:
        estimate = self.store.get_row(ESTIMATES_TABLE, company_id, estimate_id)
        if estimate is None:
            raise EstimateNotFoundError(estimate_id)
        return estimate

    def delete_estimate(self, company_id: str, estimate_id: str) -> None:
        if not self.store.delete_row(ESTIMATES_TABLE, company_id, estimate_id):
            raise EstimateNotFoundError(estimate_id)
        log_sync_operation(company_id, "delete", ESTIMATES_TABLE, estimate_id, True)

    def mark_job_paid(self, company_id: str, estimate_id: str) -> dict[str, Any]:
        """Force ``status = Paid`` and stamp ``paidDate`` once."""
        with self.store.atomic():
            estimate = dict(self._get_estimate(company_id, estimate_id))
            estimate["status"] = STATUS_PAID
            if not estimate.get("paidDate"):
                estimate["paidDate"] = _now_iso()
            self.store.upsert_row(ESTIMATES_TABLE, company_id, estimate)
        log_sync_operation(company_id, "paid", ESTIMATES_TABLE, estimate_id, True)
        return estimate

    def complete_job(
        self, company_id: str, estimate_id: str, actuals: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Mark an estimate Completed with the given actuals.

        Re-completing keeps whichever completion date is later. The first
        completion also records material usage against warehouse stock.
        """
        actuals = dict(actuals or {})
        if not actuals.get("completionDate"):
            actuals["completionDate"] = _now_iso()

        with self.store.atomic():
            persisted = self._get_estimate(company_id, estimate_id)
            first_completion = execution_status(persisted) != EXECUTION_COMPLETED
            incoming = {**persisted, "executionStatus": EXECUTION_COMPLETED, "actuals": actuals}
            merged = reconcile_estimate(persisted, incoming)
            self.store.upsert_row(ESTIMATES_TABLE, company_id, merged)
            if first_completion:
                self._record_material_usage(company_id, merged, actuals)

        log_sync_operation(company_id, "complete", ESTIMATES_TABLE, estimate_id, True)
        return merged

    def _record_material_usage(
        self, company_id: str, estimate: dict[str, Any], actuals: dict[str, Any]
    ) -> None:
        open_sets = _number(actuals.get("openCellSets"))
        closed_sets = _number(actuals.get("closedCellSets"))
        if not open_sets and not closed_sets:
            return

        settings = self.store.get_settings(company_id)

        counts = dict(settings.get(WAREHOUSE_COUNTS_KEY) or {})
        counts["openCellSets"] = _number(counts.get("openCellSets")) - open_sets
        counts["closedCellSets"] = _number(counts.get("closedCellSets")) - closed_sets
        self.store.upsert_setting(company_id, WAREHOUSE_COUNTS_KEY, counts)

        usage = dict(settings.get(LIFETIME_USAGE_KEY) or {})
        usage["openCell"] = _number(usage.get("openCell")) + open_sets
        usage["closedCell"] = _number(usage.get("closedCell")) + closed_sets
        self.store.upsert_setting(company_id, LIFETIME_USAGE_KEY, usage)

        entry = {
            "id": f"log_{uuid.uuid4().hex[:12]}",
            "date": actuals["completionDate"],
            "jobId": estimate["id"],
            "customerId": estimate.get("customerId"),
            "openCellSets": open_sets,
            "closedCellSets": closed_sets,
            "loggedBy": actuals.get("completedBy"),
        }
        self.store.upsert_row(MATERIAL_LOGS_TABLE, company_id, entry)

    def create_work_order(
        self,
        company_id: str,
        estimate_id: str,
        estimate: dict[str, Any] | None = None,
    ) -> str:
        """Stamp a work order link on an estimate and return it.

        A supplied estimate body is saved first through the same merge
        rules as a push. An existing link is reused.
        """
        with self.store.atomic():
            persisted = self.store.get_row(ESTIMATES_TABLE, company_id, estimate_id)
            if estimate is not None:
                current = reconcile_estimate(persisted, {**estimate, "id": estimate_id})
            elif persisted is None:
                raise EstimateNotFoundError(estimate_id)
            else:
                current = dict(persisted)

            url = current.get("workOrderSheetUrl") or (
                f"{self.work_order_base_url}/{quote(company_id, safe='')}"
                f"/{quote(estimate_id, safe='')}"
            )
            current["workOrderSheetUrl"] = url
            self.store.upsert_row(ESTIMATES_TABLE, company_id, current)

        log_sync_operation(company_id, "work_order", ESTIMATES_TABLE, estimate_id, True)
        return url

    def log_crew_time(self, company_id: str, entry: dict[str, Any]) -> None:
        """Append one crew clock-in/clock-out record."""
        self.store.append_time_log(company_id, entry)
        logger.info(f"TIME | {company_id} | {entry.get('user')} | {entry.get('workOrderUrl')}")
