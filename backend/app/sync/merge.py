"""Estimate reconciliation rules.

Pure functions over estimate dicts. The merge is one-directional: it only
keeps three lifecycle fields (execution status with its actuals, payment
status, and server-generated links) from moving backwards. Every other
incoming field wins.
"""

from datetime import datetime, timezone
from typing import Any

from dateutil.parser import isoparse

STATUS_PAID = "Paid"

EXECUTION_NOT_STARTED = "Not Started"
EXECUTION_IN_PROGRESS = "In Progress"
EXECUTION_COMPLETED = "Completed"

# Server-generated links a client may not know about yet
ARTIFACT_FIELDS = ("pdfLink", "workOrderSheetUrl")


def execution_status(estimate: dict[str, Any]) -> str:
    return estimate.get("executionStatus") or EXECUTION_NOT_STARTED


def is_paid(estimate: dict[str, Any]) -> bool:
    return estimate.get("status") == STATUS_PAID


def completion_date(estimate: dict[str, Any]) -> datetime | None:
    """Parse ``actuals.completionDate``; unparseable or missing gives None.

    Naive timestamps are taken as UTC so date-only values compare with
    full ISO timestamps.
    """
    actuals = estimate.get("actuals")
    if not isinstance(actuals, dict):
        return None
    raw = actuals.get("completionDate")
    if not raw:
        return None
    try:
        parsed = isoparse(str(raw))
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def incoming_completion_is_later(persisted: dict[str, Any], incoming: dict[str, Any]) -> bool:
    """True only when incoming has a strictly later completion date."""
    incoming_date = completion_date(incoming)
    if incoming_date is None:
        return False
    persisted_date = completion_date(persisted)
    return persisted_date is None or incoming_date > persisted_date


def _restore_actuals(merged: dict[str, Any], persisted: dict[str, Any]) -> None:
    if "actuals" in persisted:
        merged["actuals"] = persisted["actuals"]
    else:
        merged.pop("actuals", None)


def reconcile_estimate(
    persisted: dict[str, Any] | None, incoming: dict[str, Any]
) -> dict[str, Any]:
    """Merge an incoming estimate over its persisted version.

    Rules, applied in order:

    - Completed never regresses; the persisted actuals come back with it.
    - Both Completed: the later ``actuals.completionDate`` wins, ties keep
      the persisted actuals.
    - In Progress never regresses to Not Started.
    - Paid never regresses.
    - ``pdfLink`` / ``workOrderSheetUrl`` are kept when incoming has none.

    Returns a new dict; neither argument is modified.
    """
    merged = dict(incoming)
    if persisted is None:
        return merged

    persisted_exec = execution_status(persisted)
    incoming_exec = execution_status(incoming)

    if persisted_exec == EXECUTION_COMPLETED:
        if incoming_exec != EXECUTION_COMPLETED:
            merged["executionStatus"] = EXECUTION_COMPLETED
            _restore_actuals(merged, persisted)
        elif not incoming_completion_is_later(persisted, incoming):
            _restore_actuals(merged, persisted)
    elif persisted_exec == EXECUTION_IN_PROGRESS and incoming_exec == EXECUTION_NOT_STARTED:
        merged["executionStatus"] = EXECUTION_IN_PROGRESS

    if is_paid(persisted) and not is_paid(incoming):
        merged["status"] = STATUS_PAID
        if persisted.get("paidDate") and not incoming.get("paidDate"):
            merged["paidDate"] = persisted["paidDate"]

    for field in ARTIFACT_FIELDS:
        if not incoming.get(field) and persisted.get(field):
            merged[field] = persisted[field]

    return merged
