"""Snapshot shaping: defaults, merges and fingerprints.

The snapshot is a plain JSON-compatible dict. Pricing content inside it is
opaque here; only its shape matters.
"""

import copy
import hashlib
import json
from typing import Any, Dict, Optional

DEFAULT_SNAPSHOT: Dict[str, Any] = {
    "companyProfile": {
        "companyName": "",
        "addressLine1": "",
        "addressLine2": "",
        "city": "",
        "state": "",
        "zip": "",
        "phone": "",
        "email": "",
        "website": "",
        "logoUrl": "",
        "crewAccessPin": "",
    },
    "warehouse": {
        "openCellSets": 0,
        "closedCellSets": 0,
        "items": [],
    },
    "costs": {
        "openCell": 0,
        "closedCell": 0,
        "laborRate": 0,
    },
    "yields": {
        "openCell": 0,
        "closedCell": 0,
    },
    "expenses": {
        "manHours": 0,
        "tripCharge": 0,
        "fuelSurcharge": 0,
        "other": {"description": "", "amount": 0},
    },
    "savedEstimates": [],
    "customers": [],
    "materialLogs": [],
    "lifetimeUsage": {
        "openCell": 0,
        "closedCell": 0,
    },
}

# Config objects merged key-by-key so a partial pull cannot blank unrelated fields
NESTED_CONFIG_KEYS = (
    "companyProfile",
    "warehouse",
    "costs",
    "yields",
    "expenses",
    "lifetimeUsage",
)

# Returned by SYNC_DOWN alongside the document but never part of it
SESSION_METADATA_KEYS = frozenset({"session"})


def default_snapshot() -> Dict[str, Any]:
    """Return a fresh default-shaped snapshot."""
    return copy.deepcopy(DEFAULT_SNAPSHOT)


def strip_metadata(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop non-synchronizable keys from a pulled document."""
    return {k: v for k, v in data.items() if k not in SESSION_METADATA_KEYS}


def merge_over_defaults(partial: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Deep-merge a (possibly partial) document over the default snapshot.

    Top-level keys from ``partial`` win. Each nested config object is merged
    independently over its default, so a server response that only carries
    ``costs.openCell`` still yields every other ``costs`` field.
    """
    partial = strip_metadata(partial or {})
    merged = default_snapshot()
    merged.update(copy.deepcopy(partial))
    for key in NESTED_CONFIG_KEYS:
        incoming = partial.get(key)
        base = copy.deepcopy(DEFAULT_SNAPSHOT[key])
        if isinstance(incoming, dict):
            base.update(copy.deepcopy(incoming))
        merged[key] = base
    return merged


def shallow_merge(current: Dict[str, Any], partial: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Overlay top-level keys of ``partial`` on ``current``."""
    merged = copy.deepcopy(current)
    merged.update(copy.deepcopy(strip_metadata(partial or {})))
    return merged


def serialize(snapshot: Dict[str, Any]) -> str:
    """Canonical JSON form (sorted keys, compact separators)."""
    return json.dumps(snapshot, sort_keys=True, separators=(",", ":"), default=str)


def fingerprint(snapshot: Dict[str, Any]) -> str:
    """SHA-256 of the canonical serialization."""
    return hashlib.sha256(serialize(snapshot).encode("utf-8")).hexdigest()


def missing_crew_pin(snapshot: Dict[str, Any]) -> bool:
    profile = snapshot.get("companyProfile") or {}
    return not profile.get("crewAccessPin")
