"""Sync commands for the foamsync CLI: pull, push, status and job actions."""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional, Tuple

from foamsync.cli.commands.credentials import load_credentials, session_from_credentials
from foamsync.core.controller import SyncController
from foamsync.core.snapshot import merge_over_defaults
from foamsync.core.state import SET_SESSION
from foamsync.core.validation import parse_actuals, validate_record_id
from foamsync.storage.cloud import CloudClient, TransportClient
from foamsync.storage.local_cache import LocalCache
from foamsync.types import Session, SyncStatus

logger = logging.getLogger(__name__)


def _require_credentials() -> Dict[str, Any]:
    creds = load_credentials()
    if not creds:
        print("✗ Not configured. Set FOAMSYNC_BACKEND_URL and FOAMSYNC_AUTH_TOKEN")
        print("  or write them to credentials.json in the foamsync home directory.")
        sys.exit(1)
    return creds


def _build(creds: Dict[str, Any]) -> Tuple[TransportClient, CloudClient, Session]:
    session = session_from_credentials(creds)
    transport = TransportClient(creds["backend_url"], lambda: session.token)
    return transport, CloudClient(transport), session


def summarize(snapshot: Dict[str, Any]) -> Dict[str, int]:
    """Counts of each collection in a snapshot."""
    warehouse = snapshot.get("warehouse") or {}
    return {
        "estimates": len(snapshot.get("savedEstimates") or []),
        "customers": len(snapshot.get("customers") or []),
        "inventory": len(warehouse.get("items") or []),
        "material_logs": len(snapshot.get("materialLogs") or []),
    }


def _print_outcome(controller: SyncController):
    state = controller.state
    note = state.notification
    symbol = "✓" if state.sync_status in (SyncStatus.SUCCESS, SyncStatus.IDLE) else "⚠"
    print(f"{symbol} Sync status: {state.sync_status.value}")
    if note is not None:
        print(f"  {note.message}")


async def _pull(creds: Dict[str, Any], as_json: bool) -> int:
    transport, cloud, session = _build(creds)
    controller = SyncController(cloud, LocalCache())
    try:
        await controller.on_session_change(session)
        if as_json:
            print(json.dumps(controller.snapshot, indent=2, default=str))
        else:
            _print_outcome(controller)
            for name, count in summarize(controller.snapshot).items():
                print(f"  {name}: {count}")
        return 0 if controller.state.sync_status != SyncStatus.ERROR else 1
    finally:
        controller.close()
        await transport.aclose()


async def _push(creds: Dict[str, Any]) -> int:
    transport, cloud, session = _build(creds)
    cache = LocalCache()
    backup = cache.load(session.identity)
    if backup is None:
        print("✗ No local document to push. Run `foamsync pull` first.")
        await transport.aclose()
        return 1

    controller = SyncController(cloud, cache)
    try:
        controller.replace_snapshot(merge_over_defaults(backup))
        # Session is attached without a pull: push the cached document as-is
        controller.container.dispatch(SET_SESSION, session)
        ok = await controller.manual_sync()
        _print_outcome(controller)
        return 0 if ok else 1
    finally:
        controller.close()
        await transport.aclose()


async def _status(creds: Optional[Dict[str, Any]]) -> int:
    if not creds:
        print("✗ Not configured")
        return 1
    transport, _cloud, session = _build(creds)
    try:
        health = await transport.health_check()
    finally:
        await transport.aclose()

    cache = LocalCache()
    print(f"Backend:  {transport.backend_url}")
    print(f"Identity: {session.identity} ({session.role.value})")
    if health.get("healthy"):
        print(f"Cloud:    ✓ reachable ({health['latency_ms']} ms)")
    else:
        print(f"Cloud:    ✗ {health.get('error')}")
    updated = cache.updated_at(session.identity)
    print(f"Backup:   {'saved ' + updated if updated else 'none'}")
    return 0 if health.get("healthy") else 1


async def _job_action(creds: Dict[str, Any], action: str, estimate_id: str, actuals=None) -> int:
    transport, cloud, _session = _build(creds)
    try:
        if action == "paid":
            estimate = await cloud.mark_job_paid(estimate_id)
            ok = estimate is not None
        elif action == "complete":
            ok = await cloud.complete_job(estimate_id, actuals)
        elif action == "delete":
            ok = await cloud.delete_estimate(estimate_id)
        elif action == "work-order":
            url = await cloud.create_work_order(estimate_id)
            ok = url is not None
            if ok:
                print(f"  Work order: {url}")
        else:
            raise ValueError(f"Unknown job action: {action}")
    finally:
        await transport.aclose()

    print(f"{'✓' if ok else '✗'} {action} {estimate_id}")
    return 0 if ok else 1


def cmd_pull(args) -> int:
    """Pull the cloud document (falls back to the local backup)."""
    return asyncio.run(_pull(_require_credentials(), getattr(args, "json", False)))


def cmd_push(args) -> int:
    """Push the locally cached document to the cloud."""
    return asyncio.run(_push(_require_credentials()))


def cmd_status(args) -> int:
    return asyncio.run(_status(load_credentials()))


def cmd_job(args) -> int:
    estimate_id = validate_record_id(args.estimate_id)
    actuals = parse_actuals(getattr(args, "actuals", None))
    return asyncio.run(_job_action(_require_credentials(), args.job_action, estimate_id, actuals))


def cmd_estimate(args) -> int:
    estimate_id = validate_record_id(args.estimate_id)
    return asyncio.run(_job_action(_require_credentials(), "delete", estimate_id))


def cmd_work_order(args) -> int:
    estimate_id = validate_record_id(args.estimate_id)
    return asyncio.run(_job_action(_require_credentials(), "work-order", estimate_id))


def cmd_cache(args) -> int:
    creds = _require_credentials()
    session = session_from_credentials(creds)
    removed = LocalCache().clear(session.identity)
    print(f"✓ Local backup {'cleared' if removed else 'was already empty'} for {session.identity}")
    return 0
