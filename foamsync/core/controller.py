"""Sync lifecycle controller.

Owns the in-memory document through a ``StateContainer`` and keeps it in
step with the cloud copy:

- session-gated, cloud-first initialization with local-backup fallback
- debounced auto-push on local change (admin sessions only)
- manual push (``manual_sync``) and pull (``force_refresh``)

Every network operation takes a sequence number when it starts. A result
arriving after a newer operation has already been applied is discarded.
"""

import asyncio
import copy
import itertools
import logging
from typing import Any, Dict, Optional, Set

from foamsync.core.snapshot import (
    default_snapshot,
    fingerprint,
    merge_over_defaults,
    missing_crew_pin,
    serialize,
    shallow_merge,
)
from foamsync.core.state import (
    LOAD_DATA,
    SET_INITIALIZED,
    SET_LOADING,
    SET_NOTIFICATION,
    SET_SESSION,
    SET_SYNC_STATUS,
    UPDATE_DATA,
    Action,
    AppState,
    StateContainer,
)
from foamsync.logging_config import log_sync
from foamsync.storage.cloud import CloudClient
from foamsync.storage.local_cache import LocalCache
from foamsync.types import EmptyPullError, Notification, Session, SessionStatus, SyncStatus

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 3.0
STATUS_RESET_SECONDS = 3.0

# Actions after which the auto-sync trigger re-evaluates
_AUTO_SYNC_TRIGGERS = frozenset({LOAD_DATA, UPDATE_DATA, SET_LOADING, SET_INITIALIZED, SET_SESSION})

MSG_PIN_MISSING = "Warning: Crew PIN not configured."
MSG_OFFLINE_BACKUP = "Offline Mode: Using local backup."
MSG_NO_BACKUP = "Sync Failed. Check Internet Connection."
MSG_SYNC_COMPLETE = "Cloud Sync Complete"
MSG_SYNC_FAILED = "Sync Failed. Check Internet."
MSG_REFRESH_COMPLETE = "Data refreshed from cloud."
MSG_REFRESH_FAILED = "Refresh Failed."


class SyncController:
    """Client-side sync lifecycle.

    Must be driven from inside a running asyncio event loop: the debounce
    and status-reset timers are scheduled on it.

    Args:
        cloud: Action-level API client.
        cache: Local durable cache.
        container: State container to own (a fresh one by default).
        debounce_seconds: Quiet period before an auto-push.
        status_reset_seconds: Delay before ``success`` falls back to ``idle``.
    """

    def __init__(
        self,
        cloud: CloudClient,
        cache: LocalCache,
        *,
        container: Optional[StateContainer] = None,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        status_reset_seconds: float = STATUS_RESET_SECONDS,
    ):
        self._cloud = cloud
        self._cache = cache
        self._container = container or StateContainer()
        self.debounce_seconds = debounce_seconds
        self.status_reset_seconds = status_reset_seconds

        self._last_synced: str = ""
        self._op_seq = itertools.count(1)
        self._last_applied_seq = 0
        self._push_timer: Optional[asyncio.TimerHandle] = None
        self._reset_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

        self._unsubscribe = self._container.subscribe(self._on_action)

    # === Accessors ===

    @property
    def state(self) -> AppState:
        return self._container.state

    @property
    def snapshot(self) -> Dict[str, Any]:
        return self._container.state.snapshot

    @property
    def container(self) -> StateContainer:
        return self._container

    @property
    def last_synced_fingerprint(self) -> str:
        return self._last_synced

    @property
    def has_pending_push(self) -> bool:
        return self._push_timer is not None

    def _session_active(self) -> bool:
        session = self.state.session
        return session is not None and session.is_active

    # === Dispatch helpers ===

    def _dispatch(self, action_type: str, payload: Any = None) -> AppState:
        return self._container.dispatch(action_type, payload)

    def _set_status(self, status: SyncStatus):
        self._dispatch(SET_SYNC_STATUS, status)

    def _notify(self, kind: str, message: str):
        self._dispatch(SET_NOTIFICATION, Notification(kind=kind, message=message))

    def _next_seq(self) -> int:
        return next(self._op_seq)

    def _claim(self, seq: int) -> bool:
        """Accept the result of operation ``seq`` unless a newer one was applied."""
        if seq < self._last_applied_seq:
            return False
        self._last_applied_seq = seq
        return True

    # === Local mutations (called by the presentation layer) ===

    def update(self, patch: Dict[str, Any]) -> AppState:
        """Overlay top-level snapshot keys; triggers the auto-sync path."""
        return self._dispatch(UPDATE_DATA, patch)

    def replace_snapshot(self, snapshot: Dict[str, Any]) -> AppState:
        return self._dispatch(LOAD_DATA, snapshot)

    # === Session ===

    async def on_session_change(self, session: Optional[Session]) -> AppState:
        """React to identity-provider session changes.

        Becoming active (from absent or pending) runs ``initialize()``.
        Switching to a different account first resets as on sign-out, so
        the previous account's document is neither cached nor pushed under
        the new one. A token refresh for the same account does not pull.
        Signing out clears session-derived state and keeps the snapshot.
        """
        current = self.state.session
        if session is not None and current is not None and not _same_account(current, session):
            logger.info(f"Account changed from {current.identity} to {session.identity}")
            self._reset_session_state()

        was_active = self._session_active()

        if session is not None and session.is_active:
            self._dispatch(SET_SESSION, session)
            if not was_active:
                await self.initialize()
            return self.state

        if session is not None and session.status == SessionStatus.PENDING:
            self._dispatch(SET_SESSION, session)
            return self.state

        self._reset_session_state()
        return self.state

    def _reset_session_state(self):
        self._cancel_push_timer()
        self._last_synced = ""
        # Operations started under the previous session can no longer apply
        self._last_applied_seq = self._next_seq()
        self._dispatch(SET_INITIALIZED, False)
        self._dispatch(SET_SESSION, None)
        self._dispatch(SET_LOADING, False)

    # === Initialization ===

    async def initialize(self) -> AppState:
        """Cloud-first load with local-backup fallback.

        Always ends with the loading flag cleared. If the account changed
        while the pull was in flight, the result is dropped and the newer
        session's own initialization owns the loading flag.
        """
        session = self.state.session
        seq = self._next_seq()
        self._dispatch(SET_LOADING, True)
        self._set_status(SyncStatus.SYNCING)

        try:
            try:
                cloud_data = await self._cloud.sync_down()
                if not cloud_data:
                    raise EmptyPullError("Empty response from cloud")
            except Exception as e:
                logger.error(f"Cloud sync failed: {e}")
                log_sync("pull", "error", str(e), seq)
                if self._claim(seq):
                    self._load_fallback(session)
                else:
                    self._finish_stale_initialize(session)
            else:
                if self._claim(seq):
                    self._apply_initial(cloud_data)
                    log_sync("pull", "success", seq=seq)
                else:
                    log_sync("pull", "stale", seq=seq)
                    self._finish_stale_initialize(session)
        finally:
            if _same_account(self.state.session, session):
                self._dispatch(SET_LOADING, False)

        return self.state

    def _finish_stale_initialize(self, session: Optional[Session]):
        # A newer operation of the same account already loaded the document
        if _same_account(self.state.session, session) and not self.state.is_initialized:
            self._dispatch(SET_INITIALIZED, True)

    def _apply_initial(self, cloud_data: Dict[str, Any]):
        merged = merge_over_defaults(cloud_data)
        # Recorded before LOAD_DATA so the auto-sync trigger sees it as synced
        self._last_synced = fingerprint(merged)
        self._dispatch(LOAD_DATA, merged)
        self._dispatch(SET_INITIALIZED, True)
        self._set_status(SyncStatus.SUCCESS)
        self._schedule_status_reset()

        if missing_crew_pin(merged):
            logger.warning("Crew PIN missing from cloud data")
            self._notify("warning", MSG_PIN_MISSING)

    def _load_fallback(self, session: Optional[Session]):
        backup = self._cache.load(session.identity) if session is not None else None

        # Fallback documents are not pushed until the user changes something;
        # the next push still carries the whole document, backup edits included.
        if backup is not None:
            restored = merge_over_defaults(backup)
            self._last_synced = fingerprint(restored)
            self._dispatch(LOAD_DATA, restored)
            self._dispatch(SET_INITIALIZED, True)
            self._set_status(SyncStatus.ERROR)
            self._notify("error", MSG_OFFLINE_BACKUP)
            return

        defaults = default_snapshot()
        self._last_synced = fingerprint(defaults)
        self._dispatch(LOAD_DATA, defaults)
        self._dispatch(SET_INITIALIZED, True)
        self._set_status(SyncStatus.ERROR)
        self._notify("error", MSG_NO_BACKUP)

    # === Auto-sync ===

    def _on_action(self, action: Action, state: AppState):
        if action.type in _AUTO_SYNC_TRIGGERS:
            self._maybe_schedule_push(state)

    def _maybe_schedule_push(self, state: AppState):
        session = state.session
        if state.is_loading or not state.is_initialized:
            return
        if session is None or not session.is_active or session.is_crew:
            return

        serialized = serialize(state.snapshot)
        self._cache.save(session.identity, serialized)

        if fingerprint(state.snapshot) == self._last_synced:
            return

        self._set_status(SyncStatus.PENDING)
        self._cancel_push_timer()
        loop = asyncio.get_running_loop()
        self._push_timer = loop.call_later(self.debounce_seconds, self._fire_push_timer)

    def _cancel_push_timer(self):
        if self._push_timer is not None:
            self._push_timer.cancel()
            self._push_timer = None

    def _fire_push_timer(self):
        self._push_timer = None
        self._track(asyncio.ensure_future(self._auto_push()))

    def _track(self, task: asyncio.Task):
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _auto_push(self) -> bool:
        if not self._session_active():
            return False

        snapshot = copy.deepcopy(self.state.snapshot)
        snapshot_fp = fingerprint(snapshot)
        if snapshot_fp == self._last_synced:
            # Already delivered by a manual sync that raced the timer
            if self.state.sync_status == SyncStatus.PENDING:
                self._set_status(SyncStatus.IDLE)
            return True

        seq = self._next_seq()
        self._set_status(SyncStatus.SYNCING)
        ok = await self._cloud.sync_up(snapshot)

        if not self._claim(seq):
            log_sync("push", "stale", seq=seq)
            return ok

        if ok:
            self._last_synced = snapshot_fp
            self._set_status(SyncStatus.SUCCESS)
            self._schedule_status_reset()
            log_sync("push", "success", seq=seq)
        else:
            self._set_status(SyncStatus.ERROR)
            log_sync("push", "error", seq=seq)
        return ok

    # === Manual operations ===

    async def manual_sync(self) -> bool:
        """Force push the current snapshot, bypassing the debounce."""
        if not self._session_active():
            return False

        snapshot = copy.deepcopy(self.state.snapshot)
        snapshot_fp = fingerprint(snapshot)
        seq = self._next_seq()
        self._set_status(SyncStatus.SYNCING)

        ok = await self._cloud.sync_up(snapshot)

        if not self._claim(seq):
            log_sync("push", "stale", "manual", seq)
            return ok

        if ok:
            self._last_synced = snapshot_fp
            self._set_status(SyncStatus.SUCCESS)
            self._notify("success", MSG_SYNC_COMPLETE)
            self._schedule_status_reset()
            log_sync("push", "success", "manual", seq)
        else:
            self._set_status(SyncStatus.ERROR)
            self._notify("error", MSG_SYNC_FAILED)
            log_sync("push", "error", "manual", seq)
        return ok

    async def force_refresh(self) -> bool:
        """Force pull and overlay the cloud document on the current one."""
        if not self._session_active():
            return False

        seq = self._next_seq()
        self._set_status(SyncStatus.SYNCING)

        try:
            cloud_data = await self._cloud.sync_down()
            if not cloud_data:
                raise EmptyPullError("Failed to fetch data")
        except Exception as e:
            logger.error(f"Force refresh failed: {e}")
            if self._claim(seq):
                self._set_status(SyncStatus.ERROR)
                self._notify("error", MSG_REFRESH_FAILED)
            log_sync("pull", "error", str(e), seq)
            return False

        if not self._claim(seq):
            log_sync("pull", "stale", "refresh", seq)
            return False

        merged = shallow_merge(self.state.snapshot, cloud_data)
        self._last_synced = fingerprint(merged)
        self._dispatch(LOAD_DATA, merged)
        self._set_status(SyncStatus.SUCCESS)
        self._notify("success", MSG_REFRESH_COMPLETE)
        self._schedule_status_reset()
        log_sync("pull", "success", "refresh", seq)
        return True

    # === Timers and shutdown ===

    def _schedule_status_reset(self):
        if self._reset_timer is not None:
            self._reset_timer.cancel()
        loop = asyncio.get_running_loop()
        self._reset_timer = loop.call_later(self.status_reset_seconds, self._reset_status)

    def _reset_status(self):
        self._reset_timer = None
        if self.state.sync_status == SyncStatus.SUCCESS:
            self._set_status(SyncStatus.IDLE)

    async def drain(self):
        """Wait for every in-flight push started by the debounce timer."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def flush(self) -> bool:
        """Fire a pending debounced push now and wait for it."""
        if self._push_timer is None:
            await self.drain()
            return True
        self._cancel_push_timer()
        ok = await self._auto_push()
        await self.drain()
        return ok

    def close(self):
        """Cancel timers and detach from the container."""
        self._cancel_push_timer()
        if self._reset_timer is not None:
            self._reset_timer.cancel()
            self._reset_timer = None
        self._unsubscribe()


def _same_account(a: Optional[Session], b: Optional[Session]) -> bool:
    """True when both sessions belong to the same user in the same company."""
    if a is None or b is None:
        return a is b
    return (a.identity, a.user_id, a.company_id) == (b.identity, b.user_id, b.company_id)
