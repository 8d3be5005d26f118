"""Explicit application state container.

All client state lives in one ``AppState`` value. Changes are expressed as
``Action`` records appended to a bounded log and folded by the pure
``reduce`` function. Subscribers run after each action, in dispatch order.
"""

import copy
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from foamsync.core.snapshot import default_snapshot
from foamsync.types import Notification, Session, SyncStatus

logger = logging.getLogger(__name__)

# Action types
SET_SESSION = "SET_SESSION"
SET_LOADING = "SET_LOADING"
SET_INITIALIZED = "SET_INITIALIZED"
LOAD_DATA = "LOAD_DATA"
UPDATE_DATA = "UPDATE_DATA"
SET_SYNC_STATUS = "SET_SYNC_STATUS"
SET_NOTIFICATION = "SET_NOTIFICATION"

ACTION_TYPES = frozenset(
    {
        SET_SESSION,
        SET_LOADING,
        SET_INITIALIZED,
        LOAD_DATA,
        UPDATE_DATA,
        SET_SYNC_STATUS,
        SET_NOTIFICATION,
    }
)

DEFAULT_LOG_SIZE = 1000


@dataclass(frozen=True)
class Action:
    """One entry in the action log."""

    type: str
    payload: Any = None
    seq: int = 0


@dataclass(frozen=True)
class AppState:
    snapshot: Dict[str, Any] = field(default_factory=default_snapshot)
    session: Optional[Session] = None
    sync_status: SyncStatus = SyncStatus.IDLE
    is_loading: bool = False
    is_initialized: bool = False
    notification: Optional[Notification] = None


def reduce(state: AppState, action: Action) -> AppState:
    """Fold one action into the state. Pure; never mutates ``state``."""
    if action.type == SET_SESSION:
        return replace(state, session=action.payload)
    if action.type == SET_LOADING:
        return replace(state, is_loading=bool(action.payload))
    if action.type == SET_INITIALIZED:
        return replace(state, is_initialized=bool(action.payload))
    if action.type == LOAD_DATA:
        return replace(state, snapshot=copy.deepcopy(action.payload))
    if action.type == UPDATE_DATA:
        snapshot = copy.deepcopy(state.snapshot)
        snapshot.update(copy.deepcopy(action.payload))
        return replace(state, snapshot=snapshot)
    if action.type == SET_SYNC_STATUS:
        return replace(state, sync_status=SyncStatus(action.payload))
    if action.type == SET_NOTIFICATION:
        return replace(state, notification=action.payload)
    raise ValueError(f"Unknown action type: {action.type}")


Subscriber = Callable[[Action, AppState], None]


class StateContainer:
    """Single serialized owner of ``AppState``.

    Args:
        initial: Starting state (defaults to an empty default-shaped one).
        log_size: Number of actions retained in the log.
    """

    def __init__(self, initial: Optional[AppState] = None, log_size: int = DEFAULT_LOG_SIZE):
        self._state = initial or AppState()
        self._log: Deque[Action] = deque(maxlen=log_size)
        self._seq = itertools.count(1)
        self._subscribers: List[Subscriber] = []
        self._dispatching = False
        self._queue: Deque[Action] = deque()

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def log(self) -> Tuple[Action, ...]:
        return tuple(self._log)

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a callable that removes it."""
        self._subscribers.append(fn)

        def unsubscribe():
            if fn in self._subscribers:
                self._subscribers.remove(fn)

        return unsubscribe

    def dispatch(self, action_type: str, payload: Any = None) -> AppState:
        """Append an action and apply it.

        Actions dispatched by a subscriber are queued and applied after the
        current one has been delivered to every subscriber, so effects always
        observe actions in log order.
        """
        if action_type not in ACTION_TYPES:
            raise ValueError(f"Unknown action type: {action_type}")
        self._queue.append(Action(type=action_type, payload=payload, seq=next(self._seq)))
        if self._dispatching:
            return self._state

        self._dispatching = True
        try:
            while self._queue:
                action = self._queue.popleft()
                self._log.append(action)
                self._state = reduce(self._state, action)
                for fn in list(self._subscribers):
                    fn(action, self._state)
        finally:
            self._dispatching = False
            self._queue.clear()
        return self._state
