"""
FoamSync - Offline-tolerant state sync for spray-foam job costing.

Keeps a client-held business document consistent with the server copy.
"""

from .core.controller import SyncController
from .types import Role, Session, SessionStatus, SyncStatus

try:
    from importlib.metadata import version

    __version__ = version("foamsync")
except Exception:
    __version__ = "0.0.0"

__all__ = ["SyncController", "Session", "SessionStatus", "Role", "SyncStatus"]
