"""
Shared types for foamsync.

Sessions, sync status values, notifications and the estimate lifecycle
vocabulary used by the controller, the transport and the CLI.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


# === Enums ===


class SyncStatus(str, Enum):
    """Sync indicator shown to the user.

    idle -> syncing -> {success -> idle, error}
    idle/success -> pending -> syncing (debounced push)
    """

    IDLE = "idle"
    PENDING = "pending"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class SessionStatus(str, Enum):
    """Status reported by the identity provider."""

    SIGNED_OUT = "signed_out"
    PENDING = "pending"
    ACTIVE = "active"


class Role(str, Enum):
    ADMIN = "admin"
    CREW = "crew"


# Estimate lifecycle values (opaque to everything except reconciliation)
ESTIMATE_STATUS_DRAFT = "Draft"
ESTIMATE_STATUS_SENT = "Sent"
ESTIMATE_STATUS_PAID = "Paid"

EXECUTION_NOT_STARTED = "Not Started"
EXECUTION_IN_PROGRESS = "In Progress"
EXECUTION_COMPLETED = "Completed"


# === Errors ===


class SyncError(Exception):
    """Base error for sync lifecycle failures."""


class EmptyPullError(SyncError):
    """Pull returned no document; treated as a failure, never as empty state."""


# === Dataclasses ===


@dataclass(frozen=True)
class Session:
    """Authenticated principal as seen by the client.

    The token is opaque; the client never verifies it.
    """

    user_id: str
    company_id: Optional[str] = None
    role: Role = Role.ADMIN
    token: Optional[str] = None
    email: Optional[str] = None
    expires_at: Optional[datetime] = None
    status: SessionStatus = SessionStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        if self.status != SessionStatus.ACTIVE:
            return False
        if self.expires_at is not None and self.expires_at <= datetime.now(timezone.utc):
            return False
        return True

    @property
    def is_crew(self) -> bool:
        return self.role == Role.CREW

    @property
    def identity(self) -> str:
        """Stable per-account identity used to namespace local data."""
        return (self.email or self.user_id).strip().lower()


@dataclass(frozen=True)
class Notification:
    """User-visible message surfaced alongside the status field."""

    kind: str  # 'success', 'warning', 'error'
    message: str
