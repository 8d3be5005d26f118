"""Credential management helpers for the foamsync CLI."""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from foamsync.core.validation import validate_backend_url
from foamsync.types import Role, Session, SessionStatus
from foamsync.utils import get_foamsync_home

# Environment overrides for credentials.json fields
ENV_OVERRIDES = {
    "backend_url": "FOAMSYNC_BACKEND_URL",
    "auth_token": "FOAMSYNC_AUTH_TOKEN",
    "email": "FOAMSYNC_EMAIL",
    "role": "FOAMSYNC_ROLE",
    "company_id": "FOAMSYNC_COMPANY_ID",
    "user_id": "FOAMSYNC_USER_ID",
}


def get_credentials_path() -> Path:
    """Get the path to the credentials file."""
    return get_foamsync_home() / "credentials.json"


def load_credentials() -> Optional[Dict[str, Any]]:
    """Load credentials from credentials.json, overridden by environment.

    Returns None when neither source yields a backend URL and a token.
    """
    creds: Dict[str, Any] = {}
    creds_path = get_credentials_path()
    if creds_path.exists():
        try:
            with open(creds_path) as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                creds.update(loaded)
        except (json.JSONDecodeError, OSError):
            pass

    # Accept "token" as an alias for "auth_token"
    if not creds.get("auth_token") and creds.get("token"):
        creds["auth_token"] = creds["token"]

    for field_name, env_name in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            creds[field_name] = value

    if creds.get("backend_url"):
        creds["backend_url"] = validate_backend_url(creds["backend_url"])

    if not creds.get("backend_url") or not creds.get("auth_token"):
        return None
    return creds


def save_credentials(credentials: Dict[str, Any]):
    """Save credentials with owner-only permissions."""
    creds_path = get_credentials_path()
    creds_path.parent.mkdir(parents=True, exist_ok=True)
    with open(creds_path, "w") as f:
        json.dump(credentials, f, indent=2)
    creds_path.chmod(0o600)


def clear_credentials() -> bool:
    """Remove the credentials file."""
    creds_path = get_credentials_path()
    if creds_path.exists():
        creds_path.unlink()
        return True
    return False


def session_from_credentials(creds: Dict[str, Any]) -> Session:
    """Build an active client session from stored credentials.

    Raises:
        ValueError: If no identity (email or user_id) is configured or the
            role is not recognized.
    """
    email = creds.get("email")
    user_id = creds.get("user_id") or email
    if not user_id:
        raise ValueError("credentials need an email or user_id")

    expires_at = None
    if creds.get("expires_at"):
        expires_at = datetime.fromisoformat(str(creds["expires_at"]).replace("Z", "+00:00"))

    return Session(
        user_id=user_id,
        company_id=creds.get("company_id"),
        role=Role(creds.get("role") or Role.ADMIN.value),
        token=creds["auth_token"],
        email=email,
        expires_at=expires_at,
        status=SessionStatus.ACTIVE,
    )
