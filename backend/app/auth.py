"""Session verification for the FoamSync backend.

Sessions are HS256 JWTs issued by the identity provider. Claims:
``sub`` (user id), ``company_id``, ``role`` (admin | crew), ``email``, ``exp``.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings
from .logging_config import get_logger

logger = get_logger("foamsync.auth")

# Optional so the deprecated body-token form can still be read
security = HTTPBearer(auto_error=False)

ROLES = ("admin", "crew")


@dataclass(frozen=True)
class SessionContext:
    """Verified caller identity. Tenant scoping always comes from here."""

    user_id: str
    company_id: str | None = None
    role: str = "admin"
    email: str | None = None

    @property
    def is_crew(self) -> bool:
        return self.role == "crew"

    @property
    def log_prefix(self) -> str:
        return f"{self.company_id or '?'}/{self.user_id}"


def create_access_token(
    settings: Settings,
    user_id: str,
    company_id: str | None = None,
    role: str = "admin",
    email: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a session JWT (used by the identity provider and tests)."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)

    to_encode = {
        "sub": user_id,
        "role": role,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    if company_id:
        to_encode["company_id"] = company_id
    if email:
        to_encode["email"] = email
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise _unauthorized("Invalid or expired token")


async def _body_token(request: Request) -> str | None:
    """Read ``payload.token`` from the JSON body, if any."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(body, dict) or not isinstance(body.get("payload"), dict):
        return None
    token = body["payload"].get("token")
    return token if isinstance(token, str) and token else None


async def get_current_session(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SessionContext:
    """Resolve the caller's session from the bearer token.

    A token inside the request payload is still accepted for older clients
    but logged as deprecated.
    """
    token = credentials.credentials if credentials else None
    if not token:
        token = await _body_token(request)
        if token:
            logger.warning("Session token sent in request payload; this form is deprecated")

    if not token:
        raise _unauthorized("Not authenticated - provide Authorization header")

    payload = decode_token(token, settings)
    user_id = payload.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token payload")

    role = payload.get("role") or "admin"
    if role not in ROLES:
        raise _unauthorized("Invalid token role")

    return SessionContext(
        user_id=user_id,
        company_id=payload.get("company_id"),
        role=role,
        email=payload.get("email"),
    )


# Type alias for dependency injection
CurrentSession = Annotated[SessionContext, Depends(get_current_session)]
