"""Pytest configuration and fixtures."""

import os
import secrets
import sys

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

# For unit tests, set mock values ONLY if not running integration tests
if not os.environ.get("RUN_INTEGRATION"):
    os.environ.setdefault("STORE_BACKEND", "sqlite")
    os.environ.setdefault("SQLITE_PATH", ":memory:")
    os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
    os.environ.setdefault("RATE_LIMIT", "10000/minute")
    os.environ.setdefault("WORK_ORDER_BASE_URL", "https://work-orders.test")
else:
    # For integration tests, load from .env
    from pathlib import Path

    from dotenv import load_dotenv

    if not os.environ.get("CONFIRM_INTEGRATION_CREDENTIALS"):
        print(
            "Integration tests use REAL credentials from .env; "
            "set CONFIRM_INTEGRATION_CREDENTIALS=yes to proceed.",
            file=sys.stderr,
        )
        pytest.exit(
            "Integration tests require CONFIRM_INTEGRATION_CREDENTIALS=yes",
            returncode=1,
        )
    load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from app import database  # noqa: E402
from app.main import app  # noqa: E402
from app.stores.sqlite_store import SQLiteStore  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

COMPANY_ID = "co_TEST_ONLY_A"
OTHER_COMPANY_ID = "co_TEST_ONLY_B"
ADMIN_ID = "usr_TEST_ONLY_admin"
CREW_ID = "usr_TEST_ONLY_crew"
OTHER_ADMIN_ID = "usr_TEST_ONLY_other"


@pytest.fixture
def store(monkeypatch):
    """Fresh in-memory store with two provisioned companies."""
    s = SQLiteStore(":memory:")
    s.create_company(COMPANY_ID, "Acme Foam")
    s.create_company(OTHER_COMPANY_ID, "Other Foam")
    s.add_user(ADMIN_ID, COMPANY_ID, "admin", "owner@acme.test")
    s.add_user(CREW_ID, COMPANY_ID, "crew", "crew@acme.test")
    s.add_user(OTHER_ADMIN_ID, OTHER_COMPANY_ID, "admin", "owner@other.test")
    monkeypatch.setattr(database, "_store", s)
    yield s
    s.close()


@pytest.fixture
def client(store):
    """Create a test client bound to the test store."""
    return TestClient(app)


def _make_token(user_id=ADMIN_ID, company_id=COMPANY_ID, role="admin", email=None, **kwargs):
    from app.auth import create_access_token
    from app.config import get_settings

    return create_access_token(
        get_settings(), user_id=user_id, company_id=company_id, role=role, email=email, **kwargs
    )


@pytest.fixture
def make_token():
    """Build a session token; defaults to the admin of COMPANY_ID."""
    return _make_token


@pytest.fixture
def auth_headers():
    """Auth headers for the admin of COMPANY_ID."""
    return {"Authorization": f"Bearer {_make_token(email='owner@acme.test')}"}


@pytest.fixture
def call(client, auth_headers):
    """POST one action to /api and return the response."""

    def _call(action, payload=None, headers=None):
        return client.post(
            "/api",
            json={"action": action, "payload": payload or {}},
            headers=auth_headers if headers is None else headers,
        )

    return _call
