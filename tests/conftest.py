"""
Pytest fixtures for foamsync client tests.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from foamsync.core.snapshot import default_snapshot
from foamsync.storage.cloud import CloudClient
from foamsync.storage.local_cache import LocalCache
from foamsync.types import Role, Session, SessionStatus


@pytest.fixture(autouse=True)
def foamsync_home(tmp_path, monkeypatch):
    """Keep every test's cache, credentials and logs inside tmp_path."""
    home = tmp_path / "foamsync-home"
    monkeypatch.setenv("FOAMSYNC_DATA_DIR", str(home))
    for name in (
        "FOAMSYNC_BACKEND_URL",
        "FOAMSYNC_AUTH_TOKEN",
        "FOAMSYNC_EMAIL",
        "FOAMSYNC_ROLE",
        "FOAMSYNC_COMPANY_ID",
        "FOAMSYNC_USER_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def cache(tmp_path):
    return LocalCache(tmp_path / "cache.db")


@pytest.fixture
def admin_session():
    return Session(
        user_id="usr_admin",
        company_id="co_1",
        role=Role.ADMIN,
        token="token-admin",
        email="Owner@Example.com",
        status=SessionStatus.ACTIVE,
    )


@pytest.fixture
def crew_session():
    return Session(
        user_id="usr_crew",
        company_id="co_1",
        role=Role.CREW,
        token="token-crew",
        email="crew@example.com",
        status=SessionStatus.ACTIVE,
    )


@pytest.fixture
def cloud_snapshot():
    """A pulled document as the server returns it (partial configs, metadata)."""
    return {
        "companyProfile": {"companyName": "Acme Foam", "crewAccessPin": "4321"},
        "costs": {"openCell": 1850},
        "warehouse": {"openCellSets": 4, "closedCellSets": 2, "items": [{"id": "i1", "name": "Gun"}]},
        "savedEstimates": [
            {"id": "e1", "status": "Draft", "executionStatus": "Not Started", "totalValue": 500}
        ],
        "customers": [{"id": "c1", "name": "Jane"}],
        "materialLogs": [],
        "session": {"companyId": "co_1", "role": "admin"},
    }


@pytest.fixture
def cloud(cloud_snapshot):
    """CloudClient double whose pull returns ``cloud_snapshot``."""
    client = MagicMock(spec=CloudClient)
    client.sync_down = AsyncMock(return_value=cloud_snapshot)
    client.sync_up = AsyncMock(return_value=True)
    return client


@pytest.fixture
def empty_snapshot():
    return default_snapshot()


@pytest.fixture
def other_session():
    """Admin of a second company, used for account switches."""
    return Session(
        user_id="usr_other",
        company_id="co_2",
        role=Role.ADMIN,
        token="token-other",
        email="other@tenant.test",
        status=SessionStatus.ACTIVE,
    )


@pytest.fixture
def other_document():
    return {
        "companyProfile": {"companyName": "Other Foam", "crewAccessPin": "1111"},
        "customers": [{"id": "c7", "name": "Sam"}],
        "savedEstimates": [],
    }
