"""
Shared fixtures for gateway unit tests.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from shared.errors import AuthenticationError
from service_analytics_gateway.app.identity import IdentityContext
from service_analytics_gateway.app.stores import InMemoryAccessStore


SAMPLE_ROWS = [
    {
        "date": "2025-01-02",
        "app_id": "app1",
        "traffic_source": "search",
        "impressions": 1200,
        "product_page_views": 300,
        "downloads": 60,
        "conversion_rate": 0.2,
    },
    {
        "date": "2025-01-01",
        "app_id": "app2",
        "traffic_source": "browse",
        "impressions": 800,
        "product_page_views": 100,
        "downloads": 5,
        "conversion_rate": 0.05,
    },
]


class StubVerifier:
    """Treats the bearer credential as the user id when it is known."""

    def __init__(self, known_users):
        self.known_users = set(known_users)

    async def verify(self, credential: Optional[str]) -> IdentityContext:
        if not credential or credential not in self.known_users:
            raise AuthenticationError("Unknown credential")
        return IdentityContext(user_id=credential, claims={"sub": credential})

    async def warmup(self):
        return None

    async def close(self):
        return None

    async def check_health(self) -> str:
        return "ok"


class StubWarehouse:
    """Records executed queries and returns canned rows."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.rows = rows if rows is not None else [dict(row) for row in SAMPLE_ROWS]
        self.error = error
        self.calls = []

    async def execute(self, query):
        self.calls.append(query)
        if self.error is not None:
            raise self.error
        return [dict(row) for row in self.rows]

    async def ping(self) -> bool:
        return True

    async def close(self):
        return None


@pytest.fixture
def agency_store():
    """Agency A manages B (active link) and C (inactive link).

    B holds app1 and app2, C holds app3, D is unrelated and holds app4.
    """
    store = InMemoryAccessStore()
    for organization_id in ("org-a", "org-b", "org-c", "org-d"):
        store.add_organization(organization_id)

    store.link_agency("org-a", "org-b")
    store.link_agency("org-a", "org-c", active=False)

    attached = datetime(2024, 1, 1, tzinfo=timezone.utc)
    store.attach_app("org-b", "app1", attached)
    store.attach_app("org-b", "app2", attached)
    store.attach_app("org-c", "app3", attached)
    store.attach_app("org-d", "app4", attached)

    store.assign_role("agency-user", "ASO_MANAGER", "org-a")
    store.assign_role("client-user", "VIEWER", "org-b")
    store.assign_role("outsider", "ANALYST", "org-d")
    store.assign_role("multi-user", "ANALYST", "org-b")
    store.assign_role("multi-user", "ANALYST", "org-d")
    store.assign_role("platform-admin", "SUPER_ADMIN")
    return store


@pytest.fixture
def stub_verifier():
    return StubVerifier(
        ["agency-user", "client-user", "outsider", "multi-user", "platform-admin", "no-roles"]
    )


@pytest.fixture
def stub_warehouse():
    return StubWarehouse()


@pytest.fixture
def make_identity():
    def _make(user_id: str) -> IdentityContext:
        return IdentityContext(user_id=user_id, claims={"sub": user_id})
    return _make
