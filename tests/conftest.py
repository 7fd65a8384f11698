# tests/conftest.py

from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from bulk_enricher import BulkEnrichmentService
from config import ProviderKeys
from models import CHANNEL_FIELDS, Contact, is_blank

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

HUNTER_HOST = "api.hunter.io"
APOLLO_HOST = "api.apollo.io"
LUSHA_HOST = "api.lusha.com"
FINDYMAIL_HOST = "app.findymail.com"


def make_contact(contact_id: str, **fields) -> Contact:
    """Contact owned by USER_ID with no channels and every provider pending"""
    data = {"id": contact_id, "full_name": "Jane Doe", "created_by": USER_ID}
    data.update(fields)
    return Contact(**data)


class InMemoryContactStore:
    """
    Fake contact store

    The candidate query uses the loose "any channel empty" filter, so tests can
    feed rows that only the in-process filter rejects.
    """

    def __init__(self, contacts=(), organizations: Optional[Dict[str, str]] = None):
        self.rows: Dict[str, Dict[str, Any]] = {c.id: c.model_dump() for c in contacts}
        self.organizations = dict(organizations or {})
        self.updates: List[Tuple[str, Dict[str, Any]]] = []
        self.fetch_calls: List[Tuple[str, Optional[str], int]] = []
        self.organization_lookups: List[List[str]] = []
        self.claims: List[str] = []
        self.releases: List[str] = []
        self.fail_fetch = False
        self.fail_updates = False
        self.fail_organizations = False
        self.claimed_elsewhere = set()

    async def fetch_enrichment_candidates(self, user_id, last_id, limit):
        self.fetch_calls.append((user_id, last_id, limit))
        if self.fail_fetch:
            raise RuntimeError("connection reset by peer")
        rows = [
            row for row in self.rows.values()
            if row["created_by"] == user_id
            and any(is_blank(row.get(field)) for field in CHANNEL_FIELDS)
            and (not last_id or row["id"] > last_id)
        ]
        rows.sort(key=lambda row: row["id"])
        return [Contact(**row) for row in rows[:limit]]

    async def fetch_contact(self, contact_id):
        row = self.rows.get(contact_id)
        return Contact(**row) if row else None

    async def fetch_organization_names(self, organization_ids):
        ids = sorted(set(organization_ids))
        self.organization_lookups.append(ids)
        if self.fail_organizations:
            raise RuntimeError("organizations unavailable")
        return {org_id: self.organizations[org_id] for org_id in ids if org_id in self.organizations}

    async def update_contact(self, contact_id, updates):
        if self.fail_updates:
            raise RuntimeError("write failed")
        self.updates.append((contact_id, dict(updates)))
        self.rows[contact_id].update(updates)

    async def claim_contact(self, contact_id, lease_seconds):
        if contact_id in self.claimed_elsewhere:
            return False
        self.claims.append(contact_id)
        return True

    async def release_contact(self, contact_id):
        self.releases.append(contact_id)

    def row(self, contact_id) -> Dict[str, Any]:
        return self.rows[contact_id]


class ProviderStub:
    """httpx transport handler that answers per provider host and records requests"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, Optional[str]], Any] = {}

    def respond(
        self,
        host: str,
        status_code: int = 200,
        json: Any = None,
        text: Optional[str] = None,
        path: Optional[str] = None,
    ):
        """Answer requests to host, or only to host and path when a path is given"""
        self.routes[(host, path)] = (status_code, json, text)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.url.host, request.url.path)) or self.routes.get((request.url.host, None))
        if route is None:
            return httpx.Response(404, json={"error": "no route"})
        status_code, json, text = route
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=json if json is not None else {})

    def calls_to(self, host: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.host == host]


ALL_KEYS = ProviderKeys(
    hunter_key="hunter-test-key",
    apollo_key="apollo-test-key",
    lusha_key="lusha-test-key",
    findymail_key="findymail-test-key",
)


@pytest.fixture
def stub():
    return ProviderStub()


@pytest.fixture
def http_client(stub):
    return httpx.AsyncClient(transport=httpx.MockTransport(stub))


@pytest.fixture
def make_service(http_client):
    """Build a service around a store, with no pacing delay"""
    def factory(store, keys: ProviderKeys = ALL_KEYS, **kwargs):
        kwargs.setdefault("pacing_seconds", 0)
        return BulkEnrichmentService(store=store, provider_keys=keys, http_client=http_client, **kwargs)
    return factory
