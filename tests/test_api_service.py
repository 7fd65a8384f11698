# tests/test_api_service.py

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from api_service import app, get_current_user_id
from bulk_enricher import ContactAccessError, ContactNotFoundError, get_bulk_enrichment_service
from conftest import USER_ID
from database import DatabaseConfigurationError
from models import (
    BulkEnrichResponse,
    ContactEnrichResult,
    EnrichmentOutcome,
    ProviderName,
    ProviderResult,
    ProviderUsage,
    ProviderUsageResponse,
    UsageStatus,
)
from provider_base import ProviderNotConfiguredError
from selector import CandidateFetchError

AUTH = {"Authorization": "Bearer token-123"}


@pytest.fixture
def service():
    service = MagicMock()
    service.providers = {ProviderName.APOLLO: object(), ProviderName.HUNTER: object()}
    service.run_batch = AsyncMock()
    service.enrich_contact = AsyncMock()
    service.provider_usage = AsyncMock()
    return service


@pytest.fixture
def client(service):
    async def current_user():
        return USER_ID

    async def current_service():
        return service

    app.dependency_overrides[get_current_user_id] = current_user
    app.dependency_overrides[get_bulk_enrichment_service] = current_service
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuthentication:

    def test_missing_bearer_is_rejected(self, service):
        async def current_service():
            return service

        app.dependency_overrides[get_bulk_enrichment_service] = current_service
        try:
            response = TestClient(app).post("/bulk-enrich", json={})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        service.run_batch.assert_not_awaited()

    def test_unknown_token_is_rejected(self, service):
        async def current_service():
            return service

        db_client = MagicMock()
        db_client.get_user_id = AsyncMock(return_value=None)
        app.dependency_overrides[get_bulk_enrichment_service] = current_service
        try:
            with patch("api_service.get_db_client", new=AsyncMock(return_value=db_client)):
                response = TestClient(app).post("/bulk-enrich", json={}, headers=AUTH)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token"}
        db_client.get_user_id.assert_awaited_once_with("token-123")

    def test_missing_supabase_settings_is_server_error(self, service):
        async def current_service():
            return service

        db_client = MagicMock()
        db_client.get_user_id = AsyncMock(side_effect=DatabaseConfigurationError("SUPABASE_URL missing"))
        app.dependency_overrides[get_bulk_enrichment_service] = current_service
        try:
            with patch("api_service.get_db_client", new=AsyncMock(return_value=db_client)):
                response = TestClient(app).post("/bulk-enrich", json={}, headers=AUTH)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json() == {"error": "Authentication backend not configured"}
        service.run_batch.assert_not_awaited()


class TestBulkEnrichEndpoint:

    def test_returns_batch_response(self, client, service):
        service.run_batch.return_value = BulkEnrichResponse(
            done=False,
            processed=1,
            last_id="c3",
            results=[ContactEnrichResult(
                contact_id="c1",
                full_name="Jane Doe",
                hunter=EnrichmentOutcome.ENRICHED,
                apollo=EnrichmentOutcome.NOT_FOUND,
            )],
        )

        response = client.post("/bulk-enrich", json={"last_id": "c0", "services": ["hunter", "apollo"]}, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["done"] is False
        assert body["processed"] == 1
        assert body["last_id"] == "c3"
        assert body["results"][0] == {
            "contact_id": "c1",
            "full_name": "Jane Doe",
            "hunter": "enriched",
            "apollo": "not_found",
            "lusha": "skipped",
        }
        service.run_batch.assert_awaited_once_with(USER_ID, "c0", [ProviderName.HUNTER, ProviderName.APOLLO])

    def test_defaults_to_all_bulk_providers(self, client, service):
        service.run_batch.return_value = BulkEnrichResponse(done=True, message="No contacts left without data")

        response = client.post("/bulk-enrich", json={}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["message"] == "No contacts left without data"
        _, last_id, services = service.run_batch.await_args.args
        assert last_id == ""
        assert services == [ProviderName.HUNTER, ProviderName.APOLLO, ProviderName.LUSHA]

    @pytest.mark.parametrize("services", [["findymail"], ["clearbit"]])
    def test_rejects_unsupported_services(self, client, service, services):
        response = client.post("/bulk-enrich", json={"services": services}, headers=AUTH)

        assert response.status_code == 422
        assert "error" in response.json()
        service.run_batch.assert_not_awaited()

    def test_fetch_failure_is_server_error(self, client, service):
        service.run_batch.side_effect = CandidateFetchError("timeout")

        response = client.post("/bulk-enrich", json={}, headers=AUTH)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch contacts: timeout"}


class TestEnrichContactEndpoint:

    def test_success(self, client, service):
        service.enrich_contact.return_value = ProviderResult(
            provider=ProviderName.FINDYMAIL,
            outcome=EnrichmentOutcome.ENRICHED,
            updates={"work_email": "jane@acme.com"},
        )

        response = client.post("/contacts/c1/enrich/findymail", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"status": "enriched", "updates": {"work_email": "jane@acme.com"}}
        service.enrich_contact.assert_awaited_once_with(USER_ID, "c1", ProviderName.FINDYMAIL)

    def test_not_found_outcome_is_success(self, client, service):
        service.enrich_contact.return_value = ProviderResult(
            provider=ProviderName.APOLLO, outcome=EnrichmentOutcome.NOT_FOUND
        )

        response = client.post("/contacts/c1/enrich/apollo", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"status": "not_found", "updates": {}}

    @pytest.mark.parametrize("error, status_code", [
        (ContactNotFoundError("gone"), 404),
        (ContactAccessError("not yours"), 403),
    ])
    def test_contact_errors(self, client, service, error, status_code):
        service.enrich_contact.side_effect = error

        response = client.post("/contacts/c1/enrich/hunter", headers=AUTH)

        assert response.status_code == status_code
        assert "error" in response.json()

    def test_unconfigured_provider(self, client, service):
        service.enrich_contact.side_effect = ProviderNotConfiguredError(ProviderName.LUSHA)

        response = client.post("/contacts/c1/enrich/lusha", headers=AUTH)

        assert response.status_code == 500
        assert response.json() == {"error_code": "config_error", "error": "LUSHA_API_KEY not configured"}

    def test_provider_error_is_bad_gateway(self, client, service):
        service.enrich_contact.return_value = ProviderResult(
            provider=ProviderName.FINDYMAIL,
            outcome=EnrichmentOutcome.ERROR,
            error_code="no_credits",
            error="findymail API error: HTTP 402",
        )

        response = client.post("/contacts/c1/enrich/findymail", headers=AUTH)

        assert response.status_code == 502
        assert response.json()["error_code"] == "no_credits"

    def test_missing_data(self, client, service):
        service.enrich_contact.return_value = ProviderResult(
            provider=ProviderName.HUNTER, outcome=EnrichmentOutcome.SKIPPED
        )

        response = client.post("/contacts/c1/enrich/hunter", headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error_code"] == "missing_data"

    def test_unknown_provider(self, client, service):
        response = client.post("/contacts/c1/enrich/clearbit", headers=AUTH)

        assert response.status_code == 422
        service.enrich_contact.assert_not_awaited()


class TestServiceEndpoints:

    def test_ping(self, client):
        assert client.get("/ping").json()["ping"] == "pong"

    def test_health_lists_configured_providers(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["providers"] == ["apollo", "hunter"]

    def test_provider_usage(self, client, service):
        service.provider_usage.return_value = ProviderUsageResponse(
            fetched_at="2026-01-01T00:00:00+00:00",
            providers=[
                ProviderUsage(provider=ProviderName.HUNTER, status=UsageStatus.CONNECTED, plan="Starter"),
                ProviderUsage(provider=ProviderName.LUSHA, status=UsageStatus.NOT_CONFIGURED),
            ],
        )

        response = client.get("/providers/usage", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["fetched_at"] == "2026-01-01T00:00:00+00:00"
        assert [(p["provider"], p["status"]) for p in body["providers"]] == [
            ("hunter", "connected"),
            ("lusha", "not_configured"),
        ]

    def test_provider_usage_requires_bearer(self, service):
        async def current_service():
            return service

        app.dependency_overrides[get_bulk_enrichment_service] = current_service
        try:
            response = TestClient(app).get("/providers/usage")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401
