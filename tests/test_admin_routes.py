"""Integration tests for the operator endpoints on the full application."""

import pytest
from fastapi.testclient import TestClient

import app.api.routes.admin as admin_routes
import app.core.rate_limit as rate_limit_module
from app.core.identity import resolve_identity
from app.main import app

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key-123"}
BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0"


@pytest.fixture
def client(gate, monkeypatch) -> TestClient:
    monkeypatch.setattr(rate_limit_module, "get_admission_gate", lambda: gate)
    monkeypatch.setattr(admin_routes, "get_admission_gate", lambda: gate)
    return TestClient(app)


def _trip_guestbook(gate, address: str = "10.0.0.1") -> None:
    identity = resolve_identity(address, user_agent=BROWSER_UA, path="/v1/guestbook")
    for _ in range(6):
        gate.evaluate(identity, "guestbook")


class TestAdminAuth:
    def test_missing_key_is_forbidden(self, client: TestClient) -> None:
        response = client.get("/v1/admin/rate-limit/stats")

        assert response.status_code == 403
        assert "Missing admin key" in response.json()["detail"]

    def test_wrong_key_is_forbidden(self, client: TestClient) -> None:
        response = client.get("/v1/admin/rate-limit/stats", headers={"X-Admin-Key": "nope"})

        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid or missing admin key"

    def test_rejected_operator_does_not_consume_admin_quota(self, client: TestClient, gate) -> None:
        client.get("/v1/admin/rate-limit/stats")

        assert len(gate.counter.store) == 0


class TestStats:
    def test_stats_reflect_store_contents(self, client: TestClient, gate) -> None:
        _trip_guestbook(gate)

        response = client.get("/v1/admin/rate-limit/stats", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        # The stats call itself is counted under the "admin" category
        assert response.json() == {
            "activeRecords": 2,
            "blockedAddresses": 1,
            "behaviorRecords": 2,
            "highSuspicionCount": 1,
        }
        assert response.headers["X-RateLimit-Limit"] == "30"

    def test_admin_category_is_rate_limited(self, client: TestClient) -> None:
        for _ in range(30):
            assert client.get("/v1/admin/rate-limit/stats", headers=ADMIN_HEADERS).status_code == 200

        response = client.get("/v1/admin/rate-limit/stats", headers=ADMIN_HEADERS)

        assert response.status_code == 429
        assert response.json()["message"] == "Admin rate limit exceeded."
        assert "Retry-After" in response.headers


class TestClearRecord:
    def test_clear_record_purges_address(self, client: TestClient, gate) -> None:
        _trip_guestbook(gate)
        _trip_guestbook(gate, "10.0.0.2")

        response = client.delete("/v1/admin/rate-limit/records/::ffff:10.0.0.1", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"address": "10.0.0.1", "removed": 2}
        assert gate.counter.get("guestbook:10.0.0.1:") is None
        assert gate.analyzer.get("10.0.0.1") is None
        assert gate.counter.get("guestbook:10.0.0.2:") is not None

    def test_clear_unknown_address(self, client: TestClient) -> None:
        response = client.delete("/v1/admin/rate-limit/records/203.0.113.9", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["removed"] == 0


def test_health_is_not_admission_controlled(client: TestClient, gate) -> None:
    for _ in range(5):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "admission": "enabled"}

    assert len(gate.counter.store) == 0


def test_openapi_documents_rejection_contract(client: TestClient) -> None:
    schema = client.get("/openapi.json").json()

    stats_op = schema["paths"]["/v1/admin/rate-limit/stats"]["get"]
    assert "429" in stats_op["responses"]
    assert stats_op["security"] == [{"AdminKeyAuth": []}]
    assert "429" not in schema["paths"]["/health"]["get"]["responses"]
    assert "RateLimitRejection" in schema["components"]["schemas"]


def test_lifespan_starts_and_stops_reaper() -> None:
    with TestClient(app) as client:
        reaper = client.app.state.reaper
        assert reaper.running is True

    assert reaper.running is False
