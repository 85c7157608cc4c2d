"""
Integration tests for the portal routes.

Runs the full application (tenant middleware, auth guard, rate limiter)
against the seeded in-memory grant store.
"""

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.portal.factory import build_portal_services
from kiisha_core.infrastructure.rate_limiter import limiter
from tests.kiisha_core.fakes import FailingGrantStore, seed_records, seeded_store

SECRET = "routes-test-secret-long-enough"
NOW_MS = 1_700_000_000_000


def _cookie(services, **claims) -> dict:
    token = services.tokens.create_token(claims)
    return {"Cookie": f"portal_token={token}"}


class TestTenantRoute:
    def test_org_subdomain(self, services):
        with TestClient(create_app(services), base_url="http://acme.kiisha.io") as client:
            response = client.get("/portal/tenant")

        body = response.json()
        assert body["org_id"] == 10
        assert body["is_lobby"] is False
        assert body["home_url"].endswith("://acme.kiisha.io/")
        assert "X-Kiisha-Tenant-Org" not in response.headers

    def test_lobby(self, client):
        response = client.get("/portal/tenant")

        assert response.json()["is_lobby"] is True
        assert response.json()["home_url"].endswith("://app.kiisha.io/")

    def test_development_override_header(self, services):
        with TestClient(create_app(services), base_url="http://localhost:8081") as client:
            response = client.get("/portal/tenant", headers={"X-Kiisha-Org": "20"})

        assert response.json()["org_slug"] == "globex"
        assert response.json()["is_development"] is True
        assert response.headers["X-Kiisha-Tenant-Org"] == "20"


class TestMeRoute:
    """Tests for GET /portal/me."""

    def test_returns_scope_summary(self, client, services):
        response = client.get("/portal/me", headers=_cookie(services, portalUserId=1, email="alice@acme.test"))

        assert response.status_code == 200
        body = response.json()
        assert body["portal_user_id"] == 1
        assert body["org_ids"] == [10, 20]
        assert body["project_ids"] == [1000, 1001]
        assert {ca["role"] for ca in body["client_accounts"]} == {"CLIENT_ADMIN", "FINANCE"}

    def test_legacy_session(self, client, services):
        response = client.get(
            "/portal/me", headers=_cookie(services, customerUserId=50, email="old@legacy.test")
        )

        assert response.status_code == 200
        assert response.json()["legacy_customer_id"] == 5
        assert response.json()["client_accounts"][0]["code"] == "LEGACY-5"

    def test_without_cookie_is_401(self, client):
        response = client.get("/portal/me")

        assert response.status_code == 401
        assert response.json() == {"detail": "UNAUTHORIZED"}

    def test_no_memberships_is_403(self, client, services):
        response = client.get("/portal/me", headers=_cookie(services, portalUserId=3, email="carol@nowhere.test"))

        assert response.status_code == 403
        assert response.json() == {"detail": "FORBIDDEN"}

    def test_store_failure_is_500(self):
        services = build_portal_services(
            store=FailingGrantStore({"list_active_memberships"}, seed_records()),
            secret=SECRET,
        )

        with TestClient(create_app(services)) as client:
            response = client.get("/portal/me", headers=_cookie(services, portalUserId=1, email="alice@acme.test"))

        assert response.status_code == 500
        assert response.json() == {"detail": "STORE_FAILURE"}


class TestAccessRoute:
    """Tests for GET /portal/access/{kind}/{id}."""

    @pytest.mark.parametrize(
        "path,level",
        [
            ("/portal/access/project/1000", "full"),
            ("/portal/access/project/1001", "reports_only"),
            ("/portal/access/site/2000", "full"),
            ("/portal/access/org/20", None),
        ],
    )
    def test_granted(self, client, services, path, level):
        response = client.get(path, headers=_cookie(services, portalUserId=1, email="alice@acme.test"))

        assert response.status_code == 200
        assert response.json()["access_level"] == level

    def test_denied(self, client, services):
        response = client.get(
            "/portal/access/site/2000", headers=_cookie(services, portalUserId=2, email="bob@globex.test")
        )

        assert response.status_code == 403

    def test_unknown_kind_is_422(self, client, services):
        response = client.get(
            "/portal/access/galaxy/1", headers=_cookie(services, portalUserId=1, email="alice@acme.test")
        )

        assert response.status_code == 422


class TestFieldRoutes:
    def test_metrics_from_policies(self, client, services):
        response = client.get("/portal/metrics", headers=_cookie(services, portalUserId=1, email="alice@acme.test"))

        assert response.json() == {"metrics": ["production", "revenue"]}

    def test_default_metrics(self, client, services):
        response = client.get("/portal/metrics", headers=_cookie(services, portalUserId=2, email="bob@globex.test"))

        assert response.json() == {"metrics": ["production", "revenue", "uptime", "performance"]}

    def test_preview_filters_record(self, client, services):
        response = client.post(
            "/portal/fields/invoice/preview",
            json={"id": 1, "amount": 10, "due_date": "2026-01-01", "margin": 0.3},
            headers=_cookie(services, portalUserId=1, email="alice@acme.test"),
        )

        assert response.json() == {"id": 1, "amount": 10, "due_date": "2026-01-01"}


class TestPasswordResetRoute:
    """Tests for POST /portal/password-reset rate limiting."""

    def test_five_per_window_then_429(self, client):
        remaining = []
        for _ in range(5):
            response = client.post("/portal/password-reset", json={"email": "someone@example.com"})
            assert response.status_code == 202
            remaining.append(response.headers["X-RateLimit-Remaining"])

        response = client.post("/portal/password-reset", json={"email": "someone@example.com"})

        assert remaining == ["4", "3", "2", "1", "0"]
        assert response.status_code == 429
        assert response.json() == {"error": "Too many requests", "retryAfter": 900}
        assert response.headers["Retry-After"] == "900"
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_email_is_case_insensitive(self, client):
        for _ in range(5):
            client.post("/portal/password-reset", json={"email": "Someone@Example.com"})

        response = client.post("/portal/password-reset", json={"email": "someone@example.com"})

        assert response.status_code == 429

    def test_different_emails_isolated(self, client):
        for _ in range(5):
            client.post("/portal/password-reset", json={"email": "first@example.com"})

        response = client.post("/portal/password-reset", json={"email": "second@example.com"})

        assert response.status_code == 202

    def test_generic_response(self, client):
        response = client.post("/portal/password-reset", json={"email": "nobody@example.com"})

        assert response.json() == {"message": "If the account exists, a reset link has been sent."}


class TestUploadRoute:
    """Tests for POST /portal/uploads."""

    def test_client_admin_upload(self, client, services):
        response = client.post(
            "/portal/uploads",
            json={"project_id": 1000, "filename": "meter.csv"},
            headers=_cookie(services, portalUserId=1, email="alice@acme.test"),
        )

        assert response.status_code == 202
        assert response.headers["X-RateLimit-Limit"] == "20"

    def test_ops_upload(self, client, services):
        response = client.post(
            "/portal/uploads",
            json={"project_id": 1001, "filename": "photo.jpg"},
            headers=_cookie(services, portalUserId=2, email="bob@globex.test"),
        )

        assert response.status_code == 202

    def test_legacy_admin_upload(self, client, services):
        response = client.post(
            "/portal/uploads",
            json={"project_id": 1002, "filename": "report.pdf"},
            headers=_cookie(services, customerUserId=50, email="old@legacy.test"),
        )

        assert response.status_code == 202

    def test_project_outside_scope_is_403(self, client, services):
        response = client.post(
            "/portal/uploads",
            json={"project_id": 9999, "filename": "x.csv"},
            headers=_cookie(services, portalUserId=1, email="alice@acme.test"),
        )

        assert response.status_code == 403

    def test_twenty_first_upload_is_429(self, client, services):
        headers = _cookie(services, portalUserId=1, email="alice@acme.test")
        body = {"project_id": 1000, "filename": "meter.csv"}
        for _ in range(20):
            assert client.post("/portal/uploads", json=body, headers=headers).status_code == 202

        response = client.post("/portal/uploads", json=body, headers=headers)

        assert response.status_code == 429
        assert response.json()["retryAfter"] == 3600


# --- Fixtures ---


@pytest.fixture
def services():
    return build_portal_services(store=seeded_store(), secret=SECRET, clock=lambda: NOW_MS)


@pytest.fixture
def client(services):
    limiter.reset()
    with TestClient(create_app(services)) as test_client:
        yield test_client
