"""Unit tests for the portal composition root."""

from unittest.mock import patch

import pytest
from fastapi import FastAPI

from app.portal.factory import build_grant_store, build_portal_services, install_portal_services
from kiisha_core.infrastructure.memory_store import InMemoryGrantStore
from kiisha_core.infrastructure.postgres import PostgresGrantStore

SETTINGS = "app.portal.factory.settings"


class TestBuildGrantStore:
    def test_memory_backend(self):
        with patch(SETTINGS) as mock_settings:
            mock_settings.GRANT_STORE_BACKEND = "memory"

            assert isinstance(build_grant_store(), InMemoryGrantStore)

    def test_postgres_backend(self):
        with patch(SETTINGS) as mock_settings:
            mock_settings.GRANT_STORE_BACKEND = "Postgres"

            assert isinstance(build_grant_store(), PostgresGrantStore)

    def test_unknown_backend_rejected(self):
        with patch(SETTINGS) as mock_settings:
            mock_settings.GRANT_STORE_BACKEND = "redis"

            with pytest.raises(ValueError):
                build_grant_store()


class TestBuildPortalServices:
    def test_wires_shared_store(self):
        store = InMemoryGrantStore()

        services = build_portal_services(store=store, secret="factory-secret-long-enough")

        assert services.scope_resolver.store is store
        assert services.legacy_bridge.canonical is services.scope_resolver
        assert services.guard.canonical is services.scope_resolver
        assert services.tenant_resolver.org_store is store

    def test_missing_secret_outside_production_uses_ephemeral_secret(self):
        with patch(SETTINGS) as mock_settings:
            mock_settings.JWT_SECRET = ""
            mock_settings.is_production = False

            services = build_portal_services(store=InMemoryGrantStore())

        assert services.tokens.secret

    def test_missing_secret_in_production_rejected(self):
        with patch(SETTINGS) as mock_settings:
            mock_settings.JWT_SECRET = ""
            mock_settings.is_production = True

            with pytest.raises(ValueError):
                build_portal_services(store=InMemoryGrantStore())

    def test_install_sets_app_state(self):
        app = FastAPI()
        services = build_portal_services(store=InMemoryGrantStore(), secret="factory-secret-long-enough")

        install_portal_services(app, services)

        assert app.state.auth_guard is services.guard
        assert app.state.rate_limiter is services.rate_limiter
