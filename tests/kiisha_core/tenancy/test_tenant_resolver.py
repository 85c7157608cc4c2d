"""Unit tests for TenantResolver."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kiisha_core.tenancy.resolver import (
    RESERVED_SUBDOMAINS,
    TenantResolver,
    build_lobby_url,
    build_org_url,
)
from tests.kiisha_core.fakes import FailingGrantStore, seed_records, seeded_store

DEV_MARKERS = ["localhost", "127.0.0.1", ".manus.computer"]


@pytest.fixture
def resolver():
    return TenantResolver(seeded_store(), dev_markers=DEV_MARKERS)


class TestProductionHosts:
    """Tests for subdomain resolution."""

    @pytest.mark.asyncio
    async def test_active_org_subdomain(self, resolver):
        ctx = await resolver.resolve("acme.kiisha.io")

        assert ctx.org_id == 10
        assert ctx.org_slug == "acme"
        assert ctx.is_lobby is False
        assert ctx.is_development is False

    @pytest.mark.asyncio
    async def test_port_is_ignored(self, resolver):
        ctx = await resolver.resolve("acme.kiisha.io:8443")

        assert ctx.org_id == 10

    @pytest.mark.asyncio
    async def test_subdomain_is_case_insensitive(self, resolver):
        ctx = await resolver.resolve("ACME.kiisha.io")

        assert ctx.org_slug == "acme"

    @pytest.mark.asyncio
    async def test_app_subdomain_is_lobby(self, resolver):
        ctx = await resolver.resolve("app.kiisha.io")

        assert ctx.org_id is None
        assert ctx.is_lobby is True

    @pytest.mark.asyncio
    async def test_other_reserved_subdomain_is_not_a_tenant(self, resolver):
        """Reserved subdomains are never looked up as organizations."""
        assert "api" in RESERVED_SUBDOMAINS
        org_store = MagicMock()
        org_store.get_active_organization_by_slug = AsyncMock()
        reserved_resolver = TenantResolver(org_store, dev_markers=DEV_MARKERS)

        ctx = await reserved_resolver.resolve("api.kiisha.io")

        assert ctx.org_id is None
        assert ctx.is_lobby is False
        org_store.get_active_organization_by_slug.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_label_host_is_lobby(self, resolver):
        ctx = await resolver.resolve("shortname")

        assert ctx.is_lobby is True
        assert ctx.org_id is None

    @pytest.mark.asyncio
    async def test_bare_domain_is_lobby(self, resolver):
        ctx = await resolver.resolve("kiisha.io")

        assert ctx.is_lobby is True
        assert ctx.org_slug is None

    @pytest.mark.asyncio
    async def test_unknown_slug_keeps_attempted_slug(self, resolver):
        ctx = await resolver.resolve("nosuchorg.kiisha.io")

        assert ctx.org_id is None
        assert ctx.org_slug == "nosuchorg"
        assert ctx.is_lobby is True

    @pytest.mark.asyncio
    async def test_inactive_org_is_not_a_tenant(self, resolver):
        ctx = await resolver.resolve("shutdown.kiisha.io")

        assert ctx.org_id is None
        assert ctx.is_lobby is True

    @pytest.mark.asyncio
    async def test_lookup_failure_falls_back_to_lobby(self):
        store = FailingGrantStore({"get_active_organization_by_slug"}, seed_records())
        failing = TenantResolver(store, dev_markers=DEV_MARKERS)

        ctx = await failing.resolve("acme.kiisha.io")

        assert ctx.org_id is None
        assert ctx.is_lobby is True

    @pytest.mark.asyncio
    async def test_override_headers_ignored_in_production(self, resolver):
        """Production hosts never honor the override headers."""
        ctx = await resolver.resolve("globex.kiisha.io", {"X-Kiisha-Org": "10"})

        assert ctx.org_id == 20


class TestDevelopmentHosts:
    """Tests for development host handling."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("host", ["localhost:3000", "127.0.0.1", "abc-123.manus.computer"])
    async def test_dev_host_without_headers_is_lobby(self, resolver, host):
        ctx = await resolver.resolve(host)

        assert ctx.is_lobby is True
        assert ctx.is_development is True
        assert ctx.org_id is None

    @pytest.mark.asyncio
    async def test_org_id_header(self, resolver):
        ctx = await resolver.resolve("localhost:3000", {"X-Kiisha-Org": "20"})

        assert ctx.org_id == 20
        assert ctx.org_slug == "globex"
        assert ctx.is_lobby is False
        assert ctx.is_development is True

    @pytest.mark.asyncio
    async def test_org_slug_header(self, resolver):
        ctx = await resolver.resolve("localhost", {"x-kiisha-org-slug": "acme"})

        assert ctx.org_id == 10

    @pytest.mark.asyncio
    async def test_unknown_org_id_falls_through_to_slug(self, resolver):
        ctx = await resolver.resolve(
            "localhost", {"x-kiisha-org": "999", "x-kiisha-org-slug": "acme"}
        )

        assert ctx.org_id == 10

    @pytest.mark.asyncio
    async def test_non_numeric_org_id_ignored(self, resolver):
        ctx = await resolver.resolve("localhost", {"x-kiisha-org": "acme"})

        assert ctx.is_lobby is True
        assert ctx.org_id is None

    @pytest.mark.asyncio
    async def test_inactive_org_header_is_lobby(self, resolver):
        ctx = await resolver.resolve("localhost", {"x-kiisha-org": "30"})

        assert ctx.is_lobby is True

    @pytest.mark.asyncio
    async def test_forced_production_on_dev_host(self, resolver):
        ctx = await resolver.resolve("localhost", {"x-kiisha-org": "10"}, is_dev_environment=False)

        assert ctx.is_development is False
        assert ctx.org_id is None


class TestUrlBuilders:
    """Tests for org and lobby URL builders."""

    def test_urls_use_http_outside_production(self):
        with patch("kiisha_core.tenancy.resolver.settings") as mock_settings:
            mock_settings.url_scheme = "http"
            mock_settings.KIISHA_BASE_HOST = "kiisha.io"

            assert build_org_url("acme") == "http://acme.kiisha.io/"
            assert build_lobby_url("/login") == "http://app.kiisha.io/login"

    def test_urls_use_https_in_production(self):
        with patch("kiisha_core.tenancy.resolver.settings") as mock_settings:
            mock_settings.url_scheme = "https"
            mock_settings.KIISHA_BASE_HOST = "kiisha.io"

            assert build_org_url("acme", "/projects") == "https://acme.kiisha.io/projects"
