"""Tests for hostname to tenant resolution."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from tenantdomains.domains import DomainRecord, JSONDomainStore, TenantDomainResolver


@pytest.fixture
def store(tmp_path):
    return JSONDomainStore(tmp_path / "domains.json")


async def add_record(store, hostname="app.acme.com", verified=True) -> DomainRecord:
    return await store.create(
        DomainRecord(
            tenant_id="tenant-1", hostname=hostname, verify_token="t", verified=verified
        )
    )


class TestTenantDomainResolver:
    """Tests for TenantDomainResolver."""

    @pytest.mark.asyncio
    async def test_resolves_verified(self, store):
        """Test a verified domain resolves to its tenant."""
        await add_record(store)
        resolver = TenantDomainResolver(store)

        assert await resolver.resolve("app.acme.com") == "tenant-1"

    @pytest.mark.asyncio
    async def test_normalizes_input(self, store):
        """Test the host is normalized like at registration."""
        await add_record(store)
        resolver = TenantDomainResolver(store)

        assert await resolver.resolve("https://www.APP.acme.com/login") == "tenant-1"

    @pytest.mark.asyncio
    async def test_unverified_never_resolves(self, store):
        """Test an unverified domain does not route."""
        await add_record(store, verified=False)
        resolver = TenantDomainResolver(store)

        assert await resolver.resolve("app.acme.com") is None

    @pytest.mark.asyncio
    async def test_unknown(self, store):
        """Test unknown and empty hosts resolve to None."""
        resolver = TenantDomainResolver(store)

        assert await resolver.resolve("unknown.example.com") is None
        assert await resolver.resolve("") is None

    @pytest.mark.asyncio
    async def test_cache_hit(self, store):
        """Test a cached answer skips the store."""
        await add_record(store)
        resolver = TenantDomainResolver(store, cache_ttl=60)
        await resolver.resolve("app.acme.com")

        with patch.object(store, "get_by_hostname") as mock_get:
            assert await resolver.resolve("app.acme.com") == "tenant-1"
            mock_get.assert_not_called()

    @pytest.mark.asyncio
    async def test_cache_expiry(self, store):
        """Test expired cache entries are looked up again."""
        record = await add_record(store)
        resolver = TenantDomainResolver(store, cache_ttl=60)

        with patch("tenantdomains.domains.resolver.time.monotonic", return_value=1000.0):
            await resolver.resolve("app.acme.com")
        await store.delete(record.id)

        with patch("tenantdomains.domains.resolver.time.monotonic", return_value=1030.0):
            assert await resolver.resolve("app.acme.com") == "tenant-1"
        with patch("tenantdomains.domains.resolver.time.monotonic", return_value=1061.0):
            assert await resolver.resolve("app.acme.com") is None

    @pytest.mark.asyncio
    async def test_invalidate(self, store):
        """Test invalidation drops a cached hostname."""
        record = await add_record(store)
        resolver = TenantDomainResolver(store, cache_ttl=60)
        await resolver.resolve("app.acme.com")
        await store.delete(record.id)

        resolver.invalidate("WWW.app.acme.com")

        assert await resolver.resolve("app.acme.com") is None

    @pytest.mark.asyncio
    async def test_invalidate_all(self, store):
        """Test invalidating without a hostname clears everything."""
        a = await add_record(store, "a.acme.com")
        b = await add_record(store, "b.acme.com")
        resolver = TenantDomainResolver(store, cache_ttl=60)
        await resolver.resolve("a.acme.com")
        await resolver.resolve("b.acme.com")
        await store.delete(a.id)
        await store.delete(b.id)

        resolver.invalidate()

        assert await resolver.resolve("a.acme.com") is None
        assert await resolver.resolve("b.acme.com") is None

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self, store):
        """Test a zero TTL always reads the store."""
        record = await add_record(store)
        resolver = TenantDomainResolver(store, cache_ttl=0)
        await resolver.resolve("app.acme.com")
        await store.delete(record.id)

        assert await resolver.resolve("app.acme.com") is None
