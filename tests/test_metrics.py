"""Tests for Prometheus metrics and their HTTP endpoint."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from tenantdomains.domains import DNSVerifier, DomainRecord, JSONDomainStore, OwnershipVerifier
from tenantdomains.observability import (
    VERIFICATION_ATTEMPTS,
    create_metrics_app,
    generate_metrics,
    get_content_type,
    start_metrics_server,
)


class TestMetrics:
    """Tests for metric collection."""

    @pytest.mark.asyncio
    async def test_verification_outcome_counted(self, tmp_path):
        """Test a failed verification increments the mismatch counter."""
        store = JSONDomainStore(tmp_path / "domains.json")
        record = await store.create(
            DomainRecord(tenant_id="tenant-1", hostname="app.acme.com", verify_token="t")
        )
        dns = DNSVerifier()
        dns.resolve_txt = AsyncMock(return_value=["other"])
        before = VERIFICATION_ATTEMPTS.labels(outcome="mismatch")._value.get()

        await OwnershipVerifier(store, dns).verify_ownership(record.id)

        assert VERIFICATION_ATTEMPTS.labels(outcome="mismatch")._value.get() == before + 1

    def test_generate_metrics(self):
        """Test exposition output contains the domain metrics."""
        output = generate_metrics().decode()

        assert "tenantdomains_verification_attempts_total" in output
        assert "tenantdomains_provisioning_in_flight" in output
        assert get_content_type().startswith("text/plain")


class TestMetricsServer:
    """Tests for the metrics HTTP endpoint."""

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self):
        """Test /metrics serves the Prometheus exposition format."""
        async with TestClient(TestServer(create_metrics_app())) as client:
            resp = await client.get("/metrics")
            body = await resp.text()

        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/plain")
        assert "tenantdomains_cname_checks_total" in body

    @pytest.mark.asyncio
    async def test_health_endpoint(self):
        """Test /health reports ok."""
        async with TestClient(TestServer(create_metrics_app())) as client:
            resp = await client.get("/health")
            data = await resp.json()

        assert data == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """Test the standalone server starts and cleans up."""
        runner = await start_metrics_server("127.0.0.1", 0)

        assert runner.addresses

        await runner.cleanup()
