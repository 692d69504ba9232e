"""Domain manager: the single entry point for custom domain operations.

Wires the store, registry, DNS verification, CNAME checker, certificate
lifecycle and tenant resolver from one ``DomainsConfig``.

Usage:
    manager = DomainManager.from_config(DomainsConfig())

    # Register a new domain and show the DNS records to publish
    record = await manager.add_domain("tenant-1", "https://www.App.Acme.com/")
    print(manager.instructions(record).to_text())

    # After the tenant published the TXT record
    result = await manager.verify(record.id)

    # Poll certificate status
    status = await manager.ssl_status(record.id)
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog

from tenantdomains.domains.certificates import (
    CertificateAuthority,
    CertificateManager,
    CertificateStatus,
    SelfSignedAuthority,
    start_renewal_task,
)
from tenantdomains.domains.cname import CnameChecker
from tenantdomains.domains.instructions import VerificationInstructions
from tenantdomains.domains.registry import DomainRegistry
from tenantdomains.domains.resolver import TenantDomainResolver
from tenantdomains.domains.results import OperationResult
from tenantdomains.domains.storage import DomainRecord, DomainStore, open_store
from tenantdomains.domains.verification import DNSVerifier, OwnershipVerifier

if TYPE_CHECKING:
    from tenantdomains.core.config import DomainsConfig

logger = structlog.get_logger()


class DomainManager:
    """Coordinates registration, verification and certificates for custom domains."""

    def __init__(
        self,
        store: DomainStore,
        config: DomainsConfig,
        authority: CertificateAuthority | None = None,
        dns: DNSVerifier | None = None,
    ) -> None:
        """Initialize domain manager.

        Args:
            store: Storage backend for domain records.
            config: Domain settings.
            authority: Certificate authority. Defaults to self-signed certificates.
            dns: DNS verifier. Defaults to one built from ``config``.
        """
        self.store = store
        self.config = config
        self.dns = dns or DNSVerifier(config.dns_timeout, config.dns_nameservers)
        self.registry = DomainRegistry(
            store,
            cname_target=config.cname_target,
            token_prefix=config.token_prefix,
            txt_record_prefix=config.txt_record_prefix,
            instructions_ttl=config.instructions_ttl,
        )
        self.certificates = CertificateManager(
            store,
            authority
            or SelfSignedAuthority(config.certs_dir, config.certificate_validity_days),
            warning_days=config.expiry_warning_days,
            provision_timeout=config.provision_timeout,
            max_concurrent=config.max_concurrent_provisions,
        )
        self.verifier = OwnershipVerifier(
            store,
            self.dns,
            on_verified=self.certificates.dispatch,
            txt_record_prefix=config.txt_record_prefix,
        )
        self.cname_checker = CnameChecker(store, self.dns, config.cname_target)
        self.resolver = TenantDomainResolver(store, config.resolver_cache_ttl)
        self._renewal_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(
        cls,
        config: DomainsConfig,
        authority: CertificateAuthority | None = None,
    ) -> DomainManager:
        return cls(open_store(config), config, authority=authority)

    async def list_domains(self, tenant_id: str) -> list[DomainRecord]:
        return await self.registry.list(tenant_id)

    async def add_domain(
        self, tenant_id: str, hostname: str, is_primary: bool = False
    ) -> DomainRecord:
        return await self.registry.add(tenant_id, hostname, is_primary)

    async def get_domain(self, domain_id: str, tenant_id: str | None = None) -> DomainRecord | None:
        """Get a domain; with ``tenant_id`` the lookup is ownership-checked."""
        if tenant_id is None:
            return await self.registry.get(domain_id)
        return await self.registry.get_owned(domain_id, tenant_id)

    async def remove_domain(self, domain_id: str, tenant_id: str) -> DomainRecord:
        record = await self.registry.remove(domain_id, tenant_id)
        self.resolver.invalidate(record.hostname)
        return record

    async def set_primary(self, domain_id: str, tenant_id: str) -> DomainRecord:
        return await self.registry.set_primary(domain_id, tenant_id)

    def instructions(self, record: DomainRecord) -> VerificationInstructions:
        return self.registry.instructions(record)

    async def verify(self, domain_id: str) -> OperationResult:
        """Check the ownership TXT record; on success provisioning starts in the background."""
        return await self.verifier.verify_ownership(domain_id)

    async def check_cname(self, domain_id: str) -> OperationResult:
        return await self.cname_checker.check(domain_id)

    async def ssl_status(self, domain_id: str) -> CertificateStatus:
        return await self.certificates.check_status(domain_id)

    async def provision(self, domain_id: str) -> OperationResult:
        return await self.certificates.provision(domain_id)

    async def renew(self, domain_id: str) -> OperationResult:
        return await self.certificates.renew(domain_id)

    async def resolve_tenant(self, hostname: str) -> str | None:
        return await self.resolver.resolve(hostname)

    def start_renewal(self, interval: float | None = None) -> asyncio.Task[None]:
        """Start the background renewal loop, or return the one already running."""
        if self._renewal_task is None or self._renewal_task.done():
            self._renewal_task = start_renewal_task(
                self.certificates, interval or self.config.renewal_interval
            )
        return self._renewal_task

    async def close(self) -> None:
        """Stop the renewal loop, wait for in-flight provisioning, then release the store."""
        if self._renewal_task is not None:
            self._renewal_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._renewal_task
            self._renewal_task = None
        in_flight = self.certificates.in_flight()
        if in_flight:
            logger.info("Waiting for in-flight provisioning", count=len(in_flight))
        await self.certificates.drain()
        await self.store.close()
