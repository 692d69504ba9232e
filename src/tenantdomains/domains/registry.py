"""Registration, listing, primary selection and removal of tenant domains.

Enforces the two structural invariants together with the store:

- a hostname is registered at most once across all tenants;
- a tenant has at most one primary domain.
"""

from __future__ import annotations

import secrets

import structlog

from tenantdomains.domains.errors import (
    DomainConflictError,
    DomainNotFoundError,
    DomainNotVerifiedError,
    DomainValidationError,
    DuplicateHostnameError,
    InvalidHostnameError,
)
from tenantdomains.domains.hostnames import matches_hostname_syntax, normalize_hostname
from tenantdomains.domains.instructions import (
    VerificationInstructions,
    build_verification_instructions,
)
from tenantdomains.domains.storage import DomainRecord, DomainStore

logger = structlog.get_logger()


class DomainRegistry:
    """Owns the lifecycle of ``DomainRecord`` rows, except verification and TLS fields."""

    def __init__(
        self,
        store: DomainStore,
        cname_target: str = "proxy.pmo-platform.com",
        token_prefix: str = "pmo-verify-",
        txt_record_prefix: str = "_pmo-verify",
        instructions_ttl: int = 3600,
    ) -> None:
        self.store = store
        self.cname_target = cname_target
        self.token_prefix = token_prefix
        self.txt_record_prefix = txt_record_prefix
        self.instructions_ttl = instructions_ttl

    def generate_verification_token(self) -> str:
        """Generate a fresh random verification token (128 bits)."""
        return f"{self.token_prefix}{secrets.token_hex(16)}"

    async def add(self, tenant_id: str, raw_hostname: str, is_primary: bool = False) -> DomainRecord:
        """Register a hostname for a tenant.

        The hostname is normalized first. When ``is_primary`` is set, the
        tenant's current primary is cleared in the same atomic step as the insert.

        Raises:
            DomainValidationError: If the tenant id or hostname is missing or malformed.
            DomainConflictError: If any tenant already registered the hostname.
        """
        if not tenant_id:
            raise DomainValidationError("tenant_id is required")

        hostname = normalize_hostname(raw_hostname or "")
        if not hostname or not matches_hostname_syntax(hostname):
            raise InvalidHostnameError(raw_hostname)

        if await self.store.get_by_hostname(hostname) is not None:
            raise DomainConflictError(hostname)

        record = DomainRecord(
            tenant_id=tenant_id,
            hostname=hostname,
            verify_token=self.generate_verification_token(),
            is_primary=is_primary,
        )
        try:
            created = await self.store.create(record)
        except DuplicateHostnameError as e:
            # Lost a race with a concurrent registration of the same hostname.
            raise DomainConflictError(hostname) from e

        logger.info(
            "Custom domain added",
            hostname=hostname,
            tenant_id=tenant_id,
            is_primary=is_primary,
        )
        return created

    async def list(self, tenant_id: str) -> list[DomainRecord]:
        """A tenant's domains, primary first, then in creation order."""
        return await self.store.list_by_tenant(tenant_id)

    async def get(self, domain_id: str) -> DomainRecord | None:
        return await self.store.get(domain_id)

    async def get_owned(self, domain_id: str, tenant_id: str) -> DomainRecord:
        """Get a domain, checking it belongs to ``tenant_id``.

        Raises:
            DomainNotFoundError: If missing or owned by another tenant.
        """
        record = await self.store.get(domain_id)
        if record is None or record.tenant_id != tenant_id:
            raise DomainNotFoundError(domain_id)
        return record

    async def set_primary(self, domain_id: str, tenant_id: str) -> DomainRecord:
        """Make a verified domain the tenant's primary domain.

        Raises:
            DomainNotFoundError: If missing or owned by another tenant.
            DomainNotVerifiedError: If the domain is not verified yet.
        """
        record = await self.get_owned(domain_id, tenant_id)
        if not record.verified:
            raise DomainNotVerifiedError(record.hostname, "setting as primary")

        if not await self.store.set_primary(tenant_id, domain_id):
            raise DomainNotFoundError(domain_id)

        logger.info("Primary domain changed", hostname=record.hostname, tenant_id=tenant_id)
        record.is_primary = True
        return record

    async def remove(self, domain_id: str, tenant_id: str) -> DomainRecord:
        """Delete a tenant's domain.

        Issued certificates are left to expire; nothing is revoked at the CA.

        Returns:
            The removed record.

        Raises:
            DomainNotFoundError: If missing or owned by another tenant.
        """
        record = await self.get_owned(domain_id, tenant_id)
        if not await self.store.delete(domain_id):
            raise DomainNotFoundError(domain_id)

        logger.info("Custom domain removed", hostname=record.hostname, tenant_id=tenant_id)
        return record

    def instructions(self, record: DomainRecord) -> VerificationInstructions:
        """DNS records the tenant must publish for ``record``."""
        return build_verification_instructions(
            record.hostname,
            record.verify_token,
            self.cname_target,
            txt_record_prefix=self.txt_record_prefix,
            ttl=self.instructions_ttl,
        )
