"""Maps an inbound Host header to the tenant that owns the custom domain.

Used on every request to a custom domain, so positive answers are cached for a
short TTL. Only verified domains resolve.
"""

from __future__ import annotations

import time

import structlog

from tenantdomains.domains.hostnames import normalize_hostname
from tenantdomains.domains.storage import DomainStore

logger = structlog.get_logger()


class TenantDomainResolver:
    """Resolves hostnames to tenant ids."""

    def __init__(self, store: DomainStore, cache_ttl: float = 60.0) -> None:
        self.store = store
        self.cache_ttl = cache_ttl
        self._cache: dict[str, tuple[str, float]] = {}

    async def resolve(self, hostname: str) -> str | None:
        """Return the owning tenant id of a verified domain, else None.

        The hostname goes through the same normalization as registration, so
        ``https://www.App.Acme.com/login`` resolves like ``app.acme.com``.
        """
        host = normalize_hostname(hostname)
        if not host:
            return None

        cached = self._cache.get(host)
        if cached is not None:
            tenant_id, expires = cached
            if time.monotonic() < expires:
                return tenant_id
            del self._cache[host]

        record = await self.store.get_by_hostname(host)
        if record is None or not record.verified:
            return None

        if self.cache_ttl > 0:
            self._cache[host] = (record.tenant_id, time.monotonic() + self.cache_ttl)
        logger.debug("Resolved custom domain", hostname=host, tenant_id=record.tenant_id)
        return record.tenant_id

    def invalidate(self, hostname: str | None = None) -> None:
        """Drop one cached hostname, or the whole cache."""
        if hostname is None:
            self._cache.clear()
        else:
            self._cache.pop(normalize_hostname(hostname), None)
