"""Advisory check that a custom domain routes to the platform ingress.

Read-only: the result is for display and never changes a domain record.
"""

from __future__ import annotations

import structlog

from tenantdomains.domains.results import OperationResult
from tenantdomains.domains.storage import DomainStore
from tenantdomains.domains.verification import DNSLookupError, DNSVerifier
from tenantdomains.observability.metrics import CNAME_CHECKS

logger = structlog.get_logger()


class CnameChecker:
    """Compares a domain's CNAME targets with the configured ingress target."""

    def __init__(self, store: DomainStore, dns: DNSVerifier, expected_target: str) -> None:
        self.store = store
        self.dns = dns
        self.expected_target = expected_target.rstrip(".").lower()

    async def check(self, domain_id: str) -> OperationResult:
        record = await self.store.get(domain_id)
        if record is None:
            return OperationResult(False, "Domain not found")

        try:
            targets = await self.dns.resolve_cname(record.hostname)
        except DNSLookupError as e:
            CNAME_CHECKS.labels(outcome="lookup_failed").inc()
            logger.info("CNAME lookup failed", hostname=record.hostname, error=str(e))
            return OperationResult(False, f"CNAME lookup failed: {e}")

        if self.expected_target in {target.lower() for target in targets}:
            CNAME_CHECKS.labels(outcome="ok").inc()
            return OperationResult(True, "CNAME configured correctly")

        CNAME_CHECKS.labels(outcome="mismatch").inc()
        current = ", ".join(targets) or "not set"
        return OperationResult(
            False, f"CNAME should point to {self.expected_target}. Current: {current}"
        )
