"""DNS verification for custom domain ownership.

Ownership is proven by a TXT record carrying the domain's verification token:

    _pmo-verify.app.acme.com  TXT  "pmo-verify-3f9c0d..."

A missing or mismatched record is the expected state while DNS propagates, so
every lookup outcome is reported as an ``OperationResult``; the caller simply
retries later.
"""

from __future__ import annotations

import asyncio
import sys
import weakref
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import aiodns
import pycares
import structlog

from tenantdomains.domains.hostnames import txt_record_name
from tenantdomains.domains.results import OperationResult
from tenantdomains.domains.storage import DomainStore, SslStatus
from tenantdomains.observability.metrics import VERIFICATION_ATTEMPTS

logger = structlog.get_logger()

_NOT_FOUND_CODES = frozenset({aiodns.error.ARES_ENOTFOUND, aiodns.error.ARES_ENODATA})


class DNSLookupError(Exception):
    """A DNS lookup failed for a transient reason (timeout, SERVFAIL, network)."""


class NameNotFoundError(DNSLookupError):
    """The queried name does not exist or has no records of the requested type."""


def txt_token_matches(values: Iterable[str], token: str) -> bool:
    """Return True if any TXT value is exactly the token.

    No case-folding and no trimming: the token is a secret, not a hostname.
    """
    return any(value == token for value in values)


def _answers(result: pycares.DNSResult | None) -> list[Any]:
    """Record data of every answer in a ``query_dns`` result."""
    if result is None:
        return []
    return [rec.data for rec in result.answer]


def _as_text(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class DNSVerifier:
    """Resolves TXT and CNAME records with a bounded timeout.

    Raises ``NameNotFoundError`` when the name does not exist and
    ``DNSLookupError`` for every other resolver failure, including timeouts.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        nameservers: list[str] | None = None,
    ) -> None:
        """Initialize DNS verifier.

        Args:
            timeout: Upper bound for a single lookup, in seconds.
            nameservers: Nameservers to query instead of the system resolver.
        """
        self.timeout = timeout
        self.nameservers = nameservers or None
        self._resolver: aiodns.DNSResolver | None = None

    def _get_resolver(self) -> aiodns.DNSResolver:
        """Get or create DNS resolver with proper event loop handling."""
        if self._resolver is None:
            if sys.platform == "win32":
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    loop = asyncio.new_event_loop()
                self._resolver = aiodns.DNSResolver(
                    nameservers=self.nameservers, timeout=self.timeout, loop=loop
                )
            else:
                self._resolver = aiodns.DNSResolver(
                    nameservers=self.nameservers, timeout=self.timeout
                )
        return self._resolver

    async def _query(self, name: str, qtype: str) -> list[Any]:
        resolver = self._get_resolver()
        try:
            result = await asyncio.wait_for(resolver.query_dns(name, qtype), self.timeout)
        except TimeoutError as e:
            raise DNSLookupError(f"timed out after {self.timeout:g}s") from e
        except aiodns.error.DNSError as e:
            code = e.args[0] if e.args else None
            detail = e.args[1] if len(e.args) > 1 else str(e)
            if code in _NOT_FOUND_CODES:
                raise NameNotFoundError(detail) from e
            raise DNSLookupError(detail) from e
        return _answers(result)

    async def resolve_txt(self, name: str) -> list[str]:
        """Return every TXT value published at ``name``."""
        records = await self._query(name, "TXT")
        return [_as_text(rec.data) for rec in records if isinstance(rec, pycares.TXTRecordData)]

    async def resolve_cname(self, name: str) -> list[str]:
        """Return the CNAME targets of ``name`` without trailing dots."""
        records = await self._query(name, "CNAME")
        return [
            rec.cname.rstrip(".")
            for rec in records
            if isinstance(rec, pycares.CNAMERecordData)
        ]


class OwnershipVerifier:
    """Proves a tenant controls DNS for a claimed hostname.

    On the first successful match the record is marked verified and moved to
    ``PROVISIONING`` in one write, then ``on_verified`` is called with the
    domain id to start certificate provisioning without waiting for it.
    """

    def __init__(
        self,
        store: DomainStore,
        dns: DNSVerifier,
        on_verified: Callable[[str], Any] | None = None,
        txt_record_prefix: str = "_pmo-verify",
    ) -> None:
        self.store = store
        self.dns = dns
        self.on_verified = on_verified
        self.txt_record_prefix = txt_record_prefix
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, domain_id: str) -> asyncio.Lock:
        lock = self._locks.get(domain_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[domain_id] = lock
        return lock

    async def verify_ownership(self, domain_id: str) -> OperationResult:
        """Check the TXT record for a domain and mark it verified on a match.

        Safe to call repeatedly: once verified, it returns success without
        touching the record or starting another provisioning run.
        """
        # Serialize per domain so verified_at is written exactly once.
        async with self._lock_for(domain_id):
            record = await self.store.get(domain_id)
            if record is None:
                return OperationResult(False, "Domain not found")

            if record.verified:
                VERIFICATION_ATTEMPTS.labels(outcome="already_verified").inc()
                return OperationResult(True, "Domain already verified")

            name = txt_record_name(record.hostname, self.txt_record_prefix)
            try:
                values = await self.dns.resolve_txt(name)
            except NameNotFoundError:
                VERIFICATION_ATTEMPTS.labels(outcome="not_found").inc()
                logger.info("Verification TXT record not found", hostname=record.hostname)
                return OperationResult(
                    False, "TXT record not found. Please check your DNS configuration."
                )
            except DNSLookupError as e:
                VERIFICATION_ATTEMPTS.labels(outcome="lookup_failed").inc()
                logger.warning("DNS lookup failed", hostname=record.hostname, error=str(e))
                return OperationResult(False, f"DNS lookup failed: {e}")

            if not txt_token_matches(values, record.verify_token):
                VERIFICATION_ATTEMPTS.labels(outcome="mismatch").inc()
                return OperationResult(
                    False, "TXT record not found. DNS propagation may still be in progress."
                )

            updated = await self.store.update(
                domain_id,
                verified=True,
                verified_at=datetime.now(UTC),
                ssl_status=SslStatus.PROVISIONING,
            )
            if updated is None:
                # Removed while the lookup was in flight.
                return OperationResult(False, "Domain not found")

        VERIFICATION_ATTEMPTS.labels(outcome="verified").inc()
        logger.info("Domain verified", hostname=updated.hostname, tenant_id=updated.tenant_id)

        if self.on_verified is not None:
            self.on_verified(domain_id)

        return OperationResult(True, "Domain verified successfully")
