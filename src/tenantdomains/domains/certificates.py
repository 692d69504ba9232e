"""TLS certificate lifecycle for verified custom domains.

State machine of ``DomainRecord.ssl_status``:

    PENDING ──provision──▶ PROVISIONING ──ok──▶ ACTIVE
                                │
                                └──error──▶ FAILED
    ACTIVE / FAILED ──renew──▶ PROVISIONING

``EXPIRED`` is derived when status is read (``classify_certificate``) and is
never written back. Provisioning runs as a tracked asyncio task; at most one
run per domain is in flight, and concurrent requests for the same domain join
that run instead of starting another.

Certificate issuance itself is delegated to a ``CertificateAuthority``.
"""

from __future__ import annotations

import asyncio
import functools
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from tenantdomains.domains.errors import DomainError, DomainNotFoundError, DomainNotVerifiedError
from tenantdomains.domains.results import OperationResult
from tenantdomains.domains.storage import DomainRecord, DomainStore, SslStatus
from tenantdomains.observability.metrics import PROVISIONING_IN_FLIGHT, PROVISIONING_RUNS

logger = structlog.get_logger()

_STATUS_MESSAGES = {
    SslStatus.PENDING: "SSL certificate not yet provisioned",
    SslStatus.PROVISIONING: "SSL certificate is being provisioned",
    SslStatus.ACTIVE: "SSL certificate is active",
    SslStatus.FAILED: "SSL certificate provisioning failed",
    SslStatus.EXPIRED: "SSL certificate has expired",
}


@dataclass(frozen=True)
class IssuedCertificate:
    """A certificate returned by a certificate authority."""

    hostname: str
    expires_at: datetime
    certificate_path: str | None = None
    key_path: str | None = None


class CertificateAuthority(ABC):
    """Issues certificates for hostnames whose ownership is already proven."""

    @abstractmethod
    async def issue(self, hostname: str) -> IssuedCertificate:
        """Obtain a certificate for ``hostname``.

        Any exception is treated as a failed issuance.
        """


class SelfSignedAuthority(CertificateAuthority):
    """Issues self-signed ECDSA certificates.

    Suitable for development and for deployments that terminate public TLS
    elsewhere. Certificates and keys are written to ``certs_dir`` as
    ``<hostname>.pem`` and ``<hostname>.key``.
    """

    def __init__(self, certs_dir: str | Path = "certs", validity_days: int = 90) -> None:
        self.certs_dir = Path(certs_dir)
        self.validity_days = validity_days

    async def issue(self, hostname: str) -> IssuedCertificate:
        return await asyncio.to_thread(self._issue, hostname)

    def _issue(self, hostname: str) -> IssuedCertificate:
        key = ec.generate_private_key(ec.SECP256R1())
        now = datetime.now(UTC)
        expires_at = now + timedelta(days=self.validity_days)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])

        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=5))
            .not_valid_after(expires_at)
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(hostname)]), critical=False)
            .sign(key, hashes.SHA256())
        )

        self.certs_dir.mkdir(parents=True, exist_ok=True)
        cert_path = self.certs_dir / f"{hostname}.pem"
        key_path = self.certs_dir / f"{hostname}.key"
        key_path.write_bytes(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )
        key_path.chmod(0o600)
        cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))

        return IssuedCertificate(
            hostname=hostname,
            expires_at=expires_at,
            certificate_path=str(cert_path),
            key_path=str(key_path),
        )


@dataclass(frozen=True)
class CertificateStatus:
    """Certificate status as reported to callers."""

    status: SslStatus
    expires_at: datetime | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize as ``{status, expiresAt?, message}``."""
        data: dict[str, Any] = {"status": self.status.value}
        if self.expires_at is not None:
            data["expiresAt"] = (
                self.expires_at.astimezone(UTC)
                .isoformat(timespec="milliseconds")
                .replace("+00:00", "Z")
            )
        data["message"] = self.message
        return data


def classify_certificate(
    status: SslStatus,
    expires_at: datetime | None,
    now: datetime,
    warning_days: int = 30,
) -> CertificateStatus:
    """Derive the reported status from stored state.

    An ``ACTIVE`` certificate past its expiry is reported as ``EXPIRED``; one
    expiring within ``warning_days`` stays ``ACTIVE`` with a countdown message.
    """
    if status is SslStatus.ACTIVE and expires_at is not None:
        days_left = math.ceil((expires_at - now).total_seconds() / 86400)
        if days_left <= 0:
            return CertificateStatus(SslStatus.EXPIRED, expires_at, _STATUS_MESSAGES[SslStatus.EXPIRED])
        if days_left <= warning_days:
            return CertificateStatus(
                SslStatus.ACTIVE, expires_at, f"SSL certificate expires in {days_left} days"
            )
    return CertificateStatus(status, expires_at, _STATUS_MESSAGES[status])


class CertificateManager:
    """Drives certificate provisioning and renewal for domain records.

    Provisioning is serialized per domain id: ``provision``, ``renew`` and
    ``dispatch`` for an id that already has a run in flight return that run.
    Runs for different domains proceed in parallel, with at most
    ``max_concurrent`` issuances talking to the authority at once.
    """

    def __init__(
        self,
        store: DomainStore,
        authority: CertificateAuthority,
        warning_days: int = 30,
        provision_timeout: float = 120.0,
        max_concurrent: int = 4,
    ) -> None:
        self.store = store
        self.authority = authority
        self.warning_days = warning_days
        self.provision_timeout = provision_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._inflight: dict[str, asyncio.Task[OperationResult]] = {}

    def dispatch(self, domain_id: str) -> asyncio.Task[OperationResult]:
        """Start provisioning in the background, or return the run in flight.

        Must be called from a running event loop. The caller does not need to
        await the task; its outcome is persisted and logged either way.
        """
        task = self._inflight.get(domain_id)
        if task is not None:
            logger.debug("Joining in-flight provisioning", domain_id=domain_id)
            return task

        task = asyncio.create_task(self._run(domain_id), name=f"provision-{domain_id}")
        self._inflight[domain_id] = task
        PROVISIONING_IN_FLIGHT.inc()
        task.add_done_callback(functools.partial(self._finished, domain_id))
        return task

    async def provision(self, domain_id: str) -> OperationResult:
        """Provision a certificate and wait for the outcome.

        Raises:
            DomainNotFoundError: If the domain does not exist.
            DomainNotVerifiedError: If DNS ownership has not been verified.
        """
        # Shielded: a caller giving up does not cancel the run.
        return await asyncio.shield(self.dispatch(domain_id))

    async def renew(self, domain_id: str) -> OperationResult:
        """Renew a certificate. Renewal is a fresh provisioning run."""
        return await self.provision(domain_id)

    def is_provisioning(self, domain_id: str) -> bool:
        return domain_id in self._inflight

    def in_flight(self) -> list[str]:
        return list(self._inflight)

    async def drain(self) -> None:
        """Wait for every in-flight provisioning run to finish."""
        while self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)

    async def check_status(self, domain_id: str, now: datetime | None = None) -> CertificateStatus:
        """Report certificate status, deriving expiry without writing it."""
        record = await self.store.get(domain_id)
        if record is None:
            return CertificateStatus(SslStatus.PENDING, None, "Domain not found")
        return classify_certificate(
            record.ssl_status,
            record.ssl_expires_at,
            now or datetime.now(UTC),
            self.warning_days,
        )

    async def due_for_renewal(self, now: datetime | None = None) -> list[DomainRecord]:
        """Active certificates that are expired or inside the warning window."""
        now = now or datetime.now(UTC)
        horizon = now + timedelta(days=self.warning_days)
        return [
            record
            for record in await self.store.list_all()
            if record.verified
            and record.ssl_status is SslStatus.ACTIVE
            and record.ssl_expires_at is not None
            and record.ssl_expires_at <= horizon
        ]

    async def renew_due(self, now: datetime | None = None) -> dict[str, OperationResult]:
        """Renew every certificate returned by ``due_for_renewal``."""
        due = await self.due_for_renewal(now)
        if not due:
            return {}

        logger.info("Renewing certificates", count=len(due))
        outcomes = await asyncio.gather(
            *(self.renew(record.id) for record in due), return_exceptions=True
        )
        results: dict[str, OperationResult] = {}
        for record, outcome in zip(due, outcomes, strict=True):
            if isinstance(outcome, DomainError):
                results[record.id] = OperationResult(False, str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[record.id] = outcome
        return results

    async def _run(self, domain_id: str) -> OperationResult:
        record = await self.store.get(domain_id)
        if record is None:
            raise DomainNotFoundError(domain_id)
        if not record.verified:
            raise DomainNotVerifiedError(record.hostname, "SSL provisioning")

        await self.store.update(domain_id, ssl_status=SslStatus.PROVISIONING)
        logger.info("Provisioning certificate", hostname=record.hostname)

        try:
            async with self._semaphore:
                issued = await asyncio.wait_for(
                    self.authority.issue(record.hostname), self.provision_timeout
                )
        except Exception as e:
            detail = str(e) or type(e).__name__
            PROVISIONING_RUNS.labels(outcome="failed").inc()
            logger.warning(
                "Certificate provisioning failed", hostname=record.hostname, error=detail
            )
            await self.store.update(domain_id, ssl_status=SslStatus.FAILED)
            return OperationResult(False, f"SSL provisioning failed: {detail}")

        updated = await self.store.update(
            domain_id,
            ssl_status=SslStatus.ACTIVE,
            ssl_expires_at=issued.expires_at,
            certificate_path=issued.certificate_path,
        )
        if updated is None:
            return OperationResult(False, "Domain not found")

        PROVISIONING_RUNS.labels(outcome="active").inc()
        logger.info(
            "Certificate active",
            hostname=record.hostname,
            expires_at=issued.expires_at.isoformat(),
        )
        return OperationResult(True, "SSL certificate provisioned successfully")

    def _finished(self, domain_id: str, task: asyncio.Task[OperationResult]) -> None:
        if self._inflight.get(domain_id) is task:
            del self._inflight[domain_id]
        PROVISIONING_IN_FLIGHT.dec()

        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, DomainError):
            logger.warning("Provisioning rejected", domain_id=domain_id, error=str(exc))
        elif exc is not None:
            logger.error("Provisioning run crashed", domain_id=domain_id, error=str(exc))


async def run_renewal_loop(manager: CertificateManager, interval: float = 3600.0) -> None:
    """Renew due certificates every ``interval`` seconds until cancelled."""
    logger.info("Starting certificate renewal loop", interval=interval)

    while True:
        try:
            results = await manager.renew_due()
            renewed = sum(1 for result in results.values() if result.success)
            if results:
                logger.info("Renewal sweep completed", renewed=renewed, attempted=len(results))
        except Exception as e:
            logger.error("Renewal sweep error", error=str(e))

        await asyncio.sleep(interval)


def start_renewal_task(manager: CertificateManager, interval: float = 3600.0) -> asyncio.Task[None]:
    """Start the renewal loop in the background.

    Returns:
        asyncio Task that can be cancelled.
    """
    return asyncio.create_task(run_renewal_loop(manager, interval))
