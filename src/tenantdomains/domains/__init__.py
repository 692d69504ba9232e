"""Tenant custom domain management.

Lets a tenant attach a vanity hostname to the platform, prove ownership via a
DNS TXT record, and obtain and renew a TLS certificate for it.

Features:
- Hostname normalization and global uniqueness across tenants
- One primary domain per tenant, swapped atomically
- DNS TXT ownership verification and an advisory CNAME check
- Certificate provisioning serialized per domain, with expiry reporting and renewal
- Hostname to tenant resolution for request routing (verified domains only)

Usage:
    from tenantdomains.core.config import DomainsConfig
    from tenantdomains.domains import DomainManager

    manager = DomainManager.from_config(DomainsConfig(storage_path="domains.json"))
    record = await manager.add_domain("tenant-1", "app.acme.com")
    result = await manager.verify(record.id)
"""

from tenantdomains.domains.certificates import (
    CertificateAuthority,
    CertificateManager,
    CertificateStatus,
    IssuedCertificate,
    SelfSignedAuthority,
    classify_certificate,
    run_renewal_loop,
    start_renewal_task,
)
from tenantdomains.domains.cname import CnameChecker
from tenantdomains.domains.errors import (
    DomainConflictError,
    DomainError,
    DomainNotFoundError,
    DomainNotVerifiedError,
    DomainValidationError,
    DuplicateHostnameError,
    InvalidHostnameError,
    InvariantViolationError,
)
from tenantdomains.domains.hostnames import is_valid_hostname, normalize_hostname
from tenantdomains.domains.instructions import (
    VerificationInstructions,
    build_verification_instructions,
)
from tenantdomains.domains.manager import DomainManager
from tenantdomains.domains.registry import DomainRegistry
from tenantdomains.domains.resolver import TenantDomainResolver
from tenantdomains.domains.results import OperationResult
from tenantdomains.domains.storage import (
    DomainRecord,
    DomainStore,
    JSONDomainStore,
    SQLiteDomainStore,
    SslStatus,
    open_store,
)
from tenantdomains.domains.verification import (
    DNSLookupError,
    DNSVerifier,
    NameNotFoundError,
    OwnershipVerifier,
    txt_token_matches,
)

__all__ = [
    "DomainManager",
    "DomainRegistry",
    "DomainRecord",
    "DomainStore",
    "JSONDomainStore",
    "SQLiteDomainStore",
    "SslStatus",
    "open_store",
    "DNSVerifier",
    "OwnershipVerifier",
    "DNSLookupError",
    "NameNotFoundError",
    "txt_token_matches",
    "CnameChecker",
    "CertificateAuthority",
    "CertificateManager",
    "CertificateStatus",
    "IssuedCertificate",
    "SelfSignedAuthority",
    "classify_certificate",
    "run_renewal_loop",
    "start_renewal_task",
    "TenantDomainResolver",
    "OperationResult",
    "VerificationInstructions",
    "build_verification_instructions",
    "normalize_hostname",
    "is_valid_hostname",
    "DomainError",
    "DomainValidationError",
    "InvalidHostnameError",
    "DomainConflictError",
    "DomainNotFoundError",
    "DomainNotVerifiedError",
    "DuplicateHostnameError",
    "InvariantViolationError",
]
