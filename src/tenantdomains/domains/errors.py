"""Exceptions raised by the custom domain subsystem.

Validation and conflict errors are raised before any state is mutated.
DNS and certificate authority failures are never raised to callers; they are
reported through ``OperationResult`` instead.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for user-correctable domain errors."""


class DomainValidationError(DomainError, ValueError):
    """A request field is missing or malformed."""


class InvalidHostnameError(DomainValidationError):
    """The submitted hostname is empty or malformed."""

    def __init__(self, hostname: str) -> None:
        self.hostname = hostname
        super().__init__(f"Invalid domain name: {hostname!r}")


class DomainConflictError(DomainError):
    """The hostname is already registered by some tenant."""

    def __init__(self, hostname: str) -> None:
        self.hostname = hostname
        super().__init__(f"Domain {hostname} is already registered")


class DomainNotFoundError(DomainError):
    """No record with this id exists for the requesting tenant."""

    def __init__(self, domain_id: str) -> None:
        self.domain_id = domain_id
        super().__init__(f"Domain {domain_id} not found")


class DomainNotVerifiedError(DomainError):
    """The operation requires a verified domain."""

    def __init__(self, hostname: str, action: str) -> None:
        self.hostname = hostname
        super().__init__(f"Domain {hostname} must be verified before {action}")


class DuplicateHostnameError(Exception):
    """Raised by a store when an insert would break hostname uniqueness."""

    def __init__(self, hostname: str) -> None:
        self.hostname = hostname
        super().__init__(hostname)


class InvariantViolationError(RuntimeError):
    """A structural invariant was observed broken. Indicates a storage defect."""
