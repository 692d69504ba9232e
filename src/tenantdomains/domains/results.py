"""Typed outcomes for operations whose failures are expected during normal use."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a DNS or certificate operation.

    ``success=False`` is a normal, retryable state (DNS propagation, CA rate
    limits), not a mechanical failure of the request.
    """

    success: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}
