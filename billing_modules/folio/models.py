"""
Folio result types.

Every ``BillingService`` operation returns an ``OperationResult``: either a
success carrying the operation's value, or a rejection carrying the
kernel error's code, kind, message and structured fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from billing_kernel.exceptions import BillingKernelError, ErrorKind


class OperationStatus(str, Enum):
    """Outcome of a folio operation."""

    SUCCEEDED = "succeeded"
    REJECTED = "rejected"


@dataclass(frozen=True)
class OperationResult:
    """Result of a folio operation."""

    operation: str
    status: OperationStatus
    value: Any = None
    error_code: str | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == OperationStatus.SUCCEEDED

    @classmethod
    def success(cls, operation: str, value: Any = None) -> OperationResult:
        return cls(operation=operation, status=OperationStatus.SUCCEEDED, value=value)

    @classmethod
    def failure(cls, operation: str, error: BillingKernelError) -> OperationResult:
        return cls(
            operation=operation,
            status=OperationStatus.REJECTED,
            error_code=error.code,
            error_kind=error.kind,
            message=str(error),
            details=error.details,
        )
