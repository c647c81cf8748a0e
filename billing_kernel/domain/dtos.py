"""
Billing Domain DTOs (``billing_kernel.domain.dtos``).

Responsibility
--------------
Frozen dataclass value objects for invoices, payments and payment
applications as they leave the kernel.  ORM rows are converted with their
``to_dto()`` methods; callers never hold live ORM instances.

Invariants enforced
-------------------
* All DTOs are ``frozen=True``.
* All monetary fields are ``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_kernel.domain.values import ZERO


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""

    DRAFT = "draft"
    ISSUED = "issued"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)

    @property
    def accepts_payment(self) -> bool:
        return self in (
            InvoiceStatus.ISSUED,
            InvoiceStatus.PARTIALLY_PAID,
            InvoiceStatus.OVERDUE,
        )


class PaymentMethod(str, Enum):
    """How the guest paid."""

    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    ONLINE = "online"
    OTHER = "other"


@dataclass(frozen=True)
class InvoiceLine:
    """A single line on a guest invoice."""
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal


@dataclass(frozen=True)
class Invoice:
    """A guest invoice with its frozen (once issued) totals."""
    id: UUID
    invoice_number: str
    guest_ref: str
    currency: str
    status: InvoiceStatus
    lines: tuple[InvoiceLine, ...]
    subtotal: Decimal
    discount_percentage: Decimal | None
    discount_amount: Decimal
    service_charge_percentage: Decimal | None
    service_charge_amount: Decimal
    tax_rate: Decimal | None
    tax_amount: Decimal
    total: Decimal
    amount_paid: Decimal
    issued_date: date | None = None
    due_date: date | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    notes: str | None = None
    version: int = 1

    @property
    def balance(self) -> Decimal:
        """Outstanding amount, never negative."""
        return max(self.total - self.amount_paid, ZERO)


@dataclass(frozen=True)
class Payment:
    """An immutable ledger entry for money received."""
    id: UUID
    ledger_sequence: int
    amount: Decimal
    currency: str
    method: PaymentMethod
    guest_ref: str
    is_deposit: bool
    paid_at: datetime
    invoice_id: UUID | None = None
    reference: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PaymentApplication:
    """Record of a payment consumed by an invoice.

    The two rates are the registry values at application time, kept so the
    conversion can be re-derived after later rate changes.
    """
    id: UUID
    payment_id: UUID
    invoice_id: UUID
    applied_amount: Decimal
    invoice_currency: str
    payment_amount: Decimal
    payment_currency: str
    payment_currency_rate: Decimal
    invoice_currency_rate: Decimal
    applied_at: datetime


@dataclass(frozen=True)
class InvoiceBalance:
    invoice_id: UUID
    invoice_number: str
    currency: str
    status: InvoiceStatus
    total: Decimal
    amount_paid: Decimal
    outstanding: Decimal
    due_date: date | None = None


@dataclass(frozen=True)
class DepositReconciliation:
    """Outcome of attaching a guest's orphan deposits to one invoice."""
    invoice_id: UUID
    applied: tuple[PaymentApplication, ...]
    skipped_payment_ids: tuple[UUID, ...]
    final_status: InvoiceStatus

    @property
    def applied_total(self) -> Decimal:
        return sum((a.applied_amount for a in self.applied), ZERO)
