"""
PaymentModel / PaymentApplicationModel -- the append-only payment ledger.

Invariants enforced:
    - Payments are immutable once flushed (ORM immutability listeners).
    - ledger_sequence is unique and strictly increasing in capture order.
    - A payment is consumed at most once: payment_applications.payment_id
      is unique (uq_payment_applications_payment_id).
    - invoice_id on a payment is nullable: deposits may arrive before their
      invoice exists.

Audit relevance:
    Summing applied_amount per invoice reproduces invoices.amount_paid.
    Each application snapshots the two exchange rates it used.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase
from billing_kernel.db.types import ExactDecimal
from billing_kernel.domain.dtos import Payment, PaymentApplication, PaymentMethod


class PaymentModel(TrackedBase):
    """ORM model for a captured payment or deposit."""

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("ledger_sequence", name="uq_payments_ledger_sequence"),
        Index("idx_payments_invoice_id", "invoice_id"),
        Index("idx_payments_guest_ref", "guest_ref"),
        Index("idx_payments_currency", "currency"),
    )

    ledger_sequence: Mapped[int] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), ForeignKey("currencies.code"), nullable=False
    )
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    guest_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    is_deposit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoices.id"), nullable=True
    )
    paid_at: Mapped[datetime] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def to_dto(self) -> Payment:
        return Payment(
            id=self.id,
            ledger_sequence=self.ledger_sequence,
            amount=self.amount,
            currency=self.currency,
            method=PaymentMethod(self.method),
            guest_ref=self.guest_ref,
            is_deposit=self.is_deposit,
            paid_at=self.paid_at,
            invoice_id=self.invoice_id,
            reference=self.reference,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<PaymentModel #{self.ledger_sequence} {self.amount} {self.currency}>"


class PaymentApplicationModel(TrackedBase):
    """ORM model recording that a payment was consumed by an invoice."""

    __tablename__ = "payment_applications"

    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_payment_applications_payment_id"),
        Index("idx_payment_applications_invoice_id", "invoice_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("payments.id"), nullable=False
    )
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id"), nullable=False
    )
    applied_amount: Mapped[Decimal] = mapped_column(nullable=False)
    invoice_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_currency_rate: Mapped[Decimal] = mapped_column(
        ExactDecimal(38, 18), nullable=False
    )
    invoice_currency_rate: Mapped[Decimal] = mapped_column(
        ExactDecimal(38, 18), nullable=False
    )
    applied_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> PaymentApplication:
        return PaymentApplication(
            id=self.id,
            payment_id=self.payment_id,
            invoice_id=self.invoice_id,
            applied_amount=self.applied_amount,
            invoice_currency=self.invoice_currency,
            payment_amount=self.payment_amount,
            payment_currency=self.payment_currency,
            payment_currency_rate=self.payment_currency_rate,
            invoice_currency_rate=self.invoice_currency_rate,
            applied_at=self.applied_at,
        )
