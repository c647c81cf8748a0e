"""
InvoiceModel / InvoiceLineModel -- persisted guest invoices.

Invariants enforced:
    - invoice_number is unique (uq_invoices_invoice_number).
    - currency is fixed at creation and references a registered currency.
    - total = subtotal - discount_amount + service_charge_amount + tax_amount
      (maintained by the lifecycle manager; frozen after issue by the
      immutability listeners).
    - amount_paid is a cached projection of payment_applications and is
      only written through InvoiceLifecycleManager.record_payment, which the
      reconciliation service calls.
    - version is an optimistic lock counter bumped on every UPDATE.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.dtos import Invoice, InvoiceLine, InvoiceStatus
from billing_kernel.domain.values import ZERO

# Fields fixed once an invoice leaves draft.
FROZEN_INVOICE_FIELDS: tuple[str, ...] = (
    "invoice_number",
    "guest_ref",
    "currency",
    "subtotal",
    "discount_percentage",
    "discount_amount",
    "service_charge_percentage",
    "service_charge_amount",
    "tax_rate",
    "tax_amount",
    "total",
    "issued_date",
    "due_date",
)


class InvoiceModel(TrackedBase):
    """
    ORM model for guest invoices.

    Maps to the ``Invoice`` frozen dataclass.  Lines live in
    ``invoice_lines`` via the ``lines`` relationship.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        Index("idx_invoices_guest_ref", "guest_ref"),
        Index("idx_invoices_status", "status"),
        Index("idx_invoices_due_date", "due_date"),
        Index("idx_invoices_currency", "currency"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    guest_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), ForeignKey("currencies.code"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.DRAFT.value
    )

    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    # Overrides: None resolves to the hotel setting at issue time.
    discount_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    service_charge_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    service_charge_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    tax_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    issued_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[list["InvoiceLineModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceLineModel.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_enum(self) -> InvoiceStatus:
        return InvoiceStatus(self.status)

    @property
    def outstanding(self) -> Decimal:
        return max(self.total - self.amount_paid, ZERO)

    def to_dto(self) -> Invoice:
        """Convert ORM model to frozen dataclass."""
        return Invoice(
            id=self.id,
            invoice_number=self.invoice_number,
            guest_ref=self.guest_ref,
            currency=self.currency,
            status=self.status_enum,
            lines=tuple(line.to_dto() for line in self.lines),
            subtotal=self.subtotal,
            discount_percentage=self.discount_percentage,
            discount_amount=self.discount_amount,
            service_charge_percentage=self.service_charge_percentage,
            service_charge_amount=self.service_charge_amount,
            tax_rate=self.tax_rate,
            tax_amount=self.tax_amount,
            total=self.total,
            amount_paid=self.amount_paid,
            issued_date=self.issued_date,
            due_date=self.due_date,
            cancelled_at=self.cancelled_at,
            cancellation_reason=self.cancellation_reason,
            notes=self.notes,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number} {self.status} {self.total} {self.currency}>"


class InvoiceLineModel(TrackedBase):
    """ORM model for a line on a guest invoice."""

    __tablename__ = "invoice_lines"

    __table_args__ = (
        UniqueConstraint(
            "invoice_id", "line_number", name="uq_invoice_lines_invoice_line_number"
        ),
        Index("idx_invoice_lines_invoice_id", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped[InvoiceModel] = relationship(back_populates="lines")

    def to_dto(self) -> InvoiceLine:
        return InvoiceLine(
            line_number=self.line_number,
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            amount=self.amount,
        )
