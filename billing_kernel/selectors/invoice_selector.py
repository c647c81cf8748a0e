"""
InvoiceSelector -- read models over guest invoices.

Provides single-invoice lookups and balances, the overdue sweep's candidate
list, and the front-office statistics (count, total, paid and outstanding
per status and per currency).  Sums are computed in Python so results are
exact on every backend.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.dtos import Invoice, InvoiceBalance, InvoiceStatus
from billing_kernel.domain.values import ZERO
from billing_kernel.exceptions import InvoiceNotFoundError
from billing_kernel.models.invoice import InvoiceModel
from billing_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class CurrencyTotals:
    count: int = 0
    total: Decimal = ZERO
    paid: Decimal = ZERO
    outstanding: Decimal = ZERO


@dataclass(frozen=True)
class InvoiceStats:
    """Aggregates across all invoices.

    Cancelled and draft invoices are counted by status but excluded from
    the per-currency money totals.
    """
    total_count: int
    by_status: dict[InvoiceStatus, int] = field(default_factory=dict)
    by_currency: dict[str, CurrencyTotals] = field(default_factory=dict)


def _to_balance(row: InvoiceModel) -> InvoiceBalance:
    return InvoiceBalance(
        invoice_id=row.id,
        invoice_number=row.invoice_number,
        currency=row.currency,
        status=row.status_enum,
        total=row.total,
        amount_paid=row.amount_paid,
        outstanding=row.outstanding,
        due_date=row.due_date,
    )


class InvoiceSelector(BaseSelector[InvoiceModel]):
    """Read-only queries over invoices."""

    def get(self, invoice_id: UUID) -> Invoice | None:
        row = self.session.get(InvoiceModel, invoice_id)
        return row.to_dto() if row is not None else None

    def require(self, invoice_id: UUID) -> Invoice:
        invoice = self.get(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def get_by_number(self, invoice_number: str) -> Invoice | None:
        row = self.session.execute(
            select(InvoiceModel).where(InvoiceModel.invoice_number == invoice_number)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def balance(self, invoice_id: UUID) -> InvoiceBalance:
        """Total, paid and outstanding amounts in the invoice's currency."""
        row = self.session.get(InvoiceModel, invoice_id)
        if row is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return _to_balance(row)

    def list_for_guest(self, guest_ref: str) -> tuple[Invoice, ...]:
        rows = self.session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.guest_ref == guest_ref)
            .order_by(InvoiceModel.invoice_number)
        ).scalars()
        return tuple(r.to_dto() for r in rows)

    def list_by_status(self, status: InvoiceStatus) -> tuple[Invoice, ...]:
        rows = self.session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.status == status.value)
            .order_by(InvoiceModel.invoice_number)
        ).scalars()
        return tuple(r.to_dto() for r in rows)

    def overdue_candidates(self, as_of: date) -> tuple[InvoiceBalance, ...]:
        """Issued or partially paid invoices whose due date is before ``as_of``.

        The sweep calls ``mark_overdue`` for each; that call re-checks the
        balance under the invoice lock.
        """
        rows = self.session.execute(
            select(InvoiceModel)
            .where(
                InvoiceModel.status.in_(
                    (InvoiceStatus.ISSUED.value, InvoiceStatus.PARTIALLY_PAID.value)
                ),
                InvoiceModel.due_date.is_not(None),
                InvoiceModel.due_date < as_of,
            )
            .order_by(InvoiceModel.due_date, InvoiceModel.invoice_number)
        ).scalars()
        return tuple(_to_balance(r) for r in rows if r.amount_paid < r.total)

    def stats(self) -> InvoiceStats:
        by_status: dict[InvoiceStatus, int] = defaultdict(int)
        sums: dict[str, list] = defaultdict(lambda: [0, ZERO, ZERO, ZERO])
        count = 0
        for row in self.session.execute(select(InvoiceModel)).scalars():
            count += 1
            status = row.status_enum
            by_status[status] += 1
            if status in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
                continue
            acc = sums[row.currency]
            acc[0] += 1
            acc[1] += row.total
            acc[2] += row.amount_paid
            acc[3] += row.outstanding
        return InvoiceStats(
            total_count=count,
            by_status=dict(by_status),
            by_currency={
                code: CurrencyTotals(count=c, total=t, paid=p, outstanding=o)
                for code, (c, t, p, o) in sorted(sums.items())
            },
        )
