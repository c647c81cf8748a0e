"""
PaymentSelector -- read models over the payment ledger.

Ordering everywhere is capture order: ``(paid_at, ledger_sequence)``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.dtos import Payment, PaymentApplication, PaymentMethod
from billing_kernel.domain.values import ZERO
from billing_kernel.exceptions import PaymentNotFoundError
from billing_kernel.models.payment import PaymentApplicationModel, PaymentModel
from billing_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PaymentStats:
    """Ledger aggregates; money totals are per currency, never mixed."""
    total_count: int
    count_by_method: dict[PaymentMethod, int] = field(default_factory=dict)
    totals_by_method: dict[PaymentMethod, dict[str, Decimal]] = field(default_factory=dict)
    deposit_totals: dict[str, Decimal] = field(default_factory=dict)
    settlement_totals: dict[str, Decimal] = field(default_factory=dict)
    unapplied_count: int = 0


def _capture_order(row: PaymentModel):
    return (row.paid_at, row.ledger_sequence)


class PaymentSelector(BaseSelector[PaymentModel]):
    """Read-only queries over payments and their applications."""

    def get(self, payment_id: UUID) -> Payment | None:
        row = self.session.get(PaymentModel, payment_id)
        return row.to_dto() if row is not None else None

    def require(self, payment_id: UUID) -> Payment:
        payment = self.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def application_for_payment(self, payment_id: UUID) -> PaymentApplication | None:
        row = self.session.execute(
            select(PaymentApplicationModel).where(
                PaymentApplicationModel.payment_id == payment_id
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def applications_for_invoice(self, invoice_id: UUID) -> tuple[PaymentApplication, ...]:
        """Applications for an invoice in the order the payments were captured."""
        rows = self.session.execute(
            select(PaymentApplicationModel, PaymentModel)
            .join(PaymentModel, PaymentModel.id == PaymentApplicationModel.payment_id)
            .where(PaymentApplicationModel.invoice_id == invoice_id)
        ).all()
        ordered = sorted(rows, key=lambda pair: _capture_order(pair[1]))
        return tuple(app.to_dto() for app, _ in ordered)

    def applied_total(self, invoice_id: UUID) -> Decimal:
        """Sum of applied amounts: the replayed value of amount_paid."""
        amounts = self.session.execute(
            select(PaymentApplicationModel.applied_amount).where(
                PaymentApplicationModel.invoice_id == invoice_id
            )
        ).scalars()
        return sum(amounts, ZERO)

    def _unapplied(self, *criteria) -> list[PaymentModel]:
        applied = select(PaymentApplicationModel.payment_id)
        rows = list(
            self.session.execute(
                select(PaymentModel).where(PaymentModel.id.not_in(applied), *criteria)
            ).scalars()
        )
        rows.sort(key=_capture_order)
        return rows

    def pending_for_invoice(self, invoice_id: UUID) -> tuple[Payment, ...]:
        """Payments naming the invoice that have not been applied yet."""
        return tuple(
            r.to_dto() for r in self._unapplied(PaymentModel.invoice_id == invoice_id)
        )

    def orphan_deposits(self, guest_ref: str) -> tuple[Payment, ...]:
        """The guest's unapplied deposits that name no invoice, oldest first."""
        return tuple(
            r.to_dto()
            for r in self._unapplied(
                PaymentModel.guest_ref == guest_ref,
                PaymentModel.is_deposit.is_(True),
                PaymentModel.invoice_id.is_(None),
            )
        )

    def list_for_guest(self, guest_ref: str) -> tuple[Payment, ...]:
        rows = list(
            self.session.execute(
                select(PaymentModel).where(PaymentModel.guest_ref == guest_ref)
            ).scalars()
        )
        rows.sort(key=_capture_order)
        return tuple(r.to_dto() for r in rows)

    def stats(self) -> PaymentStats:
        applied_ids = set(
            self.session.execute(select(PaymentApplicationModel.payment_id)).scalars()
        )
        count = 0
        unapplied = 0
        count_by_method: dict[PaymentMethod, int] = defaultdict(int)
        totals_by_method: dict[PaymentMethod, dict[str, Decimal]] = defaultdict(
            lambda: defaultdict(lambda: ZERO)
        )
        deposits: dict[str, Decimal] = defaultdict(lambda: ZERO)
        settlements: dict[str, Decimal] = defaultdict(lambda: ZERO)

        for row in self.session.execute(select(PaymentModel)).scalars():
            count += 1
            method = PaymentMethod(row.method)
            count_by_method[method] += 1
            totals_by_method[method][row.currency] += row.amount
            bucket = deposits if row.is_deposit else settlements
            bucket[row.currency] += row.amount
            if row.id not in applied_ids:
                unapplied += 1

        return PaymentStats(
            total_count=count,
            count_by_method=dict(count_by_method),
            totals_by_method={m: dict(t) for m, t in totals_by_method.items()},
            deposit_totals=dict(deposits),
            settlement_totals=dict(settlements),
            unapplied_count=unapplied,
        )
