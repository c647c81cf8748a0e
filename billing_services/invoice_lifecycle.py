"""
InvoiceLifecycleManager -- drafts, issue, payment transitions, overdue, cancel.

Responsibility:
    Owns every change to an invoice's status.  Each status change is looked
    up in ``INVOICE_WORKFLOW`` first and its guard, if any, is evaluated
    through ``GUARD_EVALUATORS``; an action with no matching transition, or
    whose guard does not hold, raises InvalidTransitionError.

Architecture position:
    Services -- flush-only orchestration over the charge engine and the
    kernel invoice models.  The BillingService facade owns the transaction
    and the per-invoice lock; this service takes the row lock.

Invariants enforced:
    - Drafts hold mutable lines; their totals are re-previewed on every
      change with the current hotel settings.
    - ``issue`` resolves percentages (override, else hotel setting), runs the
      charge pipeline once and freezes the result together with the
      currency and due date.  Nothing recomputes them afterwards.
    - Paid and Cancelled are terminal.
    - amount_paid only ever grows, and only through ``record_payment``.

Failure modes:
    - InvoiceNotFoundError, CurrencyNotFoundError.
    - InvoiceNotDraftError when editing or issuing a non-draft.
    - EmptyInvoiceError when issuing without lines.
    - InvoiceNotIssuedError / InvoiceCancelledError / InvoiceAlreadyPaidError
      from ``record_payment``.
    - CannotCancelPaidInvoiceError / InvoiceCancelledError from ``cancel``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy import select

from billing_engines.charges import ChargeBreakdown, ChargeCalculator, ChargeConfig, LineItem
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.dtos import Invoice, InvoiceStatus
from billing_kernel.domain.values import HUNDRED, ZERO, to_decimal
from billing_kernel.domain.workflow import INVOICE_WORKFLOW
from billing_kernel.exceptions import (
    CannotCancelPaidInvoiceError,
    CurrencyNotFoundError,
    EmptyInvoiceError,
    InvalidAmountError,
    InvalidPercentageError,
    InvalidTransitionError,
    InvoiceAlreadyPaidError,
    InvoiceCancelledError,
    InvoiceNotDraftError,
    InvoiceNotFoundError,
    InvoiceNotIssuedError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.currency import CurrencyModel
from billing_kernel.models.invoice import InvoiceLineModel, InvoiceModel
from billing_kernel.services.base import BaseService
from billing_kernel.services.sequence_service import SequenceService

logger = get_logger("services.invoice_lifecycle")


@dataclass(frozen=True)
class GuardContext:
    """What a transition guard sees: the row and the figures after the change."""

    row: InvoiceModel
    amount_paid: Decimal
    as_of: date | None = None


def _past_due(ctx: GuardContext) -> bool:
    due = ctx.row.due_date
    return (
        ctx.as_of is not None
        and due is not None
        and ctx.as_of > due
        and ctx.amount_paid < ctx.row.total
    )


GUARD_EVALUATORS: dict[str, Callable[[GuardContext], bool]] = {
    "has_lines": lambda ctx: bool(ctx.row.lines),
    "balance_settled": lambda ctx: ctx.amount_paid >= ctx.row.total,
    "balance_outstanding": lambda ctx: ctx.amount_paid < ctx.row.total,
    "past_due": _past_due,
}


class InvoiceLifecycleManager(BaseService[InvoiceModel]):
    """
    Write service for the invoice state machine.

    Contract:
        Public methods return ``Invoice`` DTOs (``mark_overdue`` returns a
        bool, ``record_payment`` the new status) and leave the session
        flushed, never committed.

    Usage:
        lifecycle = InvoiceLifecycleManager(
            session, actor_id, clock,
            charge_defaults=build_charge_config(settings),
            payment_terms_days=settings.payment_terms_days,
        )
        draft = lifecycle.create_draft("GUEST-17", "USD", lines)
        issued = lifecycle.issue(draft.id)
    """

    entity_type = "Invoice"

    def __init__(
        self,
        session,
        actor_id: UUID,
        clock: Clock | None = None,
        charge_defaults: ChargeConfig | None = None,
        payment_terms_days: int = 30,
        invoice_number_prefix: str = "INV",
    ):
        super().__init__(session, actor_id, clock)
        self._charge_defaults = charge_defaults or ChargeConfig()
        self._payment_terms_days = payment_terms_days
        self._prefix = invoice_number_prefix
        self._calculator = ChargeCalculator()
        self._sequences = SequenceService(session)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load_for_update(self, invoice_id: UUID) -> InvoiceModel:
        """Fetch the invoice row under ``SELECT ... FOR UPDATE``."""
        row = self.session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return row

    def _transition(
        self,
        row: InvoiceModel,
        action: str,
        to_state: InvoiceStatus,
        amount_paid: Decimal | None = None,
        as_of: date | None = None,
    ) -> None:
        transition = INVOICE_WORKFLOW.find(row.status, action, to_state.value)
        if transition is None:
            raise InvalidTransitionError(str(row.id), row.status, action)
        guard = transition.guard
        if guard is not None:
            ctx = GuardContext(
                row=row,
                amount_paid=row.amount_paid if amount_paid is None else amount_paid,
                as_of=as_of,
            )
            evaluator = GUARD_EVALUATORS.get(guard.name)
            if evaluator is None or not evaluator(ctx):
                logger.warning(
                    "invoice_guard_failed",
                    extra={
                        "invoice_id": str(row.id),
                        "action": action,
                        "guard": guard.name,
                        "from_status": row.status,
                        "to_status": to_state.value,
                    },
                )
                raise InvalidTransitionError(str(row.id), row.status, action, guard=guard.name)
        previous = row.status
        row.status = to_state.value
        row.updated_by_id = self.actor_id
        logger.info(
            "invoice_status_changed",
            extra={
                "invoice_id": str(row.id),
                "invoice_number": row.invoice_number,
                "action": action,
                "from_status": previous,
                "to_status": to_state.value,
            },
        )

    # -------------------------------------------------------------------------
    # Charges
    # -------------------------------------------------------------------------

    def _config_for(self, row: InvoiceModel) -> ChargeConfig:
        return self._charge_defaults.with_overrides(
            discount_percentage=row.discount_percentage,
            service_charge_percentage=row.service_charge_percentage,
            tax_rate=row.tax_rate,
        )

    def _line_items(self, row: InvoiceModel) -> list[LineItem]:
        return [
            LineItem(line.description, line.quantity, line.unit_price)
            for line in row.lines
        ]

    @staticmethod
    def _store_breakdown(row: InvoiceModel, breakdown: ChargeBreakdown) -> None:
        row.subtotal = breakdown.subtotal
        row.discount_amount = breakdown.discount_amount
        row.service_charge_amount = breakdown.service_charge_amount
        row.tax_amount = breakdown.tax_amount
        row.total = breakdown.total

    def _set_lines(self, row: InvoiceModel, items: Sequence[LineItem]) -> None:
        checked = self._calculator.validate_lines(items)
        if row.lines:
            row.lines.clear()
            # Old rows must be gone before renumbered rows are inserted.
            self._flush(row.id)
        for number, item in enumerate(checked, start=1):
            row.lines.append(
                InvoiceLineModel(
                    line_number=number,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    amount=item.amount,
                    created_by_id=self.actor_id,
                )
            )

    def _preview(self, row: InvoiceModel) -> None:
        self._store_breakdown(
            row, self._calculator.compute(self._line_items(row), self._config_for(row))
        )

    # -------------------------------------------------------------------------
    # Drafts
    # -------------------------------------------------------------------------

    def create_draft(
        self,
        guest_ref: str,
        currency: str,
        lines: Sequence[LineItem] = (),
        discount_percentage: Decimal | None = None,
        service_charge_percentage: Decimal | None = None,
        tax_rate: Decimal | None = None,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """
        Open a draft invoice in ``currency``.

        The currency is fixed here for the invoice's whole life.  Overrides
        left as ``None`` follow the hotel settings at issue time.
        """
        code = str(currency).strip().upper()
        currency_row = self.session.execute(
            select(CurrencyModel).where(CurrencyModel.code == code)
        ).scalar_one_or_none()
        if currency_row is None:
            raise CurrencyNotFoundError(code)

        row = InvoiceModel(
            invoice_number=self._next_invoice_number(),
            guest_ref=guest_ref,
            currency=code,
            status=InvoiceStatus.DRAFT.value,
            discount_percentage=_optional_percentage("discount_percentage", discount_percentage),
            service_charge_percentage=_optional_percentage(
                "service_charge_percentage", service_charge_percentage
            ),
            tax_rate=_optional_percentage("tax_rate", tax_rate),
            amount_paid=ZERO,
            due_date=due_date,
            notes=notes,
            created_by_id=self.actor_id,
        )
        # Rejects out-of-range overrides before anything is written.
        self._config_for(row).validated()
        self.session.add(row)
        self._set_lines(row, lines)
        self._preview(row)
        self._flush(row.id)

        logger.info(
            "invoice_draft_created",
            extra={
                "invoice_id": str(row.id),
                "invoice_number": row.invoice_number,
                "guest_ref": guest_ref,
                "currency_code": code,
                "line_count": len(row.lines),
            },
        )
        return row.to_dto()

    def replace_lines(self, invoice_id: UUID, lines: Sequence[LineItem]) -> Invoice:
        """Swap a draft's lines for ``lines`` and re-preview its totals."""
        row = self.load_for_update(invoice_id)
        if row.status_enum is not InvoiceStatus.DRAFT:
            raise InvoiceNotDraftError(str(row.id), row.status)
        self._set_lines(row, lines)
        self._preview(row)
        row.updated_by_id = self.actor_id
        self._flush(row.id)
        logger.info(
            "invoice_lines_replaced",
            extra={"invoice_id": str(row.id), "line_count": len(row.lines)},
        )
        return row.to_dto()

    def _next_invoice_number(self) -> str:
        value = self._sequences.next_value(SequenceService.INVOICE_NUMBER)
        return f"{self._prefix}-{value:06d}"

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def issue(self, invoice_id: UUID) -> Invoice:
        """Draft -> Issued, freezing totals and the due date."""
        row = self.load_for_update(invoice_id)
        if row.status_enum is not InvoiceStatus.DRAFT:
            raise InvoiceNotDraftError(str(row.id), row.status)
        if not row.lines:
            raise EmptyInvoiceError(str(row.id))

        config = self._config_for(row)
        breakdown = self._calculator.compute(self._line_items(row), config)
        self._store_breakdown(row, breakdown)
        row.discount_percentage = breakdown.config.discount_percentage
        row.service_charge_percentage = breakdown.config.service_charge_percentage
        row.tax_rate = breakdown.config.tax_rate

        today = self.clock.today()
        row.issued_date = today
        if row.due_date is None:
            row.due_date = today + timedelta(days=self._payment_terms_days)

        self._transition(row, "issue", InvoiceStatus.ISSUED)
        self._flush(row.id)

        logger.info(
            "invoice_issued",
            extra={
                "invoice_id": str(row.id),
                "invoice_number": row.invoice_number,
                "currency_code": row.currency,
                "subtotal": breakdown.subtotal,
                "discount_amount": breakdown.discount_amount,
                "service_charge_amount": breakdown.service_charge_amount,
                "tax_amount": breakdown.tax_amount,
                "total": breakdown.total,
                "due_date": row.due_date,
            },
        )
        return row.to_dto()

    @staticmethod
    def ensure_accepts_payment(row: InvoiceModel) -> None:
        """Raise the state error that forbids paying ``row``, if any."""
        status = row.status_enum
        if status is InvoiceStatus.DRAFT:
            raise InvoiceNotIssuedError(str(row.id))
        if status is InvoiceStatus.CANCELLED:
            raise InvoiceCancelledError(str(row.id))
        if status is InvoiceStatus.PAID:
            raise InvoiceAlreadyPaidError(str(row.id))

    def record_payment(self, row: InvoiceModel, applied_amount: Decimal) -> InvoiceStatus:
        """
        Credit ``applied_amount`` (invoice currency) to a locked invoice row.

        Only the reconciliation service calls this, after it has written
        the matching payment application.
        """
        self.ensure_accepts_payment(row)
        if applied_amount <= ZERO:
            raise InvalidAmountError(applied_amount)

        new_paid = row.amount_paid + applied_amount
        if new_paid >= row.total:
            target = InvoiceStatus.PAID
        elif row.status_enum is InvoiceStatus.OVERDUE:
            target = InvoiceStatus.OVERDUE
        else:
            target = InvoiceStatus.PARTIALLY_PAID

        self._transition(row, "record_payment", target, amount_paid=new_paid)
        row.amount_paid = new_paid
        self._flush(row.id)
        return target

    def mark_overdue(self, invoice_id: UUID, now: datetime | date | None = None) -> bool:
        """
        Issued/PartiallyPaid -> Overdue once past due with a balance left.

        Returns whether the status changed; every other case is a no-op.
        """
        row = self.load_for_update(invoice_id)
        if row.status_enum not in (InvoiceStatus.ISSUED, InvoiceStatus.PARTIALLY_PAID):
            return False
        if now is None:
            now = self.clock.now()
        as_of = now.date() if isinstance(now, datetime) else now
        if row.due_date is None or as_of <= row.due_date:
            return False
        if row.amount_paid >= row.total:
            return False

        self._transition(row, "mark_overdue", InvoiceStatus.OVERDUE, as_of=as_of)
        self._flush(row.id)
        return True

    def cancel(self, invoice_id: UUID, reason: str | None = None) -> Invoice:
        row = self.load_for_update(invoice_id)
        status = row.status_enum
        if status is InvoiceStatus.PAID:
            raise CannotCancelPaidInvoiceError(str(row.id))
        if status is InvoiceStatus.CANCELLED:
            raise InvoiceCancelledError(str(row.id))

        self._transition(row, "cancel", InvoiceStatus.CANCELLED)
        row.cancelled_at = self.clock.now()
        row.cancellation_reason = reason
        self._flush(row.id)
        return row.to_dto()


def _optional_percentage(field: str, value: Decimal | int | str | None) -> Decimal | None:
    if value is None:
        return None
    try:
        return to_decimal(value)
    except ValueError as e:
        raise InvalidPercentageError(field, value, ZERO, HUNDRED) from e


__all__ = ["GUARD_EVALUATORS", "GuardContext", "InvoiceLifecycleManager"]
