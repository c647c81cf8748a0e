"""
PaymentReconciliationService -- the payment ledger and its application to invoices.

Responsibility:
    Captures payments into the append-only ledger and applies them to
    invoices: converts into the invoice currency, guards against
    overpayment, writes the immutable application record and hands the
    credited amount to the lifecycle manager.

Architecture position:
    Services -- flush-only orchestration over the conversion engine, the
    lifecycle manager and the kernel payment models.  The BillingService
    facade holds the per-invoice lock and owns the transaction.

Invariants enforced:
    - A payment is consumed at most once (checked here, backed by the
      unique index on payment_applications.payment_id).
    - Payments naming an invoice are applied in capture order
      (paid_at, then ledger_sequence).
    - The overpayment check runs before anything is written.
    - invoices.amount_paid == sum of applied_amount, reproducible at any
      time with ``replay_amount_paid``.

Failure modes:
    - InvalidAmountError, InvalidPaymentMethodError, CurrencyNotFoundError
      on capture.
    - PaymentNotFoundError, InvoiceNotFoundError,
      DuplicatePaymentApplicationError, PaymentOutOfOrderError,
      PaymentInvoiceMismatchError, PaymentGuestMismatchError,
      OverpaymentNotAllowedError, plus the lifecycle's state errors on apply.

Audit relevance:
    Each application snapshots both exchange rates, so the conversion can be
    re-derived after later rate changes.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from billing_engines.conversion import CurrencyConverter
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.dtos import (
    DepositReconciliation,
    InvoiceStatus,
    Payment,
    PaymentApplication,
    PaymentMethod,
)
from billing_kernel.domain.values import ZERO, round_money, to_decimal
from billing_kernel.exceptions import (
    DuplicatePaymentApplicationError,
    InvalidAmountError,
    InvalidPaymentMethodError,
    InvoiceNotFoundError,
    OverpaymentNotAllowedError,
    PaymentGuestMismatchError,
    PaymentInvoiceMismatchError,
    PaymentNotFoundError,
    PaymentOutOfOrderError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import InvoiceModel
from billing_kernel.models.payment import PaymentApplicationModel, PaymentModel
from billing_kernel.selectors.payment_selector import PaymentSelector
from billing_kernel.services.base import BaseService
from billing_kernel.services.currency_registry import CurrencyRegistryService
from billing_kernel.services.sequence_service import SequenceService
from billing_services.invoice_lifecycle import InvoiceLifecycleManager

logger = get_logger("services.reconciliation")


def _capture_key(payment: PaymentModel | Payment):
    return (payment.paid_at, payment.ledger_sequence)


class PaymentReconciliationService(BaseService[PaymentModel]):
    """
    Write service for payment capture and application.

    Contract:
        Returns ``Payment`` / ``PaymentApplication`` /
        ``DepositReconciliation`` DTOs and leaves the session flushed,
        never committed.

    Guarantees:
        - A rejected application writes nothing.
        - After a successful application the invoice's status reflects
          its new balance.
    """

    entity_type = "Payment"

    def __init__(
        self,
        session,
        actor_id: UUID,
        clock: Clock | None = None,
        lifecycle: InvoiceLifecycleManager | None = None,
        overpayment_tolerance: Decimal = ZERO,
    ):
        super().__init__(session, actor_id, clock)
        self._lifecycle = lifecycle or InvoiceLifecycleManager(session, actor_id, self.clock)
        self._registry = CurrencyRegistryService(session, actor_id, self.clock)
        self._payments = PaymentSelector(session)
        self._sequences = SequenceService(session)
        self._tolerance = to_decimal(overpayment_tolerance)

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    def record_payment(
        self,
        amount: Decimal | int | str,
        currency: str,
        method: PaymentMethod | str,
        guest_ref: str,
        invoice_id: UUID | None = None,
        is_deposit: bool = False,
        paid_at: datetime | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> Payment:
        """
        Append a payment to the ledger.

        The amount is rounded to the minor unit at capture.  Nothing is
        applied here; see ``apply_payment``.
        """
        try:
            value = round_money(to_decimal(amount))
        except ValueError as e:
            raise InvalidAmountError(amount) from e
        if value <= ZERO:
            raise InvalidAmountError(amount)

        try:
            payment_method = PaymentMethod(method)
        except ValueError as e:
            raise InvalidPaymentMethodError(method) from e

        code = self._registry.get(currency).code

        if invoice_id is not None:
            invoice = self.session.get(InvoiceModel, invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(str(invoice_id))
            if invoice.guest_ref != guest_ref:
                raise PaymentGuestMismatchError(guest_ref, invoice.guest_ref, str(invoice_id))

        row = PaymentModel(
            ledger_sequence=self._sequences.next_value(SequenceService.PAYMENT_LEDGER),
            amount=value,
            currency=code,
            method=payment_method.value,
            guest_ref=guest_ref,
            is_deposit=is_deposit,
            invoice_id=invoice_id,
            paid_at=paid_at or self.clock.now(),
            reference=reference,
            notes=notes,
            created_by_id=self.actor_id,
        )
        self.session.add(row)
        self._flush(row.id)

        logger.info(
            "payment_recorded",
            extra={
                "payment_id": str(row.id),
                "ledger_sequence": row.ledger_sequence,
                "amount": value,
                "currency_code": code,
                "method": payment_method.value,
                "is_deposit": is_deposit,
                "invoice_id": str(invoice_id) if invoice_id else None,
            },
        )
        return row.to_dto()

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    def _payment_row(self, payment_id: UUID) -> PaymentModel:
        row = self.session.get(PaymentModel, payment_id)
        if row is None:
            raise PaymentNotFoundError(str(payment_id))
        return row

    def _check_not_applied(self, payment: PaymentModel) -> None:
        existing = self._payments.application_for_payment(payment.id)
        if existing is not None:
            raise DuplicatePaymentApplicationError(str(payment.id), str(existing.invoice_id))

    def _check_capture_order(self, payment: PaymentModel, invoice_id: UUID) -> None:
        if payment.invoice_id != invoice_id:
            return
        this = _capture_key(payment)
        for pending in self._payments.pending_for_invoice(invoice_id):
            if pending.id != payment.id and _capture_key(pending) < this:
                raise PaymentOutOfOrderError(str(payment.id), str(pending.id), str(invoice_id))

    def _apply(self, payment: PaymentModel, invoice: InvoiceModel) -> PaymentApplication:
        """Convert, check and credit one payment against a locked invoice row."""
        if payment.guest_ref != invoice.guest_ref:
            raise PaymentGuestMismatchError(payment.guest_ref, invoice.guest_ref, str(invoice.id))
        self._lifecycle.ensure_accepts_payment(invoice)

        rates = self._registry.rate_table()
        converter = CurrencyConverter(rates)
        applied = converter.convert(payment.amount, payment.currency, invoice.currency)
        if applied <= ZERO:
            raise InvalidAmountError(applied)

        outstanding = invoice.total - invoice.amount_paid
        if invoice.amount_paid + applied > invoice.total + self._tolerance:
            raise OverpaymentNotAllowedError(
                str(invoice.id), applied, outstanding, self._tolerance, invoice.currency
            )

        application = PaymentApplicationModel(
            payment_id=payment.id,
            invoice_id=invoice.id,
            applied_amount=applied,
            invoice_currency=invoice.currency,
            payment_amount=payment.amount,
            payment_currency=payment.currency,
            payment_currency_rate=converter.rate(payment.currency),
            invoice_currency_rate=converter.rate(invoice.currency),
            applied_at=self.clock.now(),
            created_by_id=self.actor_id,
        )
        self.session.add(application)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise DuplicatePaymentApplicationError(str(payment.id), str(invoice.id)) from e

        status = self._lifecycle.record_payment(invoice, applied)

        logger.info(
            "payment_applied",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "payment_amount": payment.amount,
                "currency_code": payment.currency,
                "applied_amount": applied,
                "invoice_currency": invoice.currency,
                "amount_paid": invoice.amount_paid,
                "status": status.value,
            },
        )
        return application.to_dto()

    def apply_payment(self, payment_id: UUID, invoice_id: UUID | None = None) -> PaymentApplication:
        """
        Apply a captured payment to an invoice.

        ``invoice_id`` defaults to the invoice the payment was captured
        against; a deposit captured without one must name it here.
        """
        payment = self._payment_row(payment_id)
        target = invoice_id or payment.invoice_id
        if target is None:
            raise InvoiceNotFoundError("<none>")
        if payment.invoice_id is not None and payment.invoice_id != target:
            raise PaymentInvoiceMismatchError(
                str(payment.id), str(payment.invoice_id), str(target)
            )

        self._check_not_applied(payment)
        invoice = self._lifecycle.load_for_update(target)
        self._check_capture_order(payment, target)
        return self._apply(payment, invoice)

    def apply_pending_payments(self, invoice_id: UUID) -> tuple[PaymentApplication, ...]:
        """Apply every unapplied payment naming the invoice, oldest first."""
        self._lifecycle.load_for_update(invoice_id)
        return tuple(
            self.apply_payment(pending.id, invoice_id)
            for pending in self._payments.pending_for_invoice(invoice_id)
        )

    def reconcile_orphan_deposits(self, guest_ref: str, invoice_id: UUID) -> DepositReconciliation:
        """
        Attach the guest's unattached deposits to an issued invoice.

        Deposits are taken oldest first.  One that would overpay, or that
        comes after the invoice is already paid, stays unapplied and is
        reported in ``skipped_payment_ids``.
        """
        invoice = self._lifecycle.load_for_update(invoice_id)
        if invoice.guest_ref != guest_ref:
            raise PaymentGuestMismatchError(guest_ref, invoice.guest_ref, str(invoice_id))
        if invoice.status_enum is not InvoiceStatus.PAID:
            self._lifecycle.ensure_accepts_payment(invoice)

        applied: list[PaymentApplication] = []
        skipped: list[UUID] = []
        for deposit in self._payments.orphan_deposits(guest_ref):
            if invoice.status_enum is InvoiceStatus.PAID:
                skipped.append(deposit.id)
                continue
            try:
                applied.append(self._apply(self._payment_row(deposit.id), invoice))
            except (OverpaymentNotAllowedError, InvalidAmountError) as e:
                logger.warning(
                    "deposit_skipped",
                    extra={
                        "payment_id": str(deposit.id),
                        "invoice_id": str(invoice_id),
                        "reason": e.code,
                    },
                )
                skipped.append(deposit.id)

        result = DepositReconciliation(
            invoice_id=invoice.id,
            applied=tuple(applied),
            skipped_payment_ids=tuple(skipped),
            final_status=invoice.status_enum,
        )
        logger.info(
            "deposits_reconciled",
            extra={
                "invoice_id": str(invoice.id),
                "guest_ref": guest_ref,
                "applied_count": len(applied),
                "skipped_count": len(skipped),
                "applied_total": result.applied_total,
                "status": result.final_status.value,
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Projection checks
    # -------------------------------------------------------------------------

    def replay_amount_paid(self, invoice_id: UUID) -> Decimal:
        """amount_paid recomputed from the application ledger alone."""
        if self.session.get(InvoiceModel, invoice_id) is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return self._payments.applied_total(invoice_id)

    def verify_projection(self, invoice_id: UUID) -> bool:
        """Whether the cached amount_paid equals the replayed ledger sum."""
        invoice = self.session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        replayed = self._payments.applied_total(invoice_id)
        if invoice.amount_paid != replayed:
            logger.warning(
                "amount_paid_projection_mismatch",
                extra={
                    "invoice_id": str(invoice_id),
                    "cached": invoice.amount_paid,
                    "replayed": replayed,
                },
            )
            return False
        return True


__all__ = ["PaymentReconciliationService"]
