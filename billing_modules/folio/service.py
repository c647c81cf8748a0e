"""
Folio Module Service - the transport-agnostic billing facade.

Thin glue layer that:
1. Takes the in-process lock for the invoice (or the currency registry)
2. Calls the registry, lifecycle and reconciliation services
3. Commits on success; rolls back and returns a rejected result on any
   billing error

All computation lives in engines.  All state changes live in services.
This service owns the transaction boundary: nothing partial ever persists.

Usage:
    service = BillingService(session, actor_id, settings, clock)
    draft = service.create_invoice("GUEST-17", "USD", [
        {"description": "Deluxe room", "quantity": "2", "unit_price": "120.00"},
    ])
    issued = service.issue_invoice(draft.value.id)
    payment = service.record_payment(
        Decimal("100"), "USD", "cash", "GUEST-17", invoice_id=draft.value.id,
    )
    service.apply_payment(payment.value.id)
"""

from __future__ import annotations

from contextlib import nullcontext
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Mapping, Sequence
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from billing_config import BillingSettings, get_active_settings
from billing_config.bridges import build_charge_config, build_currency_seeds
from billing_engines.charges import LineItem
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import PaymentMethod
from billing_kernel.domain.values import to_decimal
from billing_kernel.exceptions import (
    BillingKernelError,
    InvalidAmountError,
    InvalidLineItemError,
    OptimisticLockError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.selectors.payment_selector import PaymentSelector
from billing_kernel.services.currency_registry import CurrencyRegistryService
from billing_kernel.services.locks import invoice_lock, registry_lock
from billing_modules.folio.models import OperationResult
from billing_services.conversion_service import ConversionService
from billing_services.invoice_lifecycle import InvoiceLifecycleManager
from billing_services.reconciliation import PaymentReconciliationService

logger = get_logger("modules.folio.service")

LineInput = LineItem | Mapping[str, Any]


def _to_line_items(lines: Sequence[LineInput]) -> list[LineItem]:
    """Accept LineItems or ``{"description", "quantity", "unit_price"}`` mappings."""
    items = []
    for number, line in enumerate(lines, start=1):
        if isinstance(line, LineItem):
            items.append(line)
            continue
        try:
            items.append(
                LineItem(
                    description=str(line["description"]),
                    quantity=to_decimal(line["quantity"]),
                    unit_price=to_decimal(line["unit_price"]),
                )
            )
        except KeyError as e:
            raise InvalidLineItemError(number, f"missing field {e.args[0]!r}") from e
        except ValueError as e:
            raise InvalidLineItemError(number, str(e)) from e
    return items


def _to_amount(amount: Decimal | int | str) -> Decimal:
    try:
        return to_decimal(amount)
    except ValueError as e:
        raise InvalidAmountError(amount) from e


class BillingService:
    """
    Orchestrates billing operations through services and engines.

    Service composition:
    - CurrencyRegistryService: currencies and exchange rates
    - ConversionService: conversion and formatting against live rates
    - InvoiceLifecycleManager: drafts, issue, cancel, overdue
    - PaymentReconciliationService: ledger capture and application

    Transaction boundary: every public method is one transaction.  It
    commits on success and rolls back on failure.  Invoice operations hold
    ``invoice_lock(invoice_id)`` and registry mutations hold
    ``registry_lock()`` from the first read until after the commit.
    """

    def __init__(
        self,
        session: Session,
        actor_id: UUID,
        settings: BillingSettings | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._actor_id = actor_id
        self._settings = settings or get_active_settings()
        self._clock = clock or SystemClock()

        self._registry = CurrencyRegistryService(session, actor_id, self._clock)
        self._conversion = ConversionService(session, actor_id)
        self._lifecycle = InvoiceLifecycleManager(
            session,
            actor_id,
            self._clock,
            charge_defaults=build_charge_config(self._settings),
            payment_terms_days=self._settings.payment_terms_days,
            invoice_number_prefix=self._settings.invoice_number_prefix,
        )
        self._reconciliation = PaymentReconciliationService(
            session,
            actor_id,
            self._clock,
            lifecycle=self._lifecycle,
            overpayment_tolerance=self._settings.overpayment_tolerance,
        )
        self._invoices = InvoiceSelector(session)
        self._payments = PaymentSelector(session)

    @property
    def settings(self) -> BillingSettings:
        return self._settings

    # =========================================================================
    # Transaction boundary
    # =========================================================================

    def _run(
        self,
        operation: str,
        fn: Callable[[], Any],
        invoice_id: UUID | None = None,
        registry: bool = False,
        payment_id: UUID | None = None,
        currency_code: str | None = None,
    ) -> OperationResult:
        if invoice_id is not None:
            lock = invoice_lock(invoice_id)
        elif registry:
            lock = registry_lock()
        else:
            lock = nullcontext()

        bound = LogContext.bind(
            actor_id=self._actor_id,
            invoice_id=invoice_id,
            payment_id=payment_id,
            currency_code=currency_code.upper() if isinstance(currency_code, str) else None,
        )
        with bound, lock:
            try:
                value = fn()
                self._session.commit()
            except BillingKernelError as e:
                self._session.rollback()
                return self._rejected(operation, e)
            except StaleDataError as e:
                self._session.rollback()
                error = OptimisticLockError("Invoice", str(invoice_id))
                error.__cause__ = e
                return self._rejected(operation, error)
            except Exception:
                self._session.rollback()
                raise

        logger.debug("billing_operation_committed", extra={"operation": operation})
        return OperationResult.success(operation, value)

    @staticmethod
    def _rejected(operation: str, error: BillingKernelError) -> OperationResult:
        logger.warning(
            "billing_operation_rejected",
            extra={
                "operation": operation,
                "error_code": error.code,
                "error_kind": error.kind.value,
                "error_message": str(error),
            },
        )
        return OperationResult.failure(operation, error)

    # =========================================================================
    # Currencies
    # =========================================================================

    def seed_system_currencies(self) -> OperationResult:
        """Create the configured system currencies that do not exist yet."""
        seeds = build_currency_seeds(self._settings)
        return self._run(
            "seed_system_currencies",
            lambda: self._registry.seed_system_currencies(seeds),
            registry=True,
        )

    def create_currency(
        self,
        code: str,
        name: str,
        symbol: str,
        exchange_rate: Decimal | int | str,
        is_default: bool = False,
    ) -> OperationResult:
        return self._run(
            "create_currency",
            lambda: self._registry.create(code, name, symbol, exchange_rate, is_default=is_default),
            registry=True,
            currency_code=code,
        )

    def update_exchange_rate(self, code: str, new_rate: Decimal | int | str) -> OperationResult:
        return self._run(
            "update_exchange_rate",
            lambda: self._registry.update_rate(code, new_rate),
            registry=True,
            currency_code=code,
        )

    def set_default_currency(self, code: str) -> OperationResult:
        return self._run(
            "set_default_currency",
            lambda: self._registry.set_default(code),
            registry=True,
            currency_code=code,
        )

    def delete_currency(self, code: str) -> OperationResult:
        return self._run(
            "delete_currency",
            lambda: self._registry.delete(code),
            registry=True,
            currency_code=code,
        )

    def get_currency(self, code: str) -> OperationResult:
        return self._run(
            "get_currency", lambda: self._registry.get(code), currency_code=code
        )

    def list_currencies(self) -> OperationResult:
        return self._run("list_currencies", self._registry.list_currencies)

    # =========================================================================
    # Conversion
    # =========================================================================

    def convert_amount(
        self, amount: Decimal | int | str, from_code: str, to_code: str
    ) -> OperationResult:
        return self._run(
            "convert_amount",
            lambda: self._conversion.convert(_to_amount(amount), from_code, to_code),
        )

    def format_amount(self, amount: Decimal | int | str, code: str) -> OperationResult:
        """Always succeeds; see ``format_money`` for the fallbacks."""
        return self._run("format_amount", lambda: self._conversion.format(amount, code))

    def display_amounts(self, amount: Decimal | int | str, code: str) -> OperationResult:
        return self._run(
            "display_amounts",
            lambda: self._conversion.display_amounts(_to_amount(amount), code),
        )

    # =========================================================================
    # Invoices
    # =========================================================================

    def create_invoice(
        self,
        guest_ref: str,
        currency: str,
        lines: Sequence[LineInput] = (),
        discount_percentage: Decimal | None = None,
        service_charge_percentage: Decimal | None = None,
        tax_rate: Decimal | None = None,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> OperationResult:
        """Open a draft invoice."""
        return self._run(
            "create_invoice",
            lambda: self._lifecycle.create_draft(
                guest_ref,
                currency,
                _to_line_items(lines),
                discount_percentage=discount_percentage,
                service_charge_percentage=service_charge_percentage,
                tax_rate=tax_rate,
                due_date=due_date,
                notes=notes,
            ),
        )

    def replace_invoice_lines(self, invoice_id: UUID, lines: Sequence[LineInput]) -> OperationResult:
        return self._run(
            "replace_invoice_lines",
            lambda: self._lifecycle.replace_lines(invoice_id, _to_line_items(lines)),
            invoice_id=invoice_id,
        )

    def issue_invoice(self, invoice_id: UUID) -> OperationResult:
        return self._run(
            "issue_invoice",
            lambda: self._lifecycle.issue(invoice_id),
            invoice_id=invoice_id,
        )

    def cancel_invoice(self, invoice_id: UUID, reason: str | None = None) -> OperationResult:
        return self._run(
            "cancel_invoice",
            lambda: self._lifecycle.cancel(invoice_id, reason),
            invoice_id=invoice_id,
        )

    def get_invoice(self, invoice_id: UUID) -> OperationResult:
        return self._run("get_invoice", lambda: self._invoices.require(invoice_id))

    def get_invoice_balance(self, invoice_id: UUID) -> OperationResult:
        return self._run("get_invoice_balance", lambda: self._invoices.balance(invoice_id))

    def mark_overdue(
        self, invoice_id: UUID, now: datetime | date | None = None
    ) -> OperationResult:
        """Overdue check for one invoice; ``value`` says whether it changed."""
        return self._run(
            "mark_overdue",
            lambda: self._lifecycle.mark_overdue(invoice_id, now or self._clock.now()),
            invoice_id=invoice_id,
        )

    def overdue_sweep(self, now: datetime | None = None) -> OperationResult:
        """
        Run ``mark_overdue`` over every candidate, one transaction each.

        ``value`` is the tuple of invoice ids that became overdue.
        """
        as_of = now or self._clock.now()
        candidates = self._run(
            "overdue_candidates",
            lambda: self._invoices.overdue_candidates(as_of.date()),
        )
        if not candidates.is_success:
            return candidates

        marked = []
        for candidate in candidates.value:
            result = self.mark_overdue(candidate.invoice_id, as_of)
            if result.is_success and result.value:
                marked.append(candidate.invoice_id)

        logger.info(
            "overdue_sweep_completed",
            extra={"candidates": len(candidates.value), "marked": len(marked)},
        )
        return OperationResult.success("overdue_sweep", tuple(marked))

    def invoice_stats(self) -> OperationResult:
        return self._run("invoice_stats", self._invoices.stats)

    # =========================================================================
    # Payments
    # =========================================================================

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
    ) -> OperationResult:
        """Capture a payment into the ledger without applying it."""
        return self._run(
            "record_payment",
            lambda: self._reconciliation.record_payment(
                amount,
                currency,
                method,
                guest_ref,
                invoice_id=invoice_id,
                is_deposit=is_deposit,
                paid_at=paid_at,
                reference=reference,
                notes=notes,
            ),
            invoice_id=invoice_id,
        )

    def apply_payment(self, payment_id: UUID, invoice_id: UUID | None = None) -> OperationResult:
        if invoice_id is None:
            lookup = self._run("get_payment", lambda: self._payments.require(payment_id))
            if not lookup.is_success:
                return OperationResult(
                    operation="apply_payment",
                    status=lookup.status,
                    error_code=lookup.error_code,
                    error_kind=lookup.error_kind,
                    message=lookup.message,
                    details=lookup.details,
                )
            invoice_id = lookup.value.invoice_id
        return self._run(
            "apply_payment",
            lambda: self._reconciliation.apply_payment(payment_id, invoice_id),
            invoice_id=invoice_id,
            payment_id=payment_id,
        )

    def apply_pending_payments(self, invoice_id: UUID) -> OperationResult:
        return self._run(
            "apply_pending_payments",
            lambda: self._reconciliation.apply_pending_payments(invoice_id),
            invoice_id=invoice_id,
        )

    def reconcile_deposits(self, guest_ref: str, invoice_id: UUID) -> OperationResult:
        return self._run(
            "reconcile_deposits",
            lambda: self._reconciliation.reconcile_orphan_deposits(guest_ref, invoice_id),
            invoice_id=invoice_id,
        )

    def verify_invoice_projection(self, invoice_id: UUID) -> OperationResult:
        """``value`` is True when amount_paid matches the replayed ledger."""
        return self._run(
            "verify_invoice_projection",
            lambda: self._reconciliation.verify_projection(invoice_id),
        )

    def get_payment(self, payment_id: UUID) -> OperationResult:
        return self._run("get_payment", lambda: self._payments.require(payment_id))

    def payment_stats(self) -> OperationResult:
        return self._run("payment_stats", self._payments.stats)
