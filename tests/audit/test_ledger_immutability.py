"""
Append-only ledger and frozen-invoice tests.

Verifies:
- Payments and payment applications can never be updated or deleted
- Issued invoices keep their totals, currency and dates
- Paid and cancelled invoices cannot change at all
- Lines are frozen once the invoice leaves draft
- Drafts stay fully editable
"""

from contextlib import contextmanager
from decimal import Decimal

import pytest
from sqlalchemy import select

from billing_engines.charges import LineItem
from billing_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from billing_kernel.exceptions import ImmutabilityViolationError
from billing_kernel.models.currency import CurrencyModel
from billing_kernel.models.invoice import InvoiceModel
from billing_kernel.models.payment import PaymentApplicationModel, PaymentModel


@contextmanager
def disabled_immutability():
    """Temporarily remove the ORM listeners to simulate direct tampering."""
    unregister_immutability_listeners()
    try:
        yield
    finally:
        register_immutability_listeners()


@pytest.fixture
def paid_invoice(issued_invoice, reconciliation, session):
    invoice = issued_invoice()
    payment = reconciliation.record_payment("100", "USD", "cash", "GUEST-1", invoice_id=invoice.id)
    application = reconciliation.apply_payment(payment.id)
    session.commit()
    return invoice, payment, application


class TestPaymentLedger:
    def test_payment_update_blocked(self, paid_invoice, session, captured_logs):
        _, payment, _ = paid_invoice
        row = session.get(PaymentModel, payment.id)
        row.amount = Decimal("1.00")
        with pytest.raises(ImmutabilityViolationError) as exc:
            session.flush()
        assert exc.value.entity_type == "Payment"
        assert any(r["message"] == "immutability_violation_blocked" for r in captured_logs())

    def test_payment_delete_blocked(self, paid_invoice, session):
        _, payment, _ = paid_invoice
        session.delete(session.get(PaymentModel, payment.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_unapplied_deposit_also_immutable(self, reconciliation, session):
        deposit = reconciliation.record_payment("10", "USD", "cash", "GUEST-1", is_deposit=True)
        session.commit()
        row = session.get(PaymentModel, deposit.id)
        row.guest_ref = "GUEST-2"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_application_update_blocked(self, paid_invoice, session):
        _, _, application = paid_invoice
        row = session.get(PaymentApplicationModel, application.id)
        row.applied_amount = Decimal("50.00")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_application_delete_blocked(self, paid_invoice, session):
        _, _, application = paid_invoice
        session.delete(session.get(PaymentApplicationModel, application.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestInvoiceImmutability:
    def test_issued_total_frozen(self, issued_invoice, session):
        invoice = issued_invoice()
        row = session.get(InvoiceModel, invoice.id)
        row.total = Decimal("1.00")
        with pytest.raises(ImmutabilityViolationError) as exc:
            session.flush()
        assert "total" in exc.value.reason

    def test_issued_currency_frozen(self, issued_invoice, session):
        invoice = issued_invoice()
        session.get(InvoiceModel, invoice.id).currency = "UGX"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_issued_notes_editable(self, issued_invoice, session):
        invoice = issued_invoice()
        session.get(InvoiceModel, invoice.id).notes = "late checkout agreed"
        session.flush()

    def test_paid_invoice_fully_frozen(self, paid_invoice, session):
        invoice, _, _ = paid_invoice
        session.get(InvoiceModel, invoice.id).notes = "edited after payment"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_issued_invoice_cannot_be_deleted(self, issued_invoice, session):
        invoice = issued_invoice()
        session.delete(session.get(InvoiceModel, invoice.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_issued_lines_frozen(self, issued_invoice, session):
        invoice = issued_invoice()
        row = session.get(InvoiceModel, invoice.id)
        row.lines[0].unit_price = Decimal("1.00")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_draft_fully_editable(self, lifecycle, session):
        draft = lifecycle.create_draft("GUEST-1", "USD", [LineItem("Room", Decimal("1"), Decimal("10"))])
        row = session.get(InvoiceModel, draft.id)
        row.currency = "UGX"
        row.lines[0].unit_price = Decimal("20")
        session.flush()
        session.delete(row)
        session.flush()


class TestCurrencyCode:
    def test_code_cannot_change(self, seeded_registry, session):
        row = session.execute(
            select(CurrencyModel).where(CurrencyModel.code == "UGX")
        ).scalar_one()
        row.name = "Shilling"
        session.flush()
        row.code = "KES"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestTampering:
    def test_listeners_can_be_bypassed_for_tamper_simulation(self, paid_invoice, session,
                                                              reconciliation):
        invoice, _, application = paid_invoice
        with disabled_immutability():
            row = session.get(PaymentApplicationModel, application.id)
            row.applied_amount = Decimal("40.00")
            session.flush()
        assert reconciliation.verify_projection(invoice.id) is False
