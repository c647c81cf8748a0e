"""
Tests for InvoiceSelector and PaymentSelector read models.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.charges import LineItem
from billing_kernel.domain.dtos import InvoiceStatus, PaymentMethod
from billing_kernel.exceptions import InvoiceNotFoundError, PaymentNotFoundError
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.selectors.payment_selector import PaymentSelector


class TestInvoiceSelector:
    def test_require_unknown(self, session):
        with pytest.raises(InvoiceNotFoundError):
            InvoiceSelector(session).require(uuid4())

    def test_get_by_number(self, session, issued_invoice):
        invoice = issued_invoice()
        found = InvoiceSelector(session).get_by_number(invoice.invoice_number)
        assert found.id == invoice.id
        assert InvoiceSelector(session).get_by_number("INV-999999") is None

    def test_list_for_guest_and_status(self, session, issued_invoice, lifecycle):
        issued_invoice(guest_ref="GUEST-1")
        issued_invoice(guest_ref="GUEST-2")
        lifecycle.create_draft("GUEST-1", "USD", [LineItem("Room", Decimal("1"), Decimal("5"))])

        selector = InvoiceSelector(session)
        assert len(selector.list_for_guest("GUEST-1")) == 2
        assert len(selector.list_by_status(InvoiceStatus.ISSUED)) == 2
        assert len(selector.list_by_status(InvoiceStatus.DRAFT)) == 1

    def test_overdue_candidates(self, session, issued_invoice):
        early = issued_invoice(due_date=date(2024, 1, 10))
        issued_invoice(due_date=date(2024, 2, 10))

        candidates = InvoiceSelector(session).overdue_candidates(date(2024, 1, 15))
        assert [c.invoice_id for c in candidates] == [early.id]

    def test_stats(self, session, issued_invoice, reconciliation, lifecycle):
        usd = issued_invoice()
        issued_invoice(currency="UGX", lines=[LineItem("Room", Decimal("1"), Decimal("380000"))])
        cancelled = issued_invoice()
        lifecycle.cancel(cancelled.id)
        p = reconciliation.record_payment("40", "USD", "cash", "GUEST-1", invoice_id=usd.id)
        reconciliation.apply_payment(p.id)

        stats = InvoiceSelector(session).stats()

        assert stats.total_count == 3
        assert stats.by_status[InvoiceStatus.CANCELLED] == 1
        assert stats.by_status[InvoiceStatus.PARTIALLY_PAID] == 1
        assert stats.by_currency["USD"].total == Decimal("100.00")
        assert stats.by_currency["USD"].paid == Decimal("40.00")
        assert stats.by_currency["USD"].outstanding == Decimal("60.00")
        assert stats.by_currency["UGX"].count == 1


class TestPaymentSelector:
    def test_require_unknown(self, session):
        with pytest.raises(PaymentNotFoundError):
            PaymentSelector(session).require(uuid4())

    def test_applications_in_capture_order(self, session, issued_invoice, reconciliation):
        invoice = issued_invoice()
        ids = []
        for amount in ("10", "20"):
            p = reconciliation.record_payment(amount, "USD", "card", "GUEST-1", invoice_id=invoice.id)
            reconciliation.apply_payment(p.id)
            ids.append(p.id)

        selector = PaymentSelector(session)
        assert [a.payment_id for a in selector.applications_for_invoice(invoice.id)] == ids
        assert selector.applied_total(invoice.id) == Decimal("30.00")
        assert selector.pending_for_invoice(invoice.id) == ()

    def test_orphan_deposits_exclude_attached_and_settlements(self, session, issued_invoice,
                                                              reconciliation):
        invoice = issued_invoice()
        orphan = reconciliation.record_payment("5", "USD", "cash", "GUEST-1", is_deposit=True)
        reconciliation.record_payment("5", "USD", "cash", "GUEST-1", is_deposit=True,
                                      invoice_id=invoice.id)
        reconciliation.record_payment("5", "USD", "cash", "GUEST-1")

        deposits = PaymentSelector(session).orphan_deposits("GUEST-1")
        assert [d.id for d in deposits] == [orphan.id]

    def test_stats(self, session, reconciliation, issued_invoice):
        invoice = issued_invoice()
        p = reconciliation.record_payment("40", "USD", "card", "GUEST-1", invoice_id=invoice.id)
        reconciliation.apply_payment(p.id)
        reconciliation.record_payment("19000", "UGX", "mobile_money", "GUEST-1", is_deposit=True)
        reconciliation.record_payment("10", "USD", "cash", "GUEST-1", is_deposit=True)

        stats = PaymentSelector(session).stats()

        assert stats.total_count == 3
        assert stats.count_by_method[PaymentMethod.CARD] == 1
        assert stats.totals_by_method[PaymentMethod.MOBILE_MONEY] == {"UGX": Decimal("19000.00")}
        assert stats.deposit_totals == {"UGX": Decimal("19000.00"), "USD": Decimal("10.00")}
        assert stats.settlement_totals == {"USD": Decimal("40.00")}
        assert stats.unapplied_count == 2
        assert len(PaymentSelector(session).list_for_guest("GUEST-1")) == 3
