"""
Tests for the BillingService facade.

Covers:
- OperationResult on success and rejection
- One transaction per call: rejected operations leave nothing behind
- Mapping-style line input
- Registry, conversion, invoice and payment operations end to end
- The overdue sweep
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.domain.dtos import InvoiceStatus
from billing_kernel.exceptions import ErrorKind
from billing_kernel.logging_config import LogContext
from billing_modules.folio import OperationStatus

ROOM = {"description": "Deluxe room", "quantity": "1", "unit_price": "100.00"}


def _issued(billing, lines=(ROOM,), **overrides):
    draft = billing.create_invoice("GUEST-1", "USD", list(lines), **overrides)
    assert draft.is_success, draft.message
    issued = billing.issue_invoice(draft.value.id)
    assert issued.is_success, issued.message
    return issued.value


class TestResults:
    def test_success_result(self, billing):
        result = billing.create_invoice("GUEST-1", "USD", [ROOM])
        assert result.status is OperationStatus.SUCCEEDED
        assert result.operation == "create_invoice"
        assert result.value.total == Decimal("129.80")
        assert result.error_code is None

    def test_rejection_carries_error_fields(self, billing, captured_logs):
        invoice = _issued(billing)
        payment = billing.record_payment("500000", "UGX", "cash", "GUEST-1", invoice_id=invoice.id)

        result = billing.apply_payment(payment.value.id)

        assert result.status is OperationStatus.REJECTED
        assert result.error_code == "OVERPAYMENT_NOT_ALLOWED"
        assert result.error_kind is ErrorKind.BUSINESS_RULE
        assert result.details["attempted"] == Decimal("131.58")
        assert result.details["invoice_id"] == str(invoice.id)
        rejected = [r for r in captured_logs() if r["message"] == "billing_operation_rejected"]
        assert rejected[0]["error_code"] == "OVERPAYMENT_NOT_ALLOWED"
        assert rejected[0]["invoice_id"] == str(invoice.id)

    def test_unexpected_errors_propagate(self, billing, monkeypatch):
        draft = billing.create_invoice("GUEST-1", "USD", [ROOM]).value

        def boom(invoice_id):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(billing._lifecycle, "issue", boom)
        with pytest.raises(RuntimeError):
            billing.issue_invoice(draft.id)


class TestTransactionBoundary:
    def test_rejected_create_persists_nothing(self, billing):
        bad = {"description": "Minibar", "quantity": "0", "unit_price": "4.00"}
        result = billing.create_invoice("GUEST-1", "USD", [ROOM, bad])

        assert result.error_code == "INVALID_LINE_ITEM"
        assert result.details["line_number"] == 2
        assert billing.invoice_stats().value.total_count == 0

    def test_missing_line_field(self, billing):
        result = billing.create_invoice("GUEST-1", "USD", [{"description": "Room", "quantity": "1"}])
        assert result.error_code == "INVALID_LINE_ITEM"

    def test_rejected_application_leaves_balance(self, billing):
        invoice = _issued(billing, tax_rate=Decimal("0"), service_charge_percentage=Decimal("0"))
        payment = billing.record_payment("500000", "UGX", "cash", "GUEST-1", invoice_id=invoice.id)
        billing.apply_payment(payment.value.id)

        balance = billing.get_invoice_balance(invoice.id).value
        assert balance.amount_paid == Decimal("0")
        assert balance.status is InvoiceStatus.ISSUED
        assert billing.get_payment(payment.value.id).is_success

    def test_failed_pending_batch_rolls_back_entirely(self, billing):
        invoice = _issued(billing, tax_rate=Decimal("0"), service_charge_percentage=Decimal("0"))
        billing.record_payment("60", "USD", "cash", "GUEST-1", invoice_id=invoice.id)
        billing.record_payment("60", "USD", "cash", "GUEST-1", invoice_id=invoice.id)

        result = billing.apply_pending_payments(invoice.id)

        assert result.error_code == "OVERPAYMENT_NOT_ALLOWED"
        assert billing.get_invoice_balance(invoice.id).value.amount_paid == Decimal("0")
        assert billing.verify_invoice_projection(invoice.id).value is True


class TestCurrencies:
    def test_seed_is_idempotent(self, billing):
        result = billing.seed_system_currencies()
        assert result.is_success
        assert result.value == ()

    def test_create_and_promote(self, billing):
        assert billing.create_currency("EUR", "Euro", "€", "0.90").is_success
        promoted = billing.set_default_currency("EUR")
        assert promoted.value.exchange_rate == Decimal("1")
        usd = billing.get_currency("USD").value
        assert usd.exchange_rate == Decimal("1.111111111111111111")

    def test_update_rate_changes_conversion(self, billing):
        billing.update_exchange_rate("UGX", "4000")
        assert billing.convert_amount("1", "USD", "UGX").value == Decimal("4000.00")

    def test_protected_delete(self, billing):
        result = billing.delete_currency("USD")
        assert result.error_code == "PROTECTED_CURRENCY"
        assert result.error_kind is ErrorKind.REFERENTIAL

    def test_delete_unused(self, billing):
        billing.create_currency("KES", "Kenyan Shilling", "KSh", "129")
        assert billing.delete_currency("KES").is_success
        codes = [c.code for c in billing.list_currencies().value]
        assert codes == ["UGX", "USD"]

    def test_base_rate_immutable(self, billing):
        result = billing.update_exchange_rate("USD", "2")
        assert result.error_code == "IMMUTABLE_BASE_CURRENCY"


class TestConversion:
    def test_convert(self, billing):
        assert billing.convert_amount("100", "USD", "UGX").value == Decimal("380000.00")
        assert billing.convert_amount("380000", "UGX", "USD").value == Decimal("100.00")

    def test_convert_bad_amount(self, billing):
        assert billing.convert_amount("lots", "USD", "UGX").error_code == "INVALID_AMOUNT"

    def test_convert_unknown_currency(self, billing):
        assert billing.convert_amount("1", "USD", "JPY").error_code == "CURRENCY_NOT_FOUND"

    def test_format(self, billing):
        assert billing.format_amount(Decimal("1234.5"), "USD").value == "$1,234.50"
        assert billing.format_amount(Decimal("1234.5"), "JPY").value == "1,234.50 JPY"

    def test_display_amounts(self, billing):
        amounts = billing.display_amounts("10", "USD").value
        assert [(m.currency, m.amount) for m in amounts] == [
            ("USD", Decimal("10")),
            ("UGX", Decimal("38000.00")),
        ]


class TestInvoicesAndPayments:
    def test_full_settlement_across_currencies(self, billing):
        invoice = _issued(billing, tax_rate=Decimal("0"), service_charge_percentage=Decimal("0"))
        cash = billing.record_payment("190000", "UGX", "cash", "GUEST-1", invoice_id=invoice.id)
        card = billing.record_payment("50", "USD", "card", "GUEST-1", invoice_id=invoice.id)

        assert billing.apply_payment(cash.value.id).value.applied_amount == Decimal("50.00")
        assert billing.apply_payment(card.value.id).is_success

        final = billing.get_invoice(invoice.id).value
        assert final.status is InvoiceStatus.PAID
        assert final.balance == Decimal("0")
        assert billing.cancel_invoice(invoice.id).error_code == "CANNOT_CANCEL_PAID_INVOICE"

    def test_deposit_then_invoice(self, billing):
        billing.record_payment("30", "USD", "cash", "GUEST-1", is_deposit=True)
        invoice = _issued(billing)

        result = billing.reconcile_deposits("GUEST-1", invoice.id)

        assert result.value.applied_total == Decimal("30.00")
        assert result.value.final_status is InvoiceStatus.PARTIALLY_PAID

    def test_apply_unknown_payment(self, billing):
        result = billing.apply_payment(uuid4())
        assert result.operation == "apply_payment"
        assert result.error_code == "PAYMENT_NOT_FOUND"

    def test_replace_lines_then_issue(self, billing):
        draft = billing.create_invoice("GUEST-1", "USD", [ROOM]).value
        two_nights = dict(ROOM, quantity="2")
        assert billing.replace_invoice_lines(draft.id, [two_nights]).value.subtotal == Decimal("200.00")
        assert billing.issue_invoice(draft.id).value.total == Decimal("259.60")

    def test_issue_unknown_invoice(self, billing):
        assert billing.issue_invoice(uuid4()).error_code == "INVOICE_NOT_FOUND"

    def test_stats(self, billing):
        invoice = _issued(billing)
        billing.record_payment("10", "USD", "cash", "GUEST-1", invoice_id=invoice.id)
        assert billing.invoice_stats().value.total_count == 1
        assert billing.payment_stats().value.unapplied_count == 1


class TestOverdueSweep:
    def test_marks_only_unpaid_past_due(self, billing, clock):
        unpaid = _issued(billing)
        paid = _issued(billing)
        payment = billing.record_payment("129.80", "USD", "card", "GUEST-1", invoice_id=paid.id)
        billing.apply_payment(payment.value.id)

        clock.advance_days(31)
        result = billing.overdue_sweep()

        assert result.value == (unpaid.id,)
        assert billing.get_invoice(unpaid.id).value.status is InvoiceStatus.OVERDUE
        assert billing.get_invoice(paid.id).value.status is InvoiceStatus.PAID

    def test_nothing_due_yet(self, billing):
        _issued(billing)
        assert billing.overdue_sweep().value == ()

    def test_mark_overdue_single(self, billing, clock):
        invoice = _issued(billing)
        clock.advance_days(40)
        assert billing.mark_overdue(invoice.id).value is True
        assert billing.mark_overdue(invoice.id).value is False


class TestOutOfRangeInputs:
    """Amounts too large to round to cents come back as rejected results."""

    def test_record_payment(self, billing):
        result = billing.record_payment("1e100", "USD", "cash", "GUEST-1")
        assert result.status is OperationStatus.REJECTED
        assert result.error_code == "INVALID_AMOUNT"
        assert result.error_kind is ErrorKind.VALIDATION

    def test_convert_amount(self, billing):
        result = billing.convert_amount("1e100", "USD", "UGX")
        assert result.error_code == "INVALID_AMOUNT"
        assert result.details["amount"] == "1E+100"

    def test_display_amounts(self, billing):
        assert billing.display_amounts("1e100", "USD").error_code == "INVALID_AMOUNT"

    def test_line_item(self, billing):
        huge = {"description": "Penthouse", "quantity": "1", "unit_price": "1e100"}
        result = billing.create_invoice("GUEST-1", "USD", [ROOM, huge])
        assert result.error_code == "INVALID_LINE_ITEM"
        assert result.details["line_number"] == 2
        assert billing.invoice_stats().value.total_count == 0

    def test_exchange_rate(self, billing):
        assert billing.create_currency("XTS", "Test", "T", "1e100").error_code == "INVALID_RATE"
        assert billing.update_exchange_rate("UGX", "1e100").error_code == "INVALID_RATE"

    def test_format_amount_still_succeeds(self, billing):
        result = billing.format_amount(Decimal("1e100"), "USD")
        assert result.is_success
        assert result.value == "1E+100 USD"


class TestLogContext:
    def test_apply_payment_binds_payment_id(self, billing, captured_logs):
        invoice = _issued(billing)
        payment = billing.record_payment("10", "USD", "cash", "GUEST-1", invoice_id=invoice.id)

        billing.apply_payment(payment.value.id)

        changed = [r for r in captured_logs() if r["message"] == "invoice_status_changed"]
        assert changed[-1]["payment_id"] == str(payment.value.id)
        assert changed[-1]["invoice_id"] == str(invoice.id)

    def test_registry_operations_bind_currency_code(self, billing, captured_logs):
        billing.delete_currency("usd")

        rejected = [r for r in captured_logs() if r["message"] == "billing_operation_rejected"]
        assert rejected[0]["currency_code"] == "USD"

    def test_context_cleared_after_call(self, billing):
        billing.get_currency("UGX")
        ctx = LogContext.get_all()
        assert "currency_code" not in ctx
        assert "payment_id" not in ctx
