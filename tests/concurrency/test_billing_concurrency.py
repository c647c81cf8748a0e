"""
Concurrency tests against a file-backed SQLite database.

Each worker thread gets its own session and BillingService, exactly as
separate requests would.  Barriers line the workers up so the operations
genuinely overlap.

Verifies:
- Concurrent applications to one invoice never overpay it
- A payment raced by many workers is applied exactly once
- Concurrent drafts receive unique invoice numbers
- Concurrent registry changes leave exactly one default at rate 1
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from billing_config import BillingSettings
from billing_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.dtos import InvoiceStatus
from billing_modules.folio import BillingService

pytestmark = pytest.mark.slow_locks

ROOM = {"description": "Deluxe room", "quantity": "1", "unit_price": "100.00"}
NO_CHARGES = {"tax_rate": Decimal("0"), "service_charge_percentage": Decimal("0")}


@pytest.fixture
def file_db(tmp_path):
    init_engine_from_url(f"sqlite:///{tmp_path / 'billing.db'}")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def make_service(file_db, actor_id):
    settings = BillingSettings()
    clock = DeterministicClock()
    sessions = []

    def _make() -> BillingService:
        session = file_db()
        sessions.append(session)
        return BillingService(session, actor_id, settings, clock)

    yield _make
    for session in sessions:
        session.close()


@pytest.fixture
def setup_service(make_service):
    service = make_service()
    assert service.seed_system_currencies().is_success
    return service


def _run_together(n: int, work):
    barrier = Barrier(n)

    def _worker(i):
        barrier.wait()
        return work(i)

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(_worker, range(n)))


def _issue(service, **overrides):
    draft = service.create_invoice("GUEST-1", "USD", [ROOM], **overrides).value
    return service.issue_invoice(draft.id).value


class TestConcurrentApplication:
    def test_no_overpayment_under_contention(self, setup_service, make_service):
        invoice = _issue(setup_service, **NO_CHARGES)
        payments = [
            setup_service.record_payment("15", "USD", "cash", "GUEST-1", is_deposit=True).value
            for _ in range(10)
        ]
        workers = [make_service() for _ in payments]

        results = _run_together(
            len(payments),
            lambda i: workers[i].apply_payment(payments[i].id, invoice.id),
        )

        succeeded = [r for r in results if r.is_success]
        rejected = {r.error_code for r in results if not r.is_success}
        assert len(succeeded) == 6
        assert rejected == {"OVERPAYMENT_NOT_ALLOWED"}

        checker = make_service()
        balance = checker.get_invoice_balance(invoice.id).value
        assert balance.amount_paid == Decimal("90.00")
        assert balance.status is InvoiceStatus.PARTIALLY_PAID
        assert checker.verify_invoice_projection(invoice.id).value is True

    def test_settles_exactly_once(self, setup_service, make_service):
        invoice = _issue(setup_service, **NO_CHARGES)
        payments = [
            setup_service.record_payment("10", "USD", "card", "GUEST-1", is_deposit=True).value
            for _ in range(15)
        ]
        workers = [make_service() for _ in payments]

        results = _run_together(
            len(payments),
            lambda i: workers[i].apply_payment(payments[i].id, invoice.id),
        )

        assert sum(r.is_success for r in results) == 10
        assert {r.error_code for r in results if not r.is_success} == {"INVOICE_ALREADY_PAID"}
        final = make_service().get_invoice(invoice.id).value
        assert final.status is InvoiceStatus.PAID
        assert final.amount_paid == Decimal("100.00")

    def test_same_payment_applied_once(self, setup_service, make_service):
        invoice = _issue(setup_service, **NO_CHARGES)
        payment = setup_service.record_payment(
            "25", "USD", "cash", "GUEST-1", invoice_id=invoice.id
        ).value
        workers = [make_service() for _ in range(8)]

        results = _run_together(8, lambda i: workers[i].apply_payment(payment.id))

        assert sum(r.is_success for r in results) == 1
        assert {r.error_code for r in results if not r.is_success} == {
            "DUPLICATE_PAYMENT_APPLICATION"
        }
        assert make_service().get_invoice(invoice.id).value.amount_paid == Decimal("25.00")


class TestConcurrentNumbering:
    def test_invoice_numbers_unique(self, setup_service, make_service):
        workers = [make_service() for _ in range(10)]

        results = _run_together(
            10, lambda i: workers[i].create_invoice(f"GUEST-{i}", "USD", [ROOM])
        )

        numbers = sorted(r.value.invoice_number for r in results)
        assert numbers == [f"INV-{n:06d}" for n in range(1, 11)]

    def test_ledger_sequence_unique(self, setup_service, make_service):
        workers = [make_service() for _ in range(10)]

        results = _run_together(
            10,
            lambda i: workers[i].record_payment("5", "USD", "cash", f"GUEST-{i}", is_deposit=True),
        )

        sequences = sorted(r.value.ledger_sequence for r in results)
        assert sequences == list(range(1, 11))


class TestConcurrentRegistry:
    def test_single_default_survives_races(self, setup_service, make_service):
        assert setup_service.create_currency("EUR", "Euro", "€", "0.90").is_success
        assert setup_service.create_currency("KES", "Kenyan Shilling", "KSh", "129").is_success
        targets = ["EUR", "KES", "UGX", "USD", "EUR", "KES"]
        workers = [make_service() for _ in targets]

        results = _run_together(
            len(targets), lambda i: workers[i].set_default_currency(targets[i])
        )

        assert all(r.is_success for r in results)
        currencies = make_service().list_currencies().value
        defaults = [c for c in currencies if c.is_default]
        assert len(defaults) == 1
        assert defaults[0].exchange_rate == Decimal("1")
