"""
Tests for the in-process invoice locks.

Covers:
- Lock entries exist only while held or awaited
- Re-entrancy within one thread
- Mutual exclusion across threads
- No growth after many facade operations
"""

import threading
from uuid import uuid4

from billing_kernel.services.locks import active_invoice_locks, invoice_lock

ROOM = {"description": "Deluxe room", "quantity": "1", "unit_price": "100.00"}


class TestInvoiceLockLifetime:
    def test_entry_released_after_use(self):
        invoice_id = uuid4()
        with invoice_lock(invoice_id):
            assert active_invoice_locks() == 1
        assert active_invoice_locks() == 0

    def test_reentrant(self):
        invoice_id = uuid4()
        with invoice_lock(invoice_id):
            with invoice_lock(str(invoice_id)):
                assert active_invoice_locks() == 1
            assert active_invoice_locks() == 1
        assert active_invoice_locks() == 0

    def test_released_when_body_raises(self):
        try:
            with invoice_lock(uuid4()):
                raise KeyError("boom")
        except KeyError:
            pass
        assert active_invoice_locks() == 0

    def test_facade_operations_leave_no_entries(self, billing):
        for _ in range(50):
            draft = billing.create_invoice("GUEST-1", "USD", [ROOM]).value
            assert billing.issue_invoice(draft.id).is_success
        assert active_invoice_locks() == 0


class TestInvoiceLockExclusion:
    def test_second_thread_waits_for_holder(self):
        invoice_id = uuid4()
        holder_in = threading.Event()
        release = threading.Event()
        order = []

        def holder():
            with invoice_lock(invoice_id):
                holder_in.set()
                release.wait(timeout=5)
                order.append("holder")

        def waiter():
            holder_in.wait(timeout=5)
            with invoice_lock(invoice_id):
                order.append("waiter")

        t1 = threading.Thread(target=holder)
        t2 = threading.Thread(target=waiter)
        t1.start()
        t2.start()
        holder_in.wait(timeout=5)
        release.set()
        t1.join(timeout=5)
        t2.join(timeout=5)

        assert order == ["holder", "waiter"]
        assert active_invoice_locks() == 0

    def test_distinct_invoices_do_not_block(self):
        first, second = uuid4(), uuid4()
        with invoice_lock(first):
            acquired = []
            t = threading.Thread(target=lambda: acquired.append(_try_lock(second)))
            t.start()
            t.join(timeout=5)
            assert acquired == [True]


def _try_lock(invoice_id) -> bool:
    with invoice_lock(invoice_id):
        return True
