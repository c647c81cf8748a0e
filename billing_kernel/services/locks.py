"""
In-process locks for billing critical sections.

Row locks (``SELECT ... FOR UPDATE``) serialize writers across processes
on PostgreSQL but are no-ops on SQLite.  These locks serialize writers
inside one process on every backend; callers hold them for the whole
transaction (acquire before the first read, release after commit).

    with invoice_lock(invoice_id):
        ...  # load, mutate, commit

    with registry_lock():
        ...  # any currency registry mutation

An invoice's lock lives only while some thread holds or waits on it.
"""

import threading
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

_registry_lock = threading.RLock()


class _InvoiceLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


_invoice_locks: dict[str, _InvoiceLock] = {}
_invoice_locks_guard = threading.Lock()


@contextmanager
def registry_lock() -> Iterator[None]:
    """Process-wide critical section for currency registry mutations."""
    with _registry_lock:
        yield


def _acquire_entry(key: str) -> _InvoiceLock:
    with _invoice_locks_guard:
        entry = _invoice_locks.get(key)
        if entry is None:
            entry = _invoice_locks[key] = _InvoiceLock()
        entry.users += 1
        return entry


def _release_entry(key: str, entry: _InvoiceLock) -> None:
    with _invoice_locks_guard:
        entry.users -= 1
        if entry.users == 0:
            del _invoice_locks[key]


def active_invoice_locks() -> int:
    """Number of invoices with a lock currently held or awaited."""
    with _invoice_locks_guard:
        return len(_invoice_locks)


@contextmanager
def invoice_lock(invoice_id: UUID | str) -> Iterator[None]:
    """Serialize all mutations of one invoice within this process."""
    key = str(invoice_id)
    entry = _acquire_entry(key)
    try:
        with entry.lock:
            yield
    finally:
        _release_entry(key, entry)
