"""
Billing kernel: currencies, invoices and the payment ledger.

The kernel owns persistence (``db/``, ``models/``), pure domain values
(``domain/``), flush-only write services (``services/``) and read-only
selectors (``selectors/``).  It never imports from ``billing_engines``,
``billing_services``, ``billing_config`` or ``billing_modules``.
"""
