"""
Billing Modules.

Thin orchestration layers over the billing kernel, engines and services.
Each module owns its transaction boundary and turns kernel errors into
result values.

Modules:
- Folio: currencies, guest invoices, payments and deposits
"""

from billing_modules import folio

__all__ = ["folio"]
