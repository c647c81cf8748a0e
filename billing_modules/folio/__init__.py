"""
Folio Module.

The front-desk surface of the billing core: currency administration,
guest invoices, payment capture, deposit reconciliation and the overdue
sweep.  Computation lives in the engines; state changes live in the
services.
"""

from billing_modules.folio.models import OperationResult, OperationStatus
from billing_modules.folio.service import BillingService

__all__ = [
    "BillingService",
    "OperationResult",
    "OperationStatus",
]
