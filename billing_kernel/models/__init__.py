"""ORM models for the billing kernel.

Importing this package registers every table on ``Base.metadata``.
"""

from billing_kernel.models.currency import CurrencyModel
from billing_kernel.models.invoice import InvoiceLineModel, InvoiceModel
from billing_kernel.models.payment import PaymentApplicationModel, PaymentModel
from billing_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "CurrencyModel",
    "InvoiceModel",
    "InvoiceLineModel",
    "PaymentModel",
    "PaymentApplicationModel",
    "SequenceCounter",
]
