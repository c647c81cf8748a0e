"""
billing_services -- Package init and public API.

Responsibility:
    Stateful orchestration services that compose the pure engines
    (billing_engines/) with database sessions and the kernel models.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        billing_services/ -> billing_engines/  (allowed)
        billing_services/ -> billing_kernel/   (allowed)
        billing_engines/  -> billing_services/ (FORBIDDEN)
        billing_kernel/   -> billing_services/ (FORBIDDEN)

Invariants enforced:
    - Services flush; only the facade in billing_modules commits.
"""

from billing_services.conversion_service import ConversionService
from billing_services.invoice_lifecycle import InvoiceLifecycleManager
from billing_services.reconciliation import PaymentReconciliationService

__all__ = [
    "ConversionService",
    "InvoiceLifecycleManager",
    "PaymentReconciliationService",
]
