"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The payment ledger is the source of truth for every invoice balance:
``invoices.amount_paid`` must always equal the sum of the invoice's
payment applications.  Editing or deleting a payment or an application
after the fact would silently break that projection.  Likewise, an issued
invoice's totals and lines are what the guest was billed; they never change
after issue, even when exchange rates or tax settings do.

SQLAlchemy fires events before UPDATE/DELETE statements reach the database.
The listeners below intercept them:

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                   | When Immutable                 | What is frozen
-------------------------|--------------------------------|---------------------------
PaymentModel             | ALWAYS (from creation)         | every field; no delete
PaymentApplicationModel  | ALWAYS (from creation)         | every field; no delete
InvoiceModel             | status was not draft           | totals, currency, dates
InvoiceModel             | status was paid or cancelled   | every field
InvoiceModel             | status was not draft           | no delete
InvoiceLineModel         | parent invoice not draft       | every field; no delete
CurrencyModel            | ALWAYS                         | code

updated_at / updated_by_id are audit metadata and may always change;
``version`` is managed by the optimistic lock.

===============================================================================
USAGE
===============================================================================

    from billing_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    unregister_immutability_listeners()  # TESTS ONLY
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from billing_kernel.exceptions import ImmutabilityViolationError
from billing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_ALWAYS_MUTABLE = frozenset({"updated_at", "updated_by_id", "version"})

_registered = False


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _ALWAYS_MUTABLE
        and insp.attrs[attr.key].history.has_changes()
    ]


def _previous_status(target) -> str:
    """Status as it was in the database before this flush."""
    history = get_history(target, "status")
    if history.deleted:
        old = history.deleted[0]
    else:
        old = target.status
    return getattr(old, "value", old)


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


# -----------------------------------------------------------------------------
# Ledger rows
# -----------------------------------------------------------------------------


def _check_payment_update(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _block(
            "Payment", target, "UPDATE",
            f"Payments are append-only; cannot modify '{changed[0]}'",
            field=changed[0],
        )


def _check_payment_delete(mapper, connection, target):
    _block("Payment", target, "DELETE", "Payments are append-only; cannot delete")


def _check_application_update(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _block(
            "PaymentApplication", target, "UPDATE",
            f"Payment applications are append-only; cannot modify '{changed[0]}'",
            field=changed[0],
        )


def _check_application_delete(mapper, connection, target):
    _block(
        "PaymentApplication", target, "DELETE",
        "Payment applications are append-only; cannot delete",
    )


# -----------------------------------------------------------------------------
# Invoices
# -----------------------------------------------------------------------------


def _check_invoice_update(mapper, connection, target):
    from billing_kernel.models.invoice import FROZEN_INVOICE_FIELDS

    was = _previous_status(target)
    if was == "draft":
        return

    changed = _changed_fields(target)
    if was in ("paid", "cancelled") and changed:
        _block(
            "Invoice", target, "UPDATE",
            f"Invoice is {was}; cannot modify '{changed[0]}'",
            field=changed[0],
        )

    for field in changed:
        if field in FROZEN_INVOICE_FIELDS:
            _block(
                "Invoice", target, "UPDATE",
                f"Cannot modify frozen field '{field}' on issued invoice",
                field=field,
            )


def _check_invoice_delete(mapper, connection, target):
    was = _previous_status(target)
    if was != "draft":
        _block("Invoice", target, "DELETE", f"Cannot delete {was} invoice")


def _parent_is_draft(connection, target) -> bool:
    invoice = target.invoice
    if invoice is not None:
        return _previous_status(invoice) == "draft"

    # Orphaned from its collection; read the stored parent status.
    from billing_kernel.models.invoice import InvoiceModel

    history = get_history(target, "invoice_id")
    invoice_id = target.invoice_id or (history.deleted[0] if history.deleted else None)
    if invoice_id is None:
        return True
    status = connection.execute(
        select(InvoiceModel.__table__.c.status).where(
            InvoiceModel.__table__.c.id == str(invoice_id)
        )
    ).scalar()
    return status in (None, "draft")


def _check_invoice_line_update(mapper, connection, target):
    if not _parent_is_draft(connection, target) and _changed_fields(target):
        _block("InvoiceLine", target, "UPDATE", "Lines are frozen once the invoice is issued")


def _check_invoice_line_delete(mapper, connection, target):
    if not _parent_is_draft(connection, target):
        _block("InvoiceLine", target, "DELETE", "Lines are frozen once the invoice is issued")


def _check_currency_update(mapper, connection, target):
    if get_history(target, "code").has_changes():
        _block("Currency", target, "UPDATE", "Currency code cannot change", field="code")


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------


def _listeners():
    from billing_kernel.models.currency import CurrencyModel
    from billing_kernel.models.invoice import InvoiceLineModel, InvoiceModel
    from billing_kernel.models.payment import PaymentApplicationModel, PaymentModel

    return (
        (PaymentModel, "before_update", _check_payment_update),
        (PaymentModel, "before_delete", _check_payment_delete),
        (PaymentApplicationModel, "before_update", _check_application_update),
        (PaymentApplicationModel, "before_delete", _check_application_delete),
        (InvoiceModel, "before_update", _check_invoice_update),
        (InvoiceModel, "before_delete", _check_invoice_delete),
        (InvoiceLineModel, "before_update", _check_invoice_line_update),
        (InvoiceLineModel, "before_delete", _check_invoice_line_delete),
        (CurrencyModel, "before_update", _check_currency_update),
    )


def register_immutability_listeners() -> None:
    """Register all ORM immutability listeners (idempotent)."""
    global _registered
    if _registered:
        return
    for model, name, fn in _listeners():
        if not event.contains(model, name, fn):
            event.listen(model, name, fn)
    _registered = True
    logger.info("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove all ORM immutability listeners. FOR TESTING ONLY."""
    global _registered
    for model, name, fn in _listeners():
        if event.contains(model, name, fn):
            event.remove(model, name, fn)
    _registered = False
