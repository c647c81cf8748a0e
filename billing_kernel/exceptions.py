"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing callers (front desk, night audit, channel integrations) must react
to failures precisely.  Parsing message strings is fragile, so every error
here carries:

  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. A KIND class attribute (one of the five error kinds below)
  4. Structured DATA as instance attributes

Example:
    try:
        reconciliation.apply_payment(payment_id, invoice_id, actor_id)
    except OverpaymentNotAllowedError as e:
        respond(code=e.code, outstanding=e.outstanding, attempted=e.attempted)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- BillingValidationError                  kind = validation
    |   +-- InvalidCurrencyCodeError
    |   +-- InvalidRateError
    |   +-- InvalidPercentageError
    |   +-- InvalidLineItemError
    |   +-- InvalidAmountError
    |   +-- InvalidPaymentMethodError
    |   +-- EmptyInvoiceError
    |   +-- DuplicateCurrencyError
    |   +-- CurrencyMismatchError
    |
    +-- StateConflictError                      kind = state_conflict
    |   +-- InvoiceNotIssuedError
    |   +-- InvoiceCancelledError
    |   +-- InvoiceAlreadyPaidError
    |   +-- CannotCancelPaidInvoiceError
    |   +-- InvoiceNotDraftError
    |   +-- InvalidTransitionError
    |   +-- DuplicatePaymentApplicationError
    |   +-- PaymentOutOfOrderError
    |   +-- PaymentInvoiceMismatchError
    |   +-- PaymentGuestMismatchError
    |   +-- ImmutableBaseCurrencyError
    |
    +-- ReferentialError                        kind = referential
    |   +-- CurrencyNotFoundError
    |   +-- ProtectedCurrencyError
    |   +-- CurrencyInUseError
    |   +-- InvoiceNotFoundError
    |   +-- PaymentNotFoundError
    |
    +-- BusinessRuleError                       kind = business_rule
    |   +-- OverpaymentNotAllowedError
    |
    +-- ConcurrencyError                        kind = concurrency
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError                       kind = immutability
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Kind            | Code                           | When Raised
----------------|--------------------------------|------------------------------------
validation      | INVALID_CURRENCY_CODE          | Code is not three ASCII letters
                | INVALID_RATE                   | Exchange rate <= 0 or unparseable
                | INVALID_PERCENTAGE             | Percentage outside its allowed range
                | INVALID_LINE_ITEM              | Quantity <= 0, price < 0, no description
                | INVALID_AMOUNT                 | Payment amount <= 0
                | INVALID_PAYMENT_METHOD         | Unknown payment method
                | EMPTY_INVOICE                  | Issuing an invoice without lines
                | DUPLICATE_CURRENCY             | Currency code already registered
                | CURRENCY_MISMATCH              | Money arithmetic across currencies
----------------|--------------------------------|------------------------------------
state_conflict  | INVOICE_NOT_ISSUED             | Payment against a draft invoice
                | INVOICE_CANCELLED              | Payment/cancel on a cancelled invoice
                | INVOICE_ALREADY_PAID           | Payment on a paid invoice
                | CANNOT_CANCEL_PAID_INVOICE     | Cancelling a paid invoice
                | INVOICE_NOT_DRAFT              | Editing lines after issue
                | INVALID_TRANSITION             | No workflow transition for action
                | DUPLICATE_PAYMENT_APPLICATION  | Payment already consumed
                | PAYMENT_OUT_OF_ORDER           | Older payment for invoice pending
                | PAYMENT_INVOICE_MISMATCH       | Payment names a different invoice
                | IMMUTABLE_BASE_CURRENCY        | Changing the base currency's rate
----------------|--------------------------------|------------------------------------
referential     | CURRENCY_NOT_FOUND             | Unknown currency code
                | PROTECTED_CURRENCY             | Deleting a system/default currency
                | CURRENCY_IN_USE                | Deleting a referenced currency
                | INVOICE_NOT_FOUND              | Unknown invoice id
                | PAYMENT_NOT_FOUND              | Unknown payment id
----------------|--------------------------------|------------------------------------
business_rule   | OVERPAYMENT_NOT_ALLOWED        | Payment exceeds balance + tolerance
----------------|--------------------------------|------------------------------------
concurrency     | OPTIMISTIC_LOCK_CONFLICT       | Invoice changed by another transaction
----------------|--------------------------------|------------------------------------
immutability    | IMMUTABILITY_VIOLATION         | Modifying ledger rows / frozen totals

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Domain exceptions inherit from Exception, never ValueError, so they can
   be caught as a group without swallowing programming errors.

2. ``code`` and ``kind`` are class attributes: static per type, readable
   without instantiation, and stable across message rewording.

3. The facade in ``billing_modules`` converts these into failed
   ``OperationResult`` values after rolling back; nothing partial persists.

===============================================================================
"""

from decimal import Decimal
from enum import Enum


class ErrorKind(str, Enum):
    """Coarse error category exposed to callers."""

    VALIDATION = "validation"
    STATE_CONFLICT = "state_conflict"
    REFERENTIAL = "referential"
    BUSINESS_RULE = "business_rule"
    CONCURRENCY = "concurrency"
    IMMUTABILITY = "immutability"


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses carry a ``code`` and a ``kind`` class attribute.
    """

    code: str = "BILLING_KERNEL_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION

    @property
    def details(self) -> dict:
        """Structured attributes of this error, for result payloads."""
        return {k: v for k, v in vars(self).items() if not k.startswith("_")}


# =============================================================================
# Validation
# =============================================================================


class BillingValidationError(BillingKernelError):
    """Base exception for malformed or out-of-range input."""

    code: str = "VALIDATION_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION


class InvalidCurrencyCodeError(BillingValidationError):
    """Currency code is not three ASCII letters."""

    code: str = "INVALID_CURRENCY_CODE"

    def __init__(self, currency_code: str):
        self.currency_code = currency_code
        super().__init__(f"Invalid currency code: {currency_code!r}")


class InvalidRateError(BillingValidationError):
    """Exchange rate is zero, negative, or not a number."""

    code: str = "INVALID_RATE"

    def __init__(self, currency_code: str, rate: object):
        self.currency_code = currency_code
        self.rate = str(rate)
        super().__init__(
            f"Invalid exchange rate for {currency_code}: {rate} (must be > 0)"
        )


class InvalidPercentageError(BillingValidationError):
    """A discount, service charge or tax percentage is out of range."""

    code: str = "INVALID_PERCENTAGE"

    def __init__(self, field: str, value: object, minimum: Decimal, maximum: Decimal):
        self.field = field
        self.value = str(value)
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"{field} must be between {minimum} and {maximum}, got {value}"
        )


class InvalidLineItemError(BillingValidationError):
    """An invoice line has a bad quantity, price or description."""

    code: str = "INVALID_LINE_ITEM"

    def __init__(self, line_number: int, reason: str):
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"Invalid line {line_number}: {reason}")


class InvalidAmountError(BillingValidationError):
    """An amount is not strictly positive, or too large to round to cents."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object, reason: str = "must be positive"):
        self.amount = str(amount)
        self.reason = reason
        super().__init__(f"Amount {reason}, got {amount}")


class InvalidPaymentMethodError(BillingValidationError):
    """The payment method is not one of PaymentMethod."""

    code: str = "INVALID_PAYMENT_METHOD"

    def __init__(self, method: object):
        self.method = str(method)
        super().__init__(f"Unknown payment method: {method}")


class EmptyInvoiceError(BillingValidationError):
    """Issuing an invoice that has no lines."""

    code: str = "EMPTY_INVOICE"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} has no line items")


class DuplicateCurrencyError(BillingValidationError):
    """Currency code already exists in the registry."""

    code: str = "DUPLICATE_CURRENCY"

    def __init__(self, currency_code: str):
        self.currency_code = currency_code
        super().__init__(f"Currency already registered: {currency_code}")


class CurrencyMismatchError(BillingValidationError):
    """Arithmetic attempted across two currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, left: str, right: str):
        self.left = left
        self.right = right
        super().__init__(f"Currency mismatch: {left} vs {right}")


# =============================================================================
# State conflicts
# =============================================================================


class StateConflictError(BillingKernelError):
    """Base exception for operations illegal in the current state."""

    code: str = "STATE_CONFLICT"
    kind: ErrorKind = ErrorKind.STATE_CONFLICT


class InvoiceNotIssuedError(StateConflictError):
    """Payment recorded against an invoice that is still a draft."""

    code: str = "INVOICE_NOT_ISSUED"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} has not been issued")


class InvoiceCancelledError(StateConflictError):
    """Operation on a cancelled invoice."""

    code: str = "INVOICE_CANCELLED"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is cancelled")


class InvoiceAlreadyPaidError(StateConflictError):
    """Payment recorded against a fully paid invoice."""

    code: str = "INVOICE_ALREADY_PAID"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is already paid")


class CannotCancelPaidInvoiceError(StateConflictError):
    """Paid invoices are terminal and cannot be cancelled."""

    code: str = "CANNOT_CANCEL_PAID_INVOICE"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is paid and cannot be cancelled")


class InvoiceNotDraftError(StateConflictError):
    """Lines and overrides can only change while an invoice is a draft."""

    code: str = "INVOICE_NOT_DRAFT"

    def __init__(self, invoice_id: str, status: str):
        self.invoice_id = invoice_id
        self.status = status
        super().__init__(f"Invoice {invoice_id} is {status}, not draft")


class InvalidTransitionError(StateConflictError):
    """No workflow transition exists for the action, or its guard does not hold."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, invoice_id: str, from_state: str, action: str, guard: str | None = None):
        self.invoice_id = invoice_id
        self.from_state = from_state
        self.action = action
        self.guard = guard
        message = f"Action '{action}' is not allowed for invoice {invoice_id} in state {from_state}"
        if guard is not None:
            message += f" (guard '{guard}' not satisfied)"
        super().__init__(message)


class DuplicatePaymentApplicationError(StateConflictError):
    """The payment has already been applied to an invoice."""

    code: str = "DUPLICATE_PAYMENT_APPLICATION"

    def __init__(self, payment_id: str, invoice_id: str):
        self.payment_id = payment_id
        self.invoice_id = invoice_id
        super().__init__(
            f"Payment {payment_id} was already applied to invoice {invoice_id}"
        )


class PaymentOutOfOrderError(StateConflictError):
    """An older payment for the same invoice has not been applied yet."""

    code: str = "PAYMENT_OUT_OF_ORDER"

    def __init__(self, payment_id: str, pending_payment_id: str, invoice_id: str):
        self.payment_id = payment_id
        self.pending_payment_id = pending_payment_id
        self.invoice_id = invoice_id
        super().__init__(
            f"Payment {payment_id} cannot be applied to invoice {invoice_id} "
            f"before earlier payment {pending_payment_id}"
        )


class PaymentInvoiceMismatchError(StateConflictError):
    """The payment was captured against a different invoice."""

    code: str = "PAYMENT_INVOICE_MISMATCH"

    def __init__(self, payment_id: str, payment_invoice_id: str, invoice_id: str):
        self.payment_id = payment_id
        self.payment_invoice_id = payment_invoice_id
        self.invoice_id = invoice_id
        super().__init__(
            f"Payment {payment_id} was captured for invoice {payment_invoice_id}, "
            f"not {invoice_id}"
        )


class PaymentGuestMismatchError(StateConflictError):
    """The payment belongs to a different guest than the invoice."""

    code: str = "PAYMENT_GUEST_MISMATCH"

    def __init__(self, payment_guest_ref: str, invoice_guest_ref: str, invoice_id: str):
        self.payment_guest_ref = payment_guest_ref
        self.invoice_guest_ref = invoice_guest_ref
        self.invoice_id = invoice_id
        super().__init__(
            f"Payment from guest {payment_guest_ref} cannot settle invoice {invoice_id} "
            f"of guest {invoice_guest_ref}"
        )


class ImmutableBaseCurrencyError(StateConflictError):
    """The base currency's rate is fixed at 1."""

    code: str = "IMMUTABLE_BASE_CURRENCY"

    def __init__(self, currency_code: str):
        self.currency_code = currency_code
        super().__init__(
            f"{currency_code} is the base currency; its rate is fixed at 1"
        )


# =============================================================================
# Referential
# =============================================================================


class ReferentialError(BillingKernelError):
    """Base exception for missing or protected references."""

    code: str = "REFERENTIAL_ERROR"
    kind: ErrorKind = ErrorKind.REFERENTIAL


class CurrencyNotFoundError(ReferentialError):
    """Currency code is not registered."""

    code: str = "CURRENCY_NOT_FOUND"

    def __init__(self, currency_code: str):
        self.currency_code = currency_code
        super().__init__(f"Currency not found: {currency_code}")


class ProtectedCurrencyError(ReferentialError):
    """System and default currencies cannot be deleted."""

    code: str = "PROTECTED_CURRENCY"

    def __init__(self, currency_code: str, reason: str):
        self.currency_code = currency_code
        self.reason = reason
        super().__init__(f"Currency {currency_code} is protected: {reason}")


class CurrencyInUseError(ReferentialError):
    """Currency is referenced by invoices or payments."""

    code: str = "CURRENCY_IN_USE"

    def __init__(self, currency_code: str, invoice_count: int, payment_count: int):
        self.currency_code = currency_code
        self.invoice_count = invoice_count
        self.payment_count = payment_count
        super().__init__(
            f"Currency {currency_code} is referenced by {invoice_count} invoice(s) "
            f"and {payment_count} payment(s)"
        )


class InvoiceNotFoundError(ReferentialError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class PaymentNotFoundError(ReferentialError):
    """Payment with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


# =============================================================================
# Business rules
# =============================================================================


class BusinessRuleError(BillingKernelError):
    """Base exception for hotel policy violations."""

    code: str = "BUSINESS_RULE_VIOLATION"
    kind: ErrorKind = ErrorKind.BUSINESS_RULE


class OverpaymentNotAllowedError(BusinessRuleError):
    """Applying the payment would take amount_paid beyond total + tolerance."""

    code: str = "OVERPAYMENT_NOT_ALLOWED"

    def __init__(
        self,
        invoice_id: str,
        attempted: Decimal,
        outstanding: Decimal,
        tolerance: Decimal,
        currency: str,
    ):
        self.invoice_id = invoice_id
        self.attempted = attempted
        self.outstanding = outstanding
        self.tolerance = tolerance
        self.currency = currency
        super().__init__(
            f"Payment of {attempted} {currency} exceeds outstanding balance "
            f"{outstanding} {currency} on invoice {invoice_id} "
            f"(tolerance {tolerance})"
        )


# =============================================================================
# Concurrency
# =============================================================================


class ConcurrencyError(BillingKernelError):
    """Base exception for concurrent modification conflicts."""

    code: str = "CONCURRENCY_ERROR"
    kind: ErrorKind = ErrorKind.CONCURRENCY


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityError(BillingKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"
    kind: ErrorKind = ErrorKind.IMMUTABILITY


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Payments and payment applications are append-only; issued invoices
    keep their frozen totals and lines.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
