"""
Values -- Decimal helpers and the Money value object.

Responsibility:
    Owns the single money rounding rule (half-up to two decimal places),
    the rate precision, strict Decimal coercion, and ``Money``, which pairs
    an amount with its currency code.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Imported by the
    models, services, engines and modules.

Invariants enforced:
    - Amounts are Decimal, never float.
    - Every monetary rounding in the system goes through ``round_money``.
      Rounding is ROUND_HALF_UP; banker's rounding is never used.
    - Rates are held at 18 decimal places (matches Numeric(38, 18)).

Failure modes:
    - ``to_decimal`` raises ``ValueError`` for floats, NaN, infinities and
      unparseable strings.
    - ``round_money`` and ``quantize_rate`` raise ``ValueError`` when the
      quantized value needs more than ``WORKING_PRECISION`` digits.
    - ``Money`` arithmetic across currencies raises CurrencyMismatchError.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

from billing_kernel.exceptions import CurrencyMismatchError

MONEY_DECIMAL_PLACES = 2
RATE_DECIMAL_PLACES = 18

MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)
RATE_QUANTUM = Decimal(1).scaleb(-RATE_DECIMAL_PLACES)

# Significant digits for intermediate rate arithmetic; wide enough for
# Numeric(38, 18) operands.
WORKING_PRECISION = 60

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce to a finite Decimal. Floats are rejected outright."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Refusing to coerce {type(value).__name__} to Decimal: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"Not a decimal number: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Not a finite decimal: {value!r}")
    return result


def round_money(value: Decimal) -> Decimal:
    """Round a monetary amount half-up to two decimal places."""
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        try:
            return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
        except InvalidOperation as e:
            raise ValueError(f"Amount out of range: {value}") from e


def quantize_rate(value: Decimal) -> Decimal:
    """Round an exchange rate half-up to the stored rate precision."""
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        try:
            return value.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)
        except InvalidOperation as e:
            raise ValueError(f"Rate out of range: {value}") from e


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with an upper-case currency code.  They are
        never separated once a figure leaves the engines.

    Guarantees:
        - Immutable and hashable.
        - Addition and subtraction enforce the same currency.

    Non-goals:
        - Does NOT convert between currencies (see billing_engines.conversion).
        - Does NOT auto-round; call ``rounded()``.
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str) -> Money:
        return cls(amount=to_decimal(amount), currency=currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(amount=ZERO, currency=currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == ZERO

    def rounded(self) -> Money:
        return Money(amount=round_money(self.amount), currency=self.currency)

    def _check_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount <= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


def rescale_rate(rate: Decimal, pivot: Decimal) -> Decimal:
    """``rate / pivot`` at stored rate precision (used when the base moves)."""
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        return quantize_rate(rate / pivot)
