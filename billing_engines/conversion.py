"""
Conversion Engine - convert and format amounts against a rate snapshot.

Pure functions with no I/O - rates are provided as a mapping of currency
code to ``CurrencyInfo`` (typically ``CurrencyRegistryService.rate_table()``).

Rates are units of a currency per one unit of the base, so converting
``amount`` from F to T is ``amount * rate(T) / rate(F)``, rounded once,
half-up, to two decimal places.

Usage:
    from billing_engines.conversion import CurrencyConverter, format_money
    from decimal import Decimal

    converter = CurrencyConverter(registry.rate_table())
    converter.convert(Decimal("100"), "USD", "UGX")      # Decimal("380000.00")
    converter.convert(Decimal("500000"), "UGX", "USD")   # Decimal("131.58")

    format_money(Decimal("1234.5"), "USD", registry.rate_table())  # "$1,234.50"
"""

from __future__ import annotations

from decimal import Decimal, localcontext
from typing import Mapping

from billing_kernel.domain.currency import CurrencyInfo
from billing_kernel.domain.values import (
    WORKING_PRECISION,
    Money,
    round_money,
    to_decimal,
)
from billing_kernel.exceptions import CurrencyNotFoundError, InvalidAmountError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.conversion")

__all__ = ["CurrencyConverter", "format_money", "round_money"]


class CurrencyConverter:
    """
    Converts amounts between registered currencies.

    Contract:
        Works on an immutable snapshot of rates taken at construction; a
        registry change after that does not affect this converter.

    Guarantees:
        - Same-currency conversion returns the amount unchanged (no rounding).
        - Cross-currency results are rounded exactly once via round_money.
        - Unknown codes raise CurrencyNotFoundError.
        - A result too large to round to cents raises InvalidAmountError.
    """

    def __init__(self, currencies: Mapping[str, CurrencyInfo]):
        self._currencies = dict(currencies)

    def rate(self, code: str) -> Decimal:
        info = self._currencies.get(code.upper() if isinstance(code, str) else code)
        if info is None:
            raise CurrencyNotFoundError(str(code))
        return info.exchange_rate

    def convert(self, amount: Decimal, from_code: str, to_code: str) -> Decimal:
        from_code = from_code.upper()
        to_code = to_code.upper()
        from_rate = self.rate(from_code)
        to_rate = self.rate(to_code)
        if from_code == to_code:
            return amount
        try:
            with localcontext() as ctx:
                ctx.prec = WORKING_PRECISION
                raw = amount * to_rate / from_rate
            result = round_money(raw)
        except (ArithmeticError, ValueError) as e:
            raise InvalidAmountError(amount, "is out of range") from e
        logger.debug(
            "amount_converted",
            extra={
                "from_currency": from_code,
                "to_currency": to_code,
                "amount": amount,
                "result": result,
            },
        )
        return result

    def convert_money(self, money: Money, to_code: str) -> Money:
        return Money(amount=self.convert(money.amount, money.currency, to_code), currency=to_code)

    def display_amounts(self, amount: Decimal, from_code: str) -> tuple[Money, ...]:
        """The amount expressed in every known currency, base currency first."""
        ordered = sorted(
            self._currencies.values(), key=lambda c: (not c.is_default, c.code)
        )
        return tuple(
            Money(amount=self.convert(amount, from_code, c.code), currency=c.code)
            for c in ordered
        )


def _group(value: Decimal) -> str:
    return f"{abs(round_money(value)):,.2f}"


def format_money(
    amount: Decimal | int | str,
    code: str,
    currencies: Mapping[str, CurrencyInfo] | None = None,
) -> str:
    """
    Render ``amount`` as ``<symbol><#,##0.00>``.

    Never raises.  An unknown code renders as ``<#,##0.00> <CODE>``; an
    amount that is not a number, or too large to round, renders as
    ``<raw> <CODE>``.
    """
    code_text = str(code).upper() if code is not None else ""
    if isinstance(amount, float):
        amount = repr(amount)
    try:
        value = to_decimal(amount)
    except (ValueError, TypeError):
        return f"{amount} {code_text}".strip()

    try:
        sign = "-" if value < 0 and round_money(value) != 0 else ""
        digits = _group(value)
    except (ArithmeticError, ValueError):
        return f"{amount} {code_text}".strip()
    info = (currencies or {}).get(code_text)
    if info is None:
        return f"{sign}{digits} {code_text}".strip()
    return f"{sign}{info.symbol}{digits}"
