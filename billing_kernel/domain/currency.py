"""
Currency -- code normalization and the registry's read DTO.

Codes are three ASCII letters, case-folded to upper case.  The registry
does not insist on ISO 4217 membership: hotels register local or house
currencies the standard does not list.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from billing_kernel.exceptions import InvalidCurrencyCodeError


def normalize_currency_code(code: str) -> str:
    """Return the upper-cased code or raise InvalidCurrencyCodeError."""
    if not isinstance(code, str):
        raise InvalidCurrencyCodeError(str(code))
    normalized = code.strip().upper()
    if len(normalized) != 3 or not normalized.isascii() or not normalized.isalpha():
        raise InvalidCurrencyCodeError(code)
    return normalized


@dataclass(frozen=True)
class CurrencyInfo:
    """A registered currency.

    ``exchange_rate`` is units of this currency per one unit of the base
    (default) currency; the base itself always carries 1.
    """

    code: str
    name: str
    symbol: str
    exchange_rate: Decimal
    is_default: bool = False
    is_system: bool = False
