"""
BillingSettings schema.

The hotel-level settings that govern invoicing: default percentages, the
overpayment tolerance, payment terms, invoice numbering and the seeded
system currencies.  YAML is parsed into these types by the loader.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from billing_kernel.domain.currency import normalize_currency_code
from billing_kernel.domain.values import HUNDRED, ZERO


@dataclass(frozen=True)
class SystemCurrency:
    """A currency that is seeded at startup and can never be deleted."""

    code: str
    name: str
    symbol: str
    exchange_rate: Decimal
    is_default: bool = False


DEFAULT_SYSTEM_CURRENCIES: tuple[SystemCurrency, ...] = (
    SystemCurrency("USD", "US Dollar", "$", Decimal("1"), is_default=True),
    SystemCurrency("UGX", "Ugandan Shilling", "USh", Decimal("3800")),
)


@dataclass(frozen=True)
class BillingSettings:
    """Validated billing settings.  Percentages are plain numbers (18 = 18%)."""

    tax_rate: Decimal = Decimal("18")
    service_charge_percentage: Decimal = Decimal("10")
    discount_percentage: Decimal = ZERO
    tax_rate_ceiling: Decimal = HUNDRED
    overpayment_tolerance: Decimal = ZERO
    payment_terms_days: int = 30
    invoice_number_prefix: str = "INV"
    system_currencies: tuple[SystemCurrency, ...] = field(
        default=DEFAULT_SYSTEM_CURRENCIES
    )

    def __post_init__(self) -> None:
        if not (ZERO <= self.discount_percentage <= HUNDRED):
            raise ValueError(f"discount_percentage out of range: {self.discount_percentage}")
        if not (ZERO <= self.service_charge_percentage <= HUNDRED):
            raise ValueError(
                f"service_charge_percentage out of range: {self.service_charge_percentage}"
            )
        if self.tax_rate_ceiling < ZERO:
            raise ValueError(f"tax_rate_ceiling must not be negative: {self.tax_rate_ceiling}")
        if not (ZERO <= self.tax_rate <= self.tax_rate_ceiling):
            raise ValueError(
                f"tax_rate {self.tax_rate} outside [0, {self.tax_rate_ceiling}]"
            )
        if self.overpayment_tolerance < ZERO:
            raise ValueError(
                f"overpayment_tolerance must not be negative: {self.overpayment_tolerance}"
            )
        if self.payment_terms_days < 0:
            raise ValueError(f"payment_terms_days must not be negative: {self.payment_terms_days}")
        if not self.invoice_number_prefix.strip():
            raise ValueError("invoice_number_prefix is required")

        codes = [normalize_currency_code(c.code) for c in self.system_currencies]
        if len(set(codes)) != len(codes):
            raise ValueError(f"duplicate system currency codes: {codes}")
        defaults = [c.code for c in self.system_currencies if c.is_default]
        if self.system_currencies and len(defaults) != 1:
            raise ValueError(
                f"exactly one system currency must be the default, got {defaults}"
            )
        for c in self.system_currencies:
            if c.exchange_rate <= ZERO:
                raise ValueError(f"system currency {c.code} has non-positive rate")

    @property
    def default_currency(self) -> str | None:
        for c in self.system_currencies:
            if c.is_default:
                return c.code
        return None
