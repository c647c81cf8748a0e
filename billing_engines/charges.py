"""
Charge Engine - discount, service charge and tax for an invoice.

Pure functions with no I/O - percentages are provided as a ``ChargeConfig``.

The pipeline order is fixed and every step is rounded (half-up, two
places) before the next one reads it:

    subtotal        = sum(round(quantity * unit_price))
    discount        = round(subtotal * discount% / 100)
    service_charge  = round((subtotal - discount) * service% / 100)
    tax             = round((subtotal - discount + service_charge) * tax% / 100)
    total           = subtotal - discount + service_charge + tax

Usage:
    from billing_engines.charges import ChargeCalculator, ChargeConfig, LineItem
    from decimal import Decimal

    config = ChargeConfig(
        discount_percentage=Decimal("10"),
        service_charge_percentage=Decimal("10"),
        tax_rate=Decimal("18"),
    )
    breakdown = ChargeCalculator().compute(
        [LineItem("Deluxe room, 1 night", Decimal("1"), Decimal("100.00"))],
        config,
    )
    print(breakdown.total)  # Decimal("116.82")
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Sequence

from billing_kernel.domain.values import HUNDRED, ZERO, round_money, to_decimal
from billing_kernel.exceptions import (
    InvalidAmountError,
    InvalidLineItemError,
    InvalidPercentageError,
)
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.charges")

DEFAULT_TAX_RATE_CEILING = Decimal("100")


def _percentage(field: str, value: Decimal | int | str, maximum: Decimal) -> Decimal:
    try:
        pct = to_decimal(value)
    except ValueError as e:
        raise InvalidPercentageError(field, value, ZERO, maximum) from e
    if pct < ZERO or pct > maximum:
        raise InvalidPercentageError(field, pct, ZERO, maximum)
    return pct


@dataclass(frozen=True)
class LineItem:
    """One billable line: ``quantity`` units at ``unit_price``."""

    description: str
    quantity: Decimal
    unit_price: Decimal

    @property
    def amount(self) -> Decimal:
        return round_money(self.quantity * self.unit_price)


@dataclass(frozen=True)
class ChargeConfig:
    """
    Percentages applied by the pipeline.

    Discount and service charge must lie in [0, 100]; tax in
    [0, tax_rate_ceiling].
    """

    discount_percentage: Decimal = ZERO
    service_charge_percentage: Decimal = ZERO
    tax_rate: Decimal = ZERO
    tax_rate_ceiling: Decimal = DEFAULT_TAX_RATE_CEILING

    def validated(self) -> ChargeConfig:
        """Return a copy with Decimal percentages, or raise InvalidPercentageError."""
        return ChargeConfig(
            discount_percentage=_percentage("discount_percentage", self.discount_percentage, HUNDRED),
            service_charge_percentage=_percentage(
                "service_charge_percentage", self.service_charge_percentage, HUNDRED
            ),
            tax_rate=_percentage("tax_rate", self.tax_rate, to_decimal(self.tax_rate_ceiling)),
            tax_rate_ceiling=to_decimal(self.tax_rate_ceiling),
        )

    def with_overrides(
        self,
        discount_percentage: Decimal | None = None,
        service_charge_percentage: Decimal | None = None,
        tax_rate: Decimal | None = None,
    ) -> ChargeConfig:
        """Per-invoice overrides; ``None`` keeps this config's value."""
        changes = {}
        if discount_percentage is not None:
            changes["discount_percentage"] = discount_percentage
        if service_charge_percentage is not None:
            changes["service_charge_percentage"] = service_charge_percentage
        if tax_rate is not None:
            changes["tax_rate"] = tax_rate
        return replace(self, **changes)


@dataclass(frozen=True)
class ChargeBreakdown:
    """Result of the charge pipeline; every figure already rounded."""

    line_amounts: tuple[Decimal, ...]
    subtotal: Decimal
    discount_amount: Decimal
    service_charge_amount: Decimal
    tax_amount: Decimal
    total: Decimal
    config: ChargeConfig

    @property
    def discounted_subtotal(self) -> Decimal:
        return self.subtotal - self.discount_amount

    @property
    def taxable_base(self) -> Decimal:
        return self.subtotal - self.discount_amount + self.service_charge_amount


class ChargeCalculator:
    """
    Runs the discount -> service charge -> tax pipeline.

    Contract:
        Deterministic: the same lines and config always give the same
        breakdown.

    Guarantees:
        - ``total == subtotal - discount + service_charge + tax`` exactly.
        - ``total >= 0`` (percentages are capped, prices are non-negative).
    """

    @staticmethod
    def validate_lines(lines: Sequence[LineItem]) -> tuple[LineItem, ...]:
        """Coerce quantities/prices to Decimal and reject bad lines."""
        checked = []
        for number, line in enumerate(lines, start=1):
            if not line.description or not line.description.strip():
                raise InvalidLineItemError(number, "description is required")
            try:
                quantity = to_decimal(line.quantity)
                unit_price = to_decimal(line.unit_price)
            except ValueError as e:
                raise InvalidLineItemError(number, str(e)) from e
            if quantity <= ZERO:
                raise InvalidLineItemError(number, f"quantity must be positive, got {quantity}")
            if unit_price < ZERO:
                raise InvalidLineItemError(number, f"unit price cannot be negative, got {unit_price}")
            item = LineItem(line.description.strip(), quantity, unit_price)
            try:
                item.amount
            except (ArithmeticError, ValueError) as e:
                raise InvalidLineItemError(number, "line amount is out of range") from e
            checked.append(item)
        return tuple(checked)

    def compute(self, lines: Sequence[LineItem], config: ChargeConfig) -> ChargeBreakdown:
        cfg = config.validated()
        items = self.validate_lines(lines)

        line_amounts = tuple(item.amount for item in items)
        try:
            subtotal = round_money(sum(line_amounts, ZERO))
            discount = round_money(subtotal * cfg.discount_percentage / HUNDRED)
            service = round_money((subtotal - discount) * cfg.service_charge_percentage / HUNDRED)
            tax = round_money((subtotal - discount + service) * cfg.tax_rate / HUNDRED)
            total = round_money(subtotal - discount + service + tax)
        except (ArithmeticError, ValueError) as e:
            raise InvalidAmountError(sum(line_amounts, ZERO), "is out of range") from e

        logger.debug(
            "charges_computed",
            extra={
                "line_count": len(items),
                "subtotal": subtotal,
                "discount_amount": discount,
                "service_charge_amount": service,
                "tax_amount": tax,
                "total": total,
            },
        )

        return ChargeBreakdown(
            line_amounts=line_amounts,
            subtotal=subtotal,
            discount_amount=discount,
            service_charge_amount=service,
            tax_amount=tax,
            total=total,
            config=cfg,
        )
