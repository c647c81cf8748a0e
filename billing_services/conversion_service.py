"""
ConversionService -- binds the pure conversion engine to live registry rates.

Responsibility:
    Every call takes a fresh snapshot of the currency registry and hands it
    to ``CurrencyConverter`` / ``format_money``.  Holding a converter across
    a rate change is therefore impossible through this service.

Architecture position:
    Services -- stateful wrapper over billing_engines.conversion and the
    kernel currency registry.  Read-only: never flushes.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from billing_engines.conversion import CurrencyConverter, format_money
from billing_kernel.domain.currency import CurrencyInfo
from billing_kernel.domain.values import Money
from billing_kernel.services.currency_registry import CurrencyRegistryService


class ConversionService:
    """Converts and formats amounts with the rates currently in the registry."""

    def __init__(self, session: Session, actor_id: UUID | None = None):
        self._registry = CurrencyRegistryService(session, actor_id)

    def rates(self) -> dict[str, CurrencyInfo]:
        return self._registry.rate_table()

    def converter(self) -> CurrencyConverter:
        """A converter over a snapshot taken now."""
        return CurrencyConverter(self.rates())

    def convert(self, amount: Decimal, from_code: str, to_code: str) -> Decimal:
        return self.converter().convert(amount, from_code, to_code)

    def format(self, amount: Decimal | int | str, code: str) -> str:
        return format_money(amount, code, self.rates())

    def display_amounts(self, amount: Decimal, code: str) -> tuple[Money, ...]:
        """``amount`` in every registered currency, base currency first."""
        return self.converter().display_amounts(amount, code)
