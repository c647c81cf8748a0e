"""
Pure billing engines: currency conversion/formatting and the charge pipeline.

Engines take every input as a parameter (rates, percentages, lines) and do
no I/O.  Stateful orchestration lives in ``billing_services``.
"""

from billing_engines.charges import (
    ChargeBreakdown,
    ChargeCalculator,
    ChargeConfig,
    LineItem,
)
from billing_engines.conversion import CurrencyConverter, format_money, round_money

__all__ = [
    "ChargeBreakdown",
    "ChargeCalculator",
    "ChargeConfig",
    "CurrencyConverter",
    "LineItem",
    "format_money",
    "round_money",
]
