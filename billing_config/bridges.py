"""
Config -> Kernel Bridges.

Functions that convert ``BillingSettings`` into the inputs the engines and
kernel services take.  They live here because the kernel must never import
billing_config.

Usage:
    from billing_config.bridges import build_charge_config, build_currency_seeds

    settings = get_active_settings()
    lifecycle = InvoiceLifecycleManager(
        session, actor_id, charge_defaults=build_charge_config(settings)
    )
    registry.seed_system_currencies(build_currency_seeds(settings))
"""

from __future__ import annotations

from billing_config.schema import BillingSettings
from billing_engines.charges import ChargeConfig
from billing_kernel.domain.currency import CurrencyInfo


def build_charge_config(settings: BillingSettings) -> ChargeConfig:
    """Hotel-wide charge defaults for the charge pipeline."""
    return ChargeConfig(
        discount_percentage=settings.discount_percentage,
        service_charge_percentage=settings.service_charge_percentage,
        tax_rate=settings.tax_rate,
        tax_rate_ceiling=settings.tax_rate_ceiling,
    )


def build_currency_seeds(settings: BillingSettings) -> tuple[CurrencyInfo, ...]:
    return tuple(
        CurrencyInfo(
            code=c.code,
            name=c.name,
            symbol=c.symbol,
            exchange_rate=c.exchange_rate,
            is_default=c.is_default,
            is_system=True,
        )
        for c in settings.system_currencies
    )
