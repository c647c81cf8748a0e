"""
Tests for CurrencyRegistryService.

Covers:
- Registration and its validation
- The single-default invariant
- Rescaling every rate when the base currency changes
- Protected and in-use deletion
- Idempotent seeding
"""

from decimal import Decimal

import pytest

from billing_config.bridges import build_currency_seeds
from billing_engines.charges import LineItem
from billing_kernel.exceptions import (
    CurrencyInUseError,
    CurrencyNotFoundError,
    DuplicateCurrencyError,
    ImmutableBaseCurrencyError,
    InvalidCurrencyCodeError,
    InvalidRateError,
    ProtectedCurrencyError,
)


def _defaults(registry):
    return [c.code for c in registry.list_currencies() if c.is_default]


class TestCreate:
    def test_first_currency_becomes_default(self, registry):
        eur = registry.create("eur", "Euro", "€", Decimal("0.90"))
        assert eur.code == "EUR"
        assert eur.is_default
        assert eur.exchange_rate == Decimal("1")

    def test_second_currency_keeps_rate(self, seeded_registry):
        eur = seeded_registry.create("EUR", "Euro", "€", Decimal("0.90"))
        assert not eur.is_default
        assert eur.exchange_rate == Decimal("0.90")
        assert _defaults(seeded_registry) == ["USD"]

    def test_duplicate_code(self, seeded_registry):
        with pytest.raises(DuplicateCurrencyError):
            seeded_registry.create("usd", "Dollar again", "$", Decimal("1"))

    @pytest.mark.parametrize("rate", [Decimal("0"), Decimal("-3"), "abc", Decimal("1E-30")])
    def test_invalid_rate(self, seeded_registry, rate):
        with pytest.raises(InvalidRateError):
            seeded_registry.create("EUR", "Euro", "€", rate)

    def test_invalid_code(self, seeded_registry):
        with pytest.raises(InvalidCurrencyCodeError):
            seeded_registry.create("EURO", "Euro", "€", Decimal("0.9"))

    def test_blank_symbol_falls_back_to_code(self, seeded_registry):
        kes = seeded_registry.create("KES", "Kenyan Shilling", " ", Decimal("129"))
        assert kes.symbol == "KES"

    def test_create_as_default_promotes(self, seeded_registry):
        gbp = seeded_registry.create("GBP", "Pound", "£", Decimal("0.80"), is_default=True)
        assert gbp.is_default
        assert gbp.exchange_rate == Decimal("1")
        assert seeded_registry.get("USD").exchange_rate == Decimal("1.25")
        assert _defaults(seeded_registry) == ["GBP"]


class TestUpdateRate:
    def test_update(self, seeded_registry, captured_logs):
        ugx = seeded_registry.update_rate("ugx", Decimal("3900"))
        assert ugx.exchange_rate == Decimal("3900")
        records = [r for r in captured_logs() if r["message"] == "currency_rate_updated"]
        assert records[0]["old_rate"] == "3800.000000000000000000"

    def test_base_rate_is_immutable(self, seeded_registry):
        with pytest.raises(ImmutableBaseCurrencyError):
            seeded_registry.update_rate("USD", Decimal("2"))

    def test_non_positive_rate(self, seeded_registry):
        with pytest.raises(InvalidRateError):
            seeded_registry.update_rate("UGX", Decimal("0"))

    def test_unknown_currency(self, seeded_registry):
        with pytest.raises(CurrencyNotFoundError):
            seeded_registry.update_rate("XYZ", Decimal("1"))


class TestSetDefault:
    def test_rescales_every_rate(self, seeded_registry):
        """USD 1 / EUR 0.90 -> EUR 1 / USD 1.111..., cross rates preserved."""
        seeded_registry.create("EUR", "Euro", "€", Decimal("0.90"))
        eur = seeded_registry.set_default("EUR")

        assert eur.is_default
        assert eur.exchange_rate == Decimal("1")
        assert seeded_registry.get("USD").exchange_rate == Decimal("1.111111111111111111")
        assert seeded_registry.get("UGX").exchange_rate == Decimal("4222.222222222222222222")
        assert _defaults(seeded_registry) == ["EUR"]

    def test_already_default_is_noop(self, seeded_registry):
        before = seeded_registry.rate_table()
        seeded_registry.set_default("USD")
        assert seeded_registry.rate_table() == before

    def test_round_trip_stays_within_rate_precision(self, seeded_registry):
        seeded_registry.set_default("UGX")
        seeded_registry.set_default("USD")
        assert seeded_registry.get("USD").exchange_rate == Decimal("1")
        drift = abs(seeded_registry.get("UGX").exchange_rate - Decimal("3800"))
        assert drift < Decimal("1E-9")

    def test_unknown_currency(self, seeded_registry):
        with pytest.raises(CurrencyNotFoundError):
            seeded_registry.set_default("XYZ")

    def test_get_default(self, seeded_registry):
        seeded_registry.set_default("UGX")
        assert seeded_registry.get_default().code == "UGX"


class TestDelete:
    def test_delete_unused(self, seeded_registry):
        seeded_registry.create("EUR", "Euro", "€", Decimal("0.90"))
        seeded_registry.delete("EUR")
        with pytest.raises(CurrencyNotFoundError):
            seeded_registry.get("EUR")

    def test_system_currency_protected(self, seeded_registry):
        with pytest.raises(ProtectedCurrencyError) as exc:
            seeded_registry.delete("UGX")
        assert exc.value.reason == "system currency"

    def test_default_currency_protected(self, registry):
        registry.create("EUR", "Euro", "€", Decimal("1"))
        with pytest.raises(ProtectedCurrencyError) as exc:
            registry.delete("EUR")
        assert exc.value.reason == "default currency"

    def test_in_use_by_invoice(self, seeded_registry, lifecycle):
        seeded_registry.create("EUR", "Euro", "€", Decimal("0.90"))
        lifecycle.create_draft("GUEST-1", "EUR", [LineItem("Room", Decimal("1"), Decimal("90"))])
        with pytest.raises(CurrencyInUseError) as exc:
            seeded_registry.delete("EUR")
        assert exc.value.invoice_count == 1
        assert exc.value.payment_count == 0

    def test_in_use_by_payment(self, seeded_registry, reconciliation):
        seeded_registry.create("EUR", "Euro", "€", Decimal("0.90"))
        reconciliation.record_payment(Decimal("20"), "EUR", "cash", "GUEST-1", is_deposit=True)
        with pytest.raises(CurrencyInUseError) as exc:
            seeded_registry.delete("EUR")
        assert exc.value.payment_count == 1


class TestSeeding:
    def test_seeds_system_currencies(self, seeded_registry):
        table = seeded_registry.rate_table()
        assert set(table) == {"USD", "UGX"}
        assert table["USD"].is_default
        assert all(c.is_system for c in table.values())

    def test_seeding_twice_is_idempotent(self, seeded_registry, settings):
        seeded_registry.update_rate("UGX", Decimal("3700"))
        created = seeded_registry.seed_system_currencies(build_currency_seeds(settings))
        assert created == ()
        assert seeded_registry.get("UGX").exchange_rate == Decimal("3700")
