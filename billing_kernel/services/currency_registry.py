"""
CurrencyRegistryService -- the set of currencies and their rates to the base.

Responsibility:
    Creates, re-rates, promotes and deletes currencies.  Exactly one
    currency is the default (base) and carries rate 1; every other rate is
    units of that currency per one unit of the base.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Read by the
    conversion service; written by the BillingService facade.

Invariants enforced:
    - Exactly one default at rest, rate 1.  Enforced twice: the partial
      unique index on is_default, and an explicit clear-then-set sequence
      (the old default is cleared and flushed before the new one is set).
    - Rates are strictly positive, stored at 18 decimal places.
    - Promoting a currency rescales every rate by the new default's old
      rate, so every cross rate is preserved.
    - All mutations run under ``registry_lock()`` and take row locks on the
      rows they touch, so set_default and update_rate never interleave.

Failure modes:
    - DuplicateCurrencyError, InvalidRateError, InvalidCurrencyCodeError on
      create.
    - ImmutableBaseCurrencyError when re-rating the default.
    - ProtectedCurrencyError / CurrencyInUseError on delete.
    - CurrencyNotFoundError for unknown codes.

Audit relevance:
    Every rate change is logged with old and new values.  Invoices that were
    already issued are never re-derived; payment applications snapshot the
    rates they used.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select

from billing_kernel.domain.currency import CurrencyInfo, normalize_currency_code
from billing_kernel.domain.values import ONE, ZERO, quantize_rate, rescale_rate, to_decimal
from billing_kernel.exceptions import (
    CurrencyInUseError,
    CurrencyNotFoundError,
    DuplicateCurrencyError,
    ImmutableBaseCurrencyError,
    InvalidCurrencyCodeError,
    InvalidRateError,
    ProtectedCurrencyError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.currency import CurrencyModel
from billing_kernel.models.invoice import InvoiceModel
from billing_kernel.models.payment import PaymentModel
from billing_kernel.services.base import BaseService
from billing_kernel.services.locks import registry_lock

logger = get_logger("services.currency_registry")


def _validated_rate(code: str, rate: Decimal | int | str) -> Decimal:
    try:
        value = to_decimal(rate)
    except ValueError as e:
        raise InvalidRateError(code, rate) from e
    if value <= ZERO:
        raise InvalidRateError(code, rate)
    try:
        quantized = quantize_rate(value)
    except ValueError as e:
        raise InvalidRateError(code, rate) from e
    if quantized <= ZERO:
        raise InvalidRateError(code, rate)
    return quantized


class CurrencyRegistryService(BaseService[CurrencyModel]):
    """
    Write service for the currency registry.

    Contract:
        Every public method returns ``CurrencyInfo`` DTOs (or nothing) and
        leaves the session flushed, never committed.

    Guarantees:
        - After any successful call exactly one row has is_default=True and
          its exchange_rate is 1.

    Non-goals:
        - Does NOT fetch rates from an external feed.
    """

    entity_type = "Currency"

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _find(self, code: str, for_update: bool = False) -> CurrencyModel | None:
        stmt = select(CurrencyModel).where(CurrencyModel.code == code)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def _require(self, code: str, for_update: bool = False) -> CurrencyModel:
        try:
            normalized = normalize_currency_code(code)
        except InvalidCurrencyCodeError as e:
            raise CurrencyNotFoundError(str(code)) from e
        row = self._find(normalized, for_update=for_update)
        if row is None:
            raise CurrencyNotFoundError(normalized)
        return row

    def _default_row(self, for_update: bool = False) -> CurrencyModel | None:
        stmt = select(CurrencyModel).where(CurrencyModel.is_default.is_(True))
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self, code: str) -> CurrencyInfo:
        """Return the currency or raise CurrencyNotFoundError."""
        return self._require(code).to_dto()

    def get_default(self) -> CurrencyInfo:
        row = self._default_row()
        if row is None:
            raise CurrencyNotFoundError("<default>")
        return row.to_dto()

    def list_currencies(self) -> tuple[CurrencyInfo, ...]:
        rows = self.session.execute(
            select(CurrencyModel).order_by(CurrencyModel.code)
        ).scalars()
        return tuple(r.to_dto() for r in rows)

    def rate_table(self) -> dict[str, CurrencyInfo]:
        """Snapshot of every currency keyed by code."""
        return {c.code: c for c in self.list_currencies()}

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create(
        self,
        code: str,
        name: str,
        symbol: str,
        exchange_rate: Decimal | int | str,
        is_default: bool = False,
        is_system: bool = False,
    ) -> CurrencyInfo:
        """
        Register a currency.

        ``exchange_rate`` is relative to the current base.  With
        ``is_default=True`` the new currency is then promoted exactly as
        ``set_default`` would, ending at rate 1.  The first currency ever
        registered becomes the default regardless of the flag.
        """
        normalized = normalize_currency_code(code)
        rate = _validated_rate(normalized, exchange_rate)

        with registry_lock():
            if self._find(normalized) is not None:
                raise DuplicateCurrencyError(normalized)

            current_default = self._default_row(for_update=True)
            first = current_default is None

            row = CurrencyModel(
                code=normalized,
                name=name.strip(),
                symbol=symbol.strip() or normalized,
                exchange_rate=ONE if first else rate,
                is_default=first,
                is_system=is_system,
                created_by_id=self.actor_id,
            )
            self.session.add(row)
            self._flush(normalized)

            logger.info(
                "currency_created",
                extra={
                    "currency_code": normalized,
                    "exchange_rate": str(row.exchange_rate),
                    "is_default": row.is_default,
                    "is_system": is_system,
                },
            )

            if is_default and not first:
                return self.set_default(normalized)
            return row.to_dto()

    def update_rate(self, code: str, new_rate: Decimal | int | str) -> CurrencyInfo:
        """Change one currency's rate to the base."""
        with registry_lock():
            row = self._require(code, for_update=True)
            rate = _validated_rate(row.code, new_rate)
            if row.is_default:
                raise ImmutableBaseCurrencyError(row.code)

            old_rate = row.exchange_rate
            row.exchange_rate = rate
            row.updated_by_id = self.actor_id
            self._flush(row.code)

            logger.info(
                "currency_rate_updated",
                extra={
                    "currency_code": row.code,
                    "old_rate": str(old_rate),
                    "new_rate": str(rate),
                },
            )
            return row.to_dto()

    def set_default(self, code: str) -> CurrencyInfo:
        """
        Make ``code`` the base currency.

        Every rate is divided by the promoted currency's old rate; the
        promoted currency ends at exactly 1.  No-op if already default.
        """
        with registry_lock():
            target = self._require(code, for_update=True)
            if target.is_default:
                return target.to_dto()

            pivot = target.exchange_rate
            rows = list(
                self.session.execute(
                    select(CurrencyModel)
                    .order_by(CurrencyModel.code)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalars()
            )

            previous_default = None
            for row in rows:
                if row.is_default:
                    previous_default = row
                    row.is_default = False
                if row is not target:
                    try:
                        row.exchange_rate = rescale_rate(row.exchange_rate, pivot)
                    except ValueError as e:
                        raise InvalidRateError(row.code, row.exchange_rate) from e
                    row.updated_by_id = self.actor_id
            # Clear the old default before setting the new one so the
            # single-default index never sees two rows.
            self._flush(target.code)

            target.is_default = True
            target.exchange_rate = ONE
            target.updated_by_id = self.actor_id
            self._flush(target.code)

            logger.info(
                "currency_default_changed",
                extra={
                    "currency_code": target.code,
                    "previous_default": previous_default.code if previous_default else None,
                    "pivot_rate": str(pivot),
                    "rescaled": len(rows) - 1,
                },
            )
            return target.to_dto()

    def delete(self, code: str) -> None:
        """Remove an unused, unprotected currency."""
        with registry_lock():
            row = self._require(code, for_update=True)
            if row.is_system:
                raise ProtectedCurrencyError(row.code, "system currency")
            if row.is_default:
                raise ProtectedCurrencyError(row.code, "default currency")

            invoice_count = self.session.execute(
                select(func.count()).select_from(InvoiceModel).where(
                    InvoiceModel.currency == row.code
                )
            ).scalar_one()
            payment_count = self.session.execute(
                select(func.count()).select_from(PaymentModel).where(
                    PaymentModel.currency == row.code
                )
            ).scalar_one()
            if invoice_count or payment_count:
                raise CurrencyInUseError(row.code, invoice_count, payment_count)

            self.session.delete(row)
            self._flush(row.code)
            logger.info("currency_deleted", extra={"currency_code": row.code})

    def seed_system_currencies(self, seeds: Sequence[CurrencyInfo]) -> tuple[CurrencyInfo, ...]:
        """
        Ensure the system currencies exist (idempotent).

        The seed flagged ``is_default`` is created first so the others'
        rates are read against it.  Existing codes are left untouched.
        """
        ordered = sorted(seeds, key=lambda s: not s.is_default)
        created = []
        with registry_lock():
            for seed in ordered:
                if self._find(normalize_currency_code(seed.code)) is not None:
                    continue
                created.append(
                    self.create(
                        code=seed.code,
                        name=seed.name,
                        symbol=seed.symbol,
                        exchange_rate=seed.exchange_rate,
                        is_default=seed.is_default,
                        is_system=True,
                    )
                )
        if created:
            logger.info(
                "system_currencies_seeded",
                extra={"codes": [c.code for c in created]},
            )
        return tuple(created)


__all__ = ["CurrencyRegistryService"]
