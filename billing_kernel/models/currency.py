"""
CurrencyModel -- the registry's persisted rows.

Invariants enforced:
    - code is unique and never changes after insert.
    - At most one row has is_default = true (partial unique index
      uq_currencies_single_default); the registry service keeps exactly one.
    - exchange_rate > 0 (ck_currencies_rate_positive on PostgreSQL; the
      registry validates on every backend).
"""

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase
from billing_kernel.db.types import ExactDecimal
from billing_kernel.domain.currency import CurrencyInfo


class CurrencyModel(TrackedBase):
    """
    ORM model for a registered currency.

    ``exchange_rate`` is units of this currency per one unit of the base
    currency and is stored at 18 decimal places.
    """

    __tablename__ = "currencies"

    __table_args__ = (
        Index("uq_currencies_code", "code", unique=True),
        Index(
            "uq_currencies_single_default",
            "is_default",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
        CheckConstraint("exchange_rate > 0", name="ck_currencies_rate_positive").ddl_if(
            dialect="postgresql"
        ),
    )

    code: Mapped[str] = mapped_column(String(3), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    symbol: Mapped[str] = mapped_column(String(10), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(ExactDecimal(38, 18), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> CurrencyInfo:
        return CurrencyInfo(
            code=self.code,
            name=self.name,
            symbol=self.symbol,
            exchange_rate=self.exchange_rate,
            is_default=self.is_default,
            is_system=self.is_system,
        )

    def __repr__(self) -> str:
        return f"<CurrencyModel {self.code} rate={self.exchange_rate} default={self.is_default}>"
