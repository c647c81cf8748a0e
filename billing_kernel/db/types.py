"""
Module: billing_kernel.db.types
Responsibility: Portable exact-decimal column type used by every billing
    model for amounts and exchange rates.
Architecture position: Kernel > DB.  Imported by db/base.py and models/.
    MUST NOT import from models/, services/ or selectors/.

Invariants enforced:
    - No floats: amounts and rates round-trip as Decimal on every backend.
      PostgreSQL stores NUMERIC natively; SQLite has no exact numeric type,
      so values are persisted as their canonical string there.
    - Precision: amounts Numeric(38, 9), rates Numeric(38, 18).

Failure modes:
    - Arithmetic or ordering in SQL over ExactDecimal columns is not portable
      to SQLite (strings).  Selectors aggregate in Python.
"""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator


class ExactDecimal(TypeDecorator):
    """
    Decimal column stored as NUMERIC where available, TEXT on SQLite.

    Contract:
        Binds and returns ``Decimal`` on every dialect.

    Guarantees:
        - process_bind_param: Decimal -> str on SQLite, Decimal elsewhere.
        - process_result_value: always Decimal (or None).
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 38, scale: int = 9):
        super().__init__(precision=precision, scale=scale, asdecimal=True)
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(Numeric(self.precision, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))

