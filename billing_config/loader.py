"""
Settings Loader (``billing_config.loader``).

Parses a YAML settings file into ``BillingSettings``.  Runtime callers go
through ``billing_config.get_active_settings()``; this module is the
parsing layer underneath it and is used directly by tests.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import BillingSettings, SystemCurrency

_DECIMAL_FIELDS = (
    "tax_rate",
    "service_charge_percentage",
    "discount_percentage",
    "tax_rate_ceiling",
    "overpayment_tolerance",
)
_KNOWN_FIELDS = frozenset(
    _DECIMAL_FIELDS + ("payment_terms_days", "invoice_number_prefix", "system_currencies")
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields ``{}``."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """
    Parse a YAML scalar into Decimal via its string form.

    YAML floats such as ``0.5`` are read through ``str`` so no binary
    float error leaks into money settings.
    """
    if isinstance(value, bool):
        raise ValueError(f"{field_name}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{field_name}: expected a number, got {value!r}") from e


def parse_system_currency(data: dict[str, Any]) -> SystemCurrency:
    return SystemCurrency(
        code=str(data["code"]).upper(),
        name=data["name"],
        symbol=data.get("symbol") or str(data["code"]).upper(),
        exchange_rate=parse_decimal(data.get("exchange_rate", 1), "exchange_rate"),
        is_default=bool(data.get("is_default", False)),
    )


def parse_settings(data: dict[str, Any]) -> BillingSettings:
    """Build ``BillingSettings`` from a parsed mapping; absent keys keep defaults."""
    unknown = set(data) - _KNOWN_FIELDS
    if unknown:
        raise ValueError(f"Unknown billing settings: {sorted(unknown)}")

    kwargs: dict[str, Any] = {}
    for name in _DECIMAL_FIELDS:
        if name in data:
            kwargs[name] = parse_decimal(data[name], name)
    if "payment_terms_days" in data:
        kwargs["payment_terms_days"] = int(data["payment_terms_days"])
    if "invoice_number_prefix" in data:
        kwargs["invoice_number_prefix"] = str(data["invoice_number_prefix"])
    if "system_currencies" in data:
        kwargs["system_currencies"] = tuple(
            parse_system_currency(c) for c in data["system_currencies"] or ()
        )
    return BillingSettings(**kwargs)


def load_settings(path: Path) -> BillingSettings:
    return parse_settings(load_yaml_file(Path(path)))


def compute_checksum(settings: BillingSettings) -> str:
    """SHA-256 of the canonical JSON form of ``settings``."""
    canonical = json.dumps(asdict(settings), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
