"""
billing_config -- single public entrypoint for billing settings.

Responsibility:
    Provides the only way to obtain settings at runtime through
    ``get_active_settings()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits above ``billing_kernel`` and below
    ``billing_modules``.  The kernel MUST NEVER import from
    ``billing_config``; ``billing_config.bridges`` translates settings into
    kernel and engine inputs.

Failure modes:
    - ``FileNotFoundError`` -- ``BILLING_CONFIG_PATH`` names a missing file.
    - ``ValueError`` -- unknown keys or out-of-range values.

Audit relevance:
    Every ``get_active_settings()`` call emits a ``BILLING_CONFIG_TRACE``
    log entry with the source path and settings checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from billing_config.bridges import build_charge_config, build_currency_seeds
from billing_config.loader import compute_checksum, load_settings, parse_settings
from billing_config.schema import BillingSettings, SystemCurrency

_logger = logging.getLogger("billing_kernel.config")

CONFIG_PATH_ENV = "BILLING_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"


def get_active_settings(path: Path | None = None) -> BillingSettings:
    """The only runtime settings entrypoint.

    Resolution order: explicit ``path``, then ``$BILLING_CONFIG_PATH``,
    then the packaged ``default.yaml``.
    """
    source = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    settings = load_settings(source)
    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "source": str(source),
            "checksum": compute_checksum(settings),
            "default_currency": settings.default_currency,
            "tax_rate": settings.tax_rate,
            "service_charge_percentage": settings.service_charge_percentage,
        },
    )
    return settings


__all__ = [
    "BillingSettings",
    "SystemCurrency",
    "build_charge_config",
    "build_currency_seeds",
    "compute_checksum",
    "get_active_settings",
    "load_settings",
    "parse_settings",
]
