"""Utility functions for the payment calculator.

Helpers for turning user or database input into ``Decimal`` amounts and for
handling timestamps. All timestamps are naive UTC datetimes, which is what the
SQLite backend hands back.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, getcontext
from typing import Optional, Union

getcontext().prec = 28  # increase decimal precision to avoid rounding errors

CENT = Decimal("0.01")


def to_decimal(value: Union[str, int, float, Decimal, None]) -> Optional[Decimal]:
    """Convert a number or numeric string into a ``Decimal``.

    ``None`` and empty strings map to ``None``. Commas are stripped from
    strings. Floats are converted through ``str`` so ``0.1`` stays ``0.1``.
    Raises ``ValueError`` if conversion fails.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, int):
        return Decimal(value)
    cleaned = value.replace(",", "").strip()
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except Exception as exc:
        raise ValueError(f"Invalid numeric value: {value}") from exc


def money(value: Decimal) -> Decimal:
    """Round an amount to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: str) -> datetime:
    """Parse an ISO date (``YYYY-MM-DD``) or datetime string.

    Timezone-aware values are converted to naive UTC.
    """
    try:
        parsed = datetime.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid date: {value}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
