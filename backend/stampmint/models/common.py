"""
Shared helpers for StampMint models.

Monetary values use Decimal quantized to two places with ROUND_HALF_UP so that
valuations and ledger amounts never accumulate floating-point error.
"""

import uuid

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any


# Decimal precision for monetary and currency values (2 decimal places)
DECIMAL_PRECISION = Decimal("0.01")

ZERO = Decimal("0.00")


def quantize_amount(value: Any) -> Decimal:
    """
    Convert a value to a Decimal rounded to two places.

    Args:
        value: Decimal, int, float or numeric string.

    Returns:
        Decimal quantized to DECIMAL_PRECISION.

    Raises:
        ValueError: If the value cannot be interpreted as a number.
    """
    try:
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return value.quantize(DECIMAL_PRECISION, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid amount format: {value!r}") from e


def new_id() -> str:
    """Generate a string identifier for new documents."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Current UTC timestamp."""
    return datetime.now(UTC)
