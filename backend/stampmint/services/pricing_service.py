"""
Stamp Pricing Service for StampMint.

Deterministic valuation of catalog items. The formula is:

    final_value = round2(base_value * rarity_multiplier * condition_multiplier)

Where:
    - base_value: Numeric face value parsed from the denomination ("10",
      10, "10c" all give 10; "1/2d" gives 0.5). Unparsable or negative
      denominations give 0.
    - rarity_multiplier: common 1.0, uncommon 1.5, rare 3.0,
      very_rare 7.0, legendary 15.0
    - condition_multiplier: mint 1.2, very_fine 1.0, fine 0.8, used 0.5

Unknown or missing rarity/condition values resolve to the lowest multiplier
in their table. All arithmetic uses Decimal and the final rounding
(ROUND_HALF_UP, two places) is the only rounding step.
A positive face value never values at zero: a result that rounds to 0.00
is raised to 0.01.

Example:
    >>> engine = PricingService()
    >>> engine.quote(denomination="10", rarity="rare", condition="mint").final_value
    Decimal('36.00')
    >>> engine.to_currency(Decimal("36.00"), Decimal("0.10"))
    Decimal('360.00')
"""

import logging
import re

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from stampmint.models.catalog import CatalogItem, Condition, Rarity, Valuation
from stampmint.models.common import DECIMAL_PRECISION, ZERO, quantize_amount


logger = logging.getLogger(__name__)

RARITY_MULTIPLIERS: dict[str, Decimal] = {
    Rarity.COMMON.value: Decimal("1.0"),
    Rarity.UNCOMMON.value: Decimal("1.5"),
    Rarity.RARE.value: Decimal("3.0"),
    Rarity.VERY_RARE.value: Decimal("7.0"),
    Rarity.LEGENDARY.value: Decimal("15.0"),
}

CONDITION_MULTIPLIERS: dict[str, Decimal] = {
    Condition.MINT.value: Decimal("1.2"),
    Condition.VERY_FINE.value: Decimal("1.0"),
    Condition.FINE.value: Decimal("0.8"),
    Condition.USED.value: Decimal("0.5"),
}

# Leading fraction, optionally mixed: "1/2d", "1 1/2 anna"
_LEADING_FRACTION = re.compile(r"^\s*(?:(\d+)\s+)?(\d+)\s*/\s*(\d+)")

# Leading number of a denomination string such as "10", "2.5d" or "25 cents"
_LEADING_NUMBER = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")


def parse_denomination(denomination: Any) -> Decimal:
    """
    Parse a denomination into a non-negative Decimal face value.

    Plain and mixed fractions ("1/2", "1 1/2d") are supported.

    Returns ZERO for missing, unparsable, non-finite or negative values.
    """
    if denomination is None or isinstance(denomination, bool):
        return ZERO

    if isinstance(denomination, Decimal | int | float):
        try:
            value = Decimal(str(denomination))
        except InvalidOperation:
            return ZERO
    else:
        text = str(denomination)
        fraction = _LEADING_FRACTION.match(text)
        if fraction is not None:
            whole, numerator, denominator = fraction.groups()
            if int(denominator) == 0:
                return ZERO
            value = Decimal(whole or 0) + Decimal(numerator) / Decimal(denominator)
        else:
            match = _LEADING_NUMBER.match(text)
            if match is None:
                return ZERO
            value = Decimal(match.group(1))

    if not value.is_finite() or value < 0:
        return ZERO
    return value


def _normalize_key(value: str | None) -> str:
    if not value:
        return ""
    return value.strip().lower().replace(" ", "_").replace("-", "_")


class PricingService:
    """
    Pure pricing engine; no I/O and no randomness.

    Args:
        rarity_multipliers: Override for the rarity table.
        condition_multipliers: Override for the condition table.
    """

    def __init__(
        self,
        rarity_multipliers: Mapping[str, Decimal] | None = None,
        condition_multipliers: Mapping[str, Decimal] | None = None,
    ) -> None:
        self._rarity = {
            _normalize_key(k): Decimal(str(v))
            for k, v in (rarity_multipliers or RARITY_MULTIPLIERS).items()
        }
        self._condition = {
            _normalize_key(k): Decimal(str(v))
            for k, v in (condition_multipliers or CONDITION_MULTIPLIERS).items()
        }
        if not self._rarity or not self._condition:
            raise ValueError("Multiplier tables cannot be empty")

    @staticmethod
    def _lookup(table: dict[str, Decimal], value: str | None) -> tuple[str, Decimal]:
        key = _normalize_key(value)
        if key in table:
            return key, table[key]
        # Unknown values take the lowest multiplier of the table
        fallback_key = min(table, key=lambda k: table[k])
        return fallback_key, table[fallback_key]

    def quote(
        self,
        denomination: Any = None,
        rarity: str | None = None,
        condition: str | None = None,
    ) -> Valuation:
        """
        Value a set of loose stamp attributes.

        Never raises for bad attributes: they degrade to a zero base or to
        the lowest multiplier.
        """
        base_value = parse_denomination(denomination)
        rarity_key, rarity_multiplier = self._lookup(self._rarity, rarity)
        condition_key, condition_multiplier = self._lookup(self._condition, condition)

        final_value = quantize_amount(base_value * rarity_multiplier * condition_multiplier)
        if final_value == ZERO and base_value > 0:
            # Sub-cent valuations of a real face value take the smallest unit
            final_value = DECIMAL_PRECISION

        return Valuation(
            base_value=base_value,
            rarity=rarity_key,
            rarity_multiplier=rarity_multiplier,
            condition=condition_key,
            condition_multiplier=condition_multiplier,
            final_value=final_value,
        )

    def valuate(self, item: CatalogItem) -> Valuation:
        """Value a catalog item from its denomination, rarity and condition."""
        valuation = self.quote(item.denomination, item.rarity, item.condition)
        logger.debug(
            "Valuated catalog item %s",
            item.id,
            extra={"catalog_item_id": item.id, "final_value": valuation.final_value},
        )
        return valuation

    @staticmethod
    def to_currency(final_value: Decimal, price_usd: Decimal) -> Decimal:
        """
        Convert a USD value into StampCoin at ``price_usd`` per coin.

        Raises:
            ValueError: If the price is not positive.
        """
        if price_usd <= 0:
            raise ValueError("StampCoin price must be positive")
        return quantize_amount(Decimal(final_value) / Decimal(price_usd))
