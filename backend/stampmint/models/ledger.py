"""
StampCoin Ledger Models for StampMint.

This module defines the append-only CurrencyDistribution entries, the
singleton LedgerAggregate tracking supply against the hard cap, and the
per-holder CurrencyBalance maintained alongside every distribution.

Invariants maintained by the ledger service:
    circulating_supply <= max_supply
    circulating_supply == total_supply - burned_supply
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stampmint.models.common import ZERO, new_id, quantize_amount, utc_now


LEDGER_AGGREGATE_ID = "stampcoin"


class DistributionKind(str, Enum):
    """
    Kinds of ledger entries.

    Attributes:
        MINT_REWARD: StampCoin credited to the owner of a new mint.
        ADJUSTMENT: Administrative credit, subject to the same supply cap.
        BURN: StampCoin removed from circulation.
    """

    MINT_REWARD = "mint_reward"
    ADJUSTMENT = "adjustment"
    BURN = "burn"


class DistributionStatus(str, Enum):
    """Lifecycle state of a distribution; completed entries are immutable."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CurrencyDistribution(BaseModel):
    """
    One append-only ledger entry.

    ``amount`` is never negative; the ``kind`` decides its direction. A mint
    reward may be zero when the item is valued at zero.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id, alias="_id")
    user_id: str = Field(..., min_length=1, max_length=100)
    mint_record_id: str | None = Field(default=None)
    amount: Decimal = Field(..., ge=0)
    kind: DistributionKind
    status: DistributionStatus = Field(default=DistributionStatus.COMPLETED)
    memo: str = Field(default="", max_length=500)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, value: Decimal) -> Decimal:
        """Quantize to two decimal places."""
        return quantize_amount(value)


class LedgerAggregate(BaseModel):
    """Singleton supply counters for StampCoin."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default=LEDGER_AGGREGATE_ID, alias="_id")
    currency_name: str = "StampCoin"
    currency_symbol: str = "STMP"
    total_supply: Decimal = ZERO
    circulating_supply: Decimal = ZERO
    burned_supply: Decimal = ZERO
    max_supply: Decimal
    price_usd: Decimal
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def remaining_supply(self) -> Decimal:
        """StampCoin that can still be credited before the cap."""
        return max(self.max_supply - self.circulating_supply, ZERO)


class CurrencyBalance(BaseModel):
    """Running StampCoin balance of one holder."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str
    balance: Decimal = ZERO
    updated_at: datetime = Field(default_factory=utc_now)


class DistributionTotals(BaseModel):
    """Count and sum of distributions for one group key."""

    key: str
    count: int = 0
    total: Decimal = ZERO


class DistributionBreakdown(BaseModel):
    """Distribution totals grouped by kind and by status."""

    by_kind: list[DistributionTotals] = Field(default_factory=list)
    by_status: list[DistributionTotals] = Field(default_factory=list)

    @classmethod
    def from_groups(
        cls, by_kind: list[dict[str, Any]], by_status: list[dict[str, Any]]
    ) -> "DistributionBreakdown":
        """Build from ``{"_id": key, "count": n, "total": amount}`` group rows."""
        return cls(
            by_kind=[
                DistributionTotals(key=row["_id"], count=row["count"], total=quantize_amount(row["total"]))
                for row in by_kind
            ],
            by_status=[
                DistributionTotals(key=row["_id"], count=row["count"], total=quantize_amount(row["total"]))
                for row in by_status
            ],
        )


class LedgerEntryRequest(BaseModel):
    """Request body for an administrative adjustment or burn."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0, decimal_places=2, max_digits=18)
    memo: str = Field(default="", max_length=500)
