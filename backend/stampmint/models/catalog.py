"""
Catalog Models for StampMint.

This module defines the CatalogItem model describing a physical stamp eligible
for tokenization, the rarity and condition vocabularies used by the pricing
tables, and the derived Valuation returned by the pricing engine.

Catalog items are created by catalog import and never mutated afterwards. The
rarity and condition fields are kept as free strings on purpose: unknown
values are legal input and resolve to the lowest multiplier at valuation time.
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stampmint.models.common import quantize_amount


class Rarity(str, Enum):
    """Rarity tiers, ordered from most to least common."""

    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    VERY_RARE = "very_rare"
    LEGENDARY = "legendary"


class Condition(str, Enum):
    """Condition grades, ordered from best to worst."""

    MINT = "mint"
    VERY_FINE = "very_fine"
    FINE = "fine"
    USED = "used"


class CatalogItem(BaseModel):
    """
    A catalogued physical stamp.

    Attributes:
        id: Catalog identifier (aliased from MongoDB _id).
        country: Issuing country, also the default serial scope.
        issue_year: Year of issue.
        denomination: Face value, either numeric or a numeric-prefixed string ("10c").
        condition: Condition grade (mint, very_fine, fine, used).
        rarity: Rarity tier (common ... legendary).
        title: Display title used as the token name.
        description: Descriptive text.
        image_ref: Primary image reference, an http(s) URL or a data: URI.
        designer: Optional stamp designer.
        catalog_number: Optional reference in a printed catalog (Scott, SG, ...).
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, frozen=True)

    id: str = Field(..., alias="_id", min_length=1, description="Catalog item identifier")
    country: str | None = Field(default=None, max_length=100)
    issue_year: int | None = Field(default=None, ge=1840, le=2100)
    denomination: Decimal | str | None = Field(default=None)
    condition: str | None = Field(default=None, max_length=50)
    rarity: str | None = Field(default=None, max_length=50)
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=5000)
    image_ref: str | None = Field(default=None, description="http(s) URL or data: URI")
    designer: str | None = Field(default=None, max_length=255)
    catalog_number: str | None = Field(default=None, max_length=100)


class Valuation(BaseModel):
    """
    Deterministic valuation of a catalog item in USD.

    Derived on demand from CatalogItem fields and never persisted on its own.
    ``final_value = round2(base_value * rarity_multiplier * condition_multiplier)``.
    """

    model_config = ConfigDict(frozen=True)

    base_value: Decimal = Field(..., ge=0)
    rarity: str
    rarity_multiplier: Decimal = Field(..., gt=0)
    condition: str
    condition_multiplier: Decimal = Field(..., gt=0)
    final_value: Decimal = Field(..., ge=0)

    @field_validator("final_value")
    @classmethod
    def validate_final_value(cls, value: Decimal) -> Decimal:
        """Final values always carry exactly two decimal places."""
        return quantize_amount(value)
