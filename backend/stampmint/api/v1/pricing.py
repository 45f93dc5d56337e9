"""
StampMint Pricing API Router Module.

Endpoints:
    GET  /catalog/{catalog_item_id} - Valuation of a catalog item
    POST /quote                     - Valuation of loose stamp attributes

Both responses include the StampCoin amount a mint would distribute at the
current ledger price.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from stampmint.api.v1.dependencies import (
    get_ledger_service,
    get_minting_service,
    get_pricing_service,
)
from stampmint.models.catalog import Valuation
from stampmint.services.ledger_service import LedgerService
from stampmint.services.minting_service import MintingService
from stampmint.services.pricing_service import PricingService


router = APIRouter(tags=["pricing"])


class QuoteRequest(BaseModel):
    """Loose stamp attributes to price."""

    denomination: Decimal | str | None = Field(default=None, examples=["10", "2.5d"])
    rarity: str | None = Field(default=None, max_length=50, examples=["rare"])
    condition: str | None = Field(default=None, max_length=50, examples=["mint"])


class QuoteResponse(BaseModel):
    """Valuation with its StampCoin equivalent."""

    valuation: Valuation
    stampcoin_amount: Decimal = Field(..., description="StampCoin a mint would distribute")
    price_usd: Decimal = Field(..., description="USD price of one StampCoin")


async def _build_quote(
    valuation: Valuation, pricing: PricingService, ledger: LedgerService
) -> QuoteResponse:
    aggregate = await ledger.get_aggregate()
    return QuoteResponse(
        valuation=valuation,
        stampcoin_amount=pricing.to_currency(valuation.final_value, aggregate.price_usd),
        price_usd=aggregate.price_usd,
    )


@router.get("/catalog/{catalog_item_id}", response_model=QuoteResponse)
async def price_catalog_item(
    catalog_item_id: str,
    minting: MintingService = Depends(get_minting_service),
    pricing: PricingService = Depends(get_pricing_service),
    ledger: LedgerService = Depends(get_ledger_service),
) -> QuoteResponse:
    """Value a catalog item."""
    item = await minting.get_catalog_item(catalog_item_id)
    return await _build_quote(pricing.valuate(item), pricing, ledger)


@router.post("/quote", response_model=QuoteResponse)
async def quote(
    request: QuoteRequest,
    pricing: PricingService = Depends(get_pricing_service),
    ledger: LedgerService = Depends(get_ledger_service),
) -> QuoteResponse:
    """Value loose attributes; unknown rarity or condition use the lowest multiplier."""
    valuation = pricing.quote(request.denomination, request.rarity, request.condition)
    return await _build_quote(valuation, pricing, ledger)
