"""
StampMint API v1 Router Aggregator.

This module combines all v1 endpoint routers into a single APIRouter for
registration with the main FastAPI application under the /api/v1 prefix.

Router Structure:
    - /mint: Mint catalog items, list and reconcile mint records
    - /pricing: Catalog item valuations and attribute quotes
    - /pin: Direct IPFS pinning of base64 images
    - /ledger: StampCoin supply, balances and distributions
"""

import logging

from fastapi import APIRouter

from stampmint.api.v1.ledger import router as ledger_router
from stampmint.api.v1.mint import router as mint_router
from stampmint.api.v1.pin import router as pin_router
from stampmint.api.v1.pricing import router as pricing_router


logger = logging.getLogger(__name__)

api_router = APIRouter()

ROUTERS: tuple[tuple[APIRouter, str], ...] = (
    (mint_router, "/mint"),
    (pricing_router, "/pricing"),
    (pin_router, "/pin"),
    (ledger_router, "/ledger"),
)

loaded_routers: list[str] = []

for router, prefix in ROUTERS:
    api_router.include_router(router, prefix=prefix)
    loaded_routers.append(prefix.lstrip("/"))

logger.debug("API v1 routers loaded: %s", ", ".join(loaded_routers))


__all__ = ["api_router", "loaded_routers"]
