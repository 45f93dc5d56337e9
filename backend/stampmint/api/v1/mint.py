"""
StampMint Mint API Router Module.

Endpoints:
    POST /                          - Mint a catalog item for the caller
    GET  /mine                      - List the caller's mint records
    GET  /{catalog_item_id}         - Get the mint record of a catalog item
    POST /{serial_number}/reconcile - Attach the on-chain token identifier

Minting errors are rendered by the application-level MintingError handler.
"""

import logging

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from stampmint.api.v1.dependencies import get_minting_service
from stampmint.core.auth import get_current_principal
from stampmint.models.mint import MintRecord, MintRequest, MintResult, ReconcileRequest
from stampmint.services.minting_service import MintingService


logger = logging.getLogger(__name__)


# =============================================================================
# Router Configuration
# =============================================================================

router = APIRouter(tags=["mint"])


# =============================================================================
# Response Models
# =============================================================================


class MintListResponse(BaseModel):
    """Paginated list of mint records."""

    mints: list[MintRecord] = Field(..., description="Mint records for the current page")
    total: int = Field(..., ge=0, description="Total number of mint records")
    skip: int = Field(..., ge=0, description="Number of records skipped (offset)")
    limit: int = Field(..., ge=1, le=100, description="Maximum records per page")


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=MintResult, status_code=status.HTTP_201_CREATED)
async def mint_catalog_item(
    request: MintRequest,
    principal: dict[str, Any] = Depends(get_current_principal),
    service: MintingService = Depends(get_minting_service),
) -> MintResult:
    """
    Mint a catalog item.

    The caller becomes the owner of the mint record and receives the
    StampCoin reward.
    """
    logger.info(
        "Mint requested",
        extra={"catalog_item_id": request.catalog_item_id, "owner_id": principal["_id"]},
    )
    return await service.mint(request.catalog_item_id, principal["_id"], request.wallet_address)


@router.get("/mine", response_model=MintListResponse)
async def list_my_mints(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    principal: dict[str, Any] = Depends(get_current_principal),
    service: MintingService = Depends(get_minting_service),
) -> MintListResponse:
    """List the caller's mint records, newest first."""
    mints, total = await service.list_user_mints(principal["_id"], skip=skip, limit=limit)
    return MintListResponse(mints=mints, total=total, skip=skip, limit=limit)


@router.get("/{catalog_item_id}", response_model=MintRecord)
async def get_mint(
    catalog_item_id: str,
    _principal: dict[str, Any] = Depends(get_current_principal),
    service: MintingService = Depends(get_minting_service),
) -> MintRecord:
    """Get the mint record of a catalog item."""
    return await service.get_mint(catalog_item_id)


@router.post("/{serial_number}/reconcile", response_model=MintRecord)
async def reconcile_mint(
    serial_number: str,
    request: ReconcileRequest,
    _principal: dict[str, Any] = Depends(get_current_principal),
    service: MintingService = Depends(get_minting_service),
) -> MintRecord:
    """Record the on-chain token identifier of a mint; repeatable with the same value."""
    return await service.reconcile_token(
        serial_number, request.token_identifier, request.transaction_hash
    )
