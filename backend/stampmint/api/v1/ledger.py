"""
StampMint Ledger API Router Module.

Endpoints:
    GET  /aggregate     - StampCoin supply counters (public)
    GET  /breakdown     - Distribution totals by kind and status
    GET  /balance       - The caller's StampCoin balance
    GET  /distributions - The caller's distribution history (paginated)
    POST /adjustments   - Grant an administrative credit (ledger admins)
    POST /burns         - Burn StampCoin from a holder (ledger admins)
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from stampmint.api.v1.dependencies import get_ledger_service
from stampmint.core.auth import get_current_principal, require_ledger_admin
from stampmint.models.ledger import (
    CurrencyBalance,
    CurrencyDistribution,
    DistributionBreakdown,
    DistributionKind,
    LedgerAggregate,
    LedgerEntryRequest,
)
from stampmint.services.ledger_service import LedgerService


router = APIRouter(tags=["ledger"])


class DistributionHistoryResponse(BaseModel):
    """Paginated distribution history."""

    distributions: list[CurrencyDistribution]
    total: int = Field(..., ge=0)
    skip: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=100)


@router.get("/aggregate", response_model=LedgerAggregate)
async def get_aggregate(service: LedgerService = Depends(get_ledger_service)) -> LedgerAggregate:
    """Current total, circulating and burned supply against the cap."""
    return await service.get_aggregate()


@router.get("/breakdown", response_model=DistributionBreakdown)
async def get_breakdown(
    _principal: dict[str, Any] = Depends(get_current_principal),
    service: LedgerService = Depends(get_ledger_service),
) -> DistributionBreakdown:
    """Distribution counts and totals grouped by kind and by status."""
    return await service.distribution_breakdown()


@router.get("/balance", response_model=CurrencyBalance)
async def get_balance(
    principal: dict[str, Any] = Depends(get_current_principal),
    service: LedgerService = Depends(get_ledger_service),
) -> CurrencyBalance:
    """The caller's StampCoin balance."""
    return await service.get_balance(principal["_id"])


@router.get("/distributions", response_model=DistributionHistoryResponse)
async def list_distributions(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    kind: DistributionKind | None = Query(default=None),
    principal: dict[str, Any] = Depends(get_current_principal),
    service: LedgerService = Depends(get_ledger_service),
) -> DistributionHistoryResponse:
    """The caller's distributions, newest first."""
    distributions, total = await service.list_distributions(
        principal["_id"], skip=skip, limit=limit, kind=kind
    )
    return DistributionHistoryResponse(
        distributions=distributions, total=total, skip=skip, limit=limit
    )


@router.post("/adjustments", response_model=CurrencyDistribution, status_code=status.HTTP_201_CREATED)
async def grant_adjustment(
    request: LedgerEntryRequest,
    _admin: dict[str, Any] = Depends(require_ledger_admin),
    service: LedgerService = Depends(get_ledger_service),
) -> CurrencyDistribution:
    """Credit a holder outside of minting; the supply cap still applies."""
    return await service.grant_adjustment(request.user_id, request.amount, request.memo)


@router.post("/burns", response_model=CurrencyDistribution, status_code=status.HTTP_201_CREATED)
async def burn(
    request: LedgerEntryRequest,
    _admin: dict[str, Any] = Depends(require_ledger_admin),
    service: LedgerService = Depends(get_ledger_service),
) -> CurrencyDistribution:
    """Remove StampCoin from a holder's balance and from circulation."""
    return await service.burn(request.user_id, request.amount, request.memo)
