"""
FastAPI dependency providers for the StampMint API.

Routers receive services through these functions so that tests can swap
them with ``app.dependency_overrides``. Services are cheap to build; the
expensive resources (Motor client, settings) are process-wide singletons.
"""

import logging

from fastapi import Depends, HTTPException, status

from stampmint.config import Settings, get_settings
from stampmint.core.database import get_db_client
from stampmint.core.mint_store import MintStore, MongoMintStore
from stampmint.services.ledger_service import LedgerService
from stampmint.services.minting_service import MintingService
from stampmint.services.pinning_service import PinningService
from stampmint.services.pricing_service import PricingService
from stampmint.services.serial_service import SerialService


logger = logging.getLogger(__name__)


def get_mint_store() -> MintStore:
    """
    Build the MongoDB-backed mint store.

    Raises:
        HTTPException: With 503 status if the database client is not initialized.
    """
    try:
        return MongoMintStore(get_db_client())
    except RuntimeError as e:
        logger.exception("Database unavailable while building mint store")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database service unavailable",
        ) from e


def get_pricing_service() -> PricingService:
    return PricingService()


def get_serial_service(
    store: MintStore = Depends(get_mint_store),
    settings: Settings = Depends(get_settings),
) -> SerialService:
    return SerialService(store, settings)


def get_pinning_service(settings: Settings = Depends(get_settings)) -> PinningService:
    return PinningService(settings)


def get_ledger_service(
    store: MintStore = Depends(get_mint_store),
    settings: Settings = Depends(get_settings),
) -> LedgerService:
    return LedgerService(store, settings)


def get_minting_service(
    store: MintStore = Depends(get_mint_store),
    settings: Settings = Depends(get_settings),
    pricing: PricingService = Depends(get_pricing_service),
    serials: SerialService = Depends(get_serial_service),
    pinning: PinningService = Depends(get_pinning_service),
    ledger: LedgerService = Depends(get_ledger_service),
) -> MintingService:
    return MintingService(store, settings, pricing, serials, pinning, ledger)
