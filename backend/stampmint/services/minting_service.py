"""
Minting Orchestration Service for StampMint.

Turns a catalog item into exactly one token record and its StampCoin reward.

Pipeline:
    1. Load the catalog item (NotFoundError if absent)
    2. Fast-path check for an existing mint record (AlreadyMintedError)
    3. Valuate with the pricing engine
    4. Pin the image and derived metadata (primary failure aborts with no writes)
    5. Allocate a serial in the item's country scope
    6. Convert the valuation to StampCoin at the ledger price
    7. One transaction: mint record + distribution + ledger credit
    8. Return the MintResult

Step 7 is the only step that writes minting state. Before step 6 nothing but
the serial counter is touched; step 6 may create the ledger aggregate.
The unique index on ``mint_records.catalog_item_id`` decides races between
concurrent mints of the same item; losers get AlreadyMintedError.
When step 7 fails, the serial allocated in step 5 stays consumed and is
logged as a gap.

Token records start with a placeholder identifier and are reconciled with
the on-chain token afterwards through ``reconcile_token``.
"""

import logging

from typing import Any

from stampmint.config import Settings
from stampmint.core.exceptions import (
    AlreadyMintedError,
    AlreadyReconciledError,
    MintingError,
    NotFoundError,
    UniqueConstraintError,
)
from stampmint.core.mint_store import MintStore, MintTransaction
from stampmint.models.catalog import CatalogItem, Valuation
from stampmint.models.common import utc_now
from stampmint.models.ledger import CurrencyDistribution, DistributionKind
from stampmint.models.mint import PLACEHOLDER_TOKEN_IDENTIFIER, MintRecord, MintResult
from stampmint.models.pinning import PinMetadata, PinSuccess
from stampmint.services.ledger_service import LedgerService, run_in_transaction
from stampmint.services.pinning_service import PinningService
from stampmint.services.pricing_service import PricingService
from stampmint.services.serial_service import SerialService
from stampmint.utils.logger import add_log_context


logger = logging.getLogger(__name__)


def build_nft_metadata(item: CatalogItem, valuation: Valuation) -> PinMetadata:
    """
    Derive OpenSea-style token metadata from a catalog item.

    Attributes are emitted only for fields the item actually carries.
    """
    attributes: list[dict[str, Any]] = []
    if item.country:
        attributes.append({"trait_type": "Country", "value": item.country})
    if item.issue_year:
        attributes.append({"trait_type": "Year", "value": item.issue_year, "display_type": "number"})
    if item.rarity:
        attributes.append({"trait_type": "Rarity", "value": item.rarity})
    if item.condition:
        attributes.append({"trait_type": "Condition", "value": item.condition})
    if item.denomination is not None and str(item.denomination).strip():
        attributes.append({"trait_type": "Denomination", "value": str(item.denomination)})
    if item.designer:
        attributes.append({"trait_type": "Designer", "value": item.designer})
    if item.catalog_number:
        attributes.append({"trait_type": "Catalog Number", "value": item.catalog_number})
    attributes.append({"trait_type": "Valuation (USD)", "value": str(valuation.final_value)})

    return PinMetadata(name=item.title, description=item.description, attributes=attributes)


class MintingService:
    """
    Orchestrates valuation, pinning, serial allocation and the mint transaction.

    Args:
        store: Mint store for catalog items, mint records and the ledger.
        settings: Settings with the commit retry policy.
        pricing: Pricing engine.
        serials: Serial allocator.
        pinning: Pinning adapter.
        ledger: Currency ledger.
    """

    def __init__(
        self,
        store: MintStore,
        settings: Settings,
        pricing: PricingService,
        serials: SerialService,
        pinning: PinningService,
        ledger: LedgerService,
    ) -> None:
        self._store = store
        self._settings = settings
        self._pricing = pricing
        self._serials = serials
        self._pinning = pinning
        self._ledger = ledger

    async def get_catalog_item(self, catalog_item_id: str) -> CatalogItem:
        """Load a catalog item or raise NotFoundError."""
        doc = await self._store.get_catalog_item(catalog_item_id)
        if doc is None:
            raise NotFoundError(
                f"Catalog item '{catalog_item_id}' not found", catalog_item_id=catalog_item_id
            )
        return CatalogItem.model_validate(doc)

    async def mint(
        self, catalog_item_id: str, owner_id: str, owner_address: str | None = None
    ) -> MintResult:
        """
        Mint a catalog item for an owner.

        The optional wallet address is stored on the record together with the
        configured contract address and network.

        Raises:
            NotFoundError: Unknown catalog item.
            AlreadyMintedError: The item already has a mint record.
            MediaValidationError: The item's image is missing or not acceptable.
            PinningFailedError: The primary pinning provider failed.
            SupplyExhaustedError: The reward would exceed the StampCoin cap.
            ContentionError: The serial counter or the ledger stayed contended.
        """
        ctx_logger = add_log_context(logger, catalog_item_id=catalog_item_id, owner_id=owner_id)

        item = await self.get_catalog_item(catalog_item_id)
        if await self._store.find_mint_record(catalog_item_id) is not None:
            raise AlreadyMintedError(
                f"Catalog item '{catalog_item_id}' has already been minted",
                catalog_item_id=catalog_item_id,
            )

        valuation = self._pricing.valuate(item)

        asset, declared_mime = await self._pinning.load_media(item.image_ref)
        pin_result = await self._pinning.pin(
            asset, declared_mime, build_nft_metadata(item, valuation), identifier=item.id
        )

        serial_number = await self._serials.allocate(item.country)

        # First write to the ledger happens only once pinning and allocation succeeded
        aggregate = await self._ledger.get_aggregate()
        amount = self._pricing.to_currency(valuation.final_value, aggregate.price_usd)

        secondary = pin_result.secondary
        record = MintRecord(
            catalog_item_id=item.id,
            serial_number=serial_number,
            owner_id=owner_id,
            owner_address=owner_address,
            contract_address=self._settings.nft_contract_address,
            blockchain_network=self._settings.blockchain_network,
            metadata_uri=pin_result.primary.metadata_uri,
            image_uri=pin_result.primary.uri,
            secondary_image_uri=secondary.uri if isinstance(secondary, PinSuccess) else None,
            final_value=valuation.final_value,
        )
        distribution = CurrencyDistribution(
            user_id=owner_id,
            mint_record_id=record.id,
            amount=amount,
            kind=DistributionKind.MINT_REWARD,
            memo=f"Mint reward for {serial_number}",
        )

        async def commit(tx: MintTransaction) -> None:
            await tx.insert_mint_record(record.model_dump(by_alias=True))
            await tx.insert_distribution(distribution.model_dump(by_alias=True))
            await self._ledger.credit(amount, tx, owner_id)

        try:
            await run_in_transaction(
                self._store,
                commit,
                max_attempts=self._settings.mint_commit_max_attempts,
                base_delay=self._settings.retry_base_delay_seconds,
                operation="mint_commit",
            )
        except UniqueConstraintError as e:
            # A retried commit collides on _id or catalog_item_id with its own earlier write
            existing = await self._store.find_mint_record(catalog_item_id)
            if existing is not None and existing.get("serial_number") == serial_number:
                ctx_logger.info(
                    "Mint commit confirmed after ambiguous result",
                    extra={"serial_number": serial_number, "field": e.field},
                )
            elif existing is not None:
                ctx_logger.warning(
                    "Lost mint race; serial %s left unused", serial_number,
                    extra={"serial_number": serial_number},
                )
                raise AlreadyMintedError(
                    f"Catalog item '{catalog_item_id}' has already been minted",
                    catalog_item_id=catalog_item_id,
                ) from e
            else:
                ctx_logger.error(
                    "Unexpected unique constraint violation on %s; serial %s left unused",
                    e.field,
                    serial_number,
                    extra={"serial_number": serial_number, "field": e.field},
                )
                raise
        except MintingError as e:
            ctx_logger.warning(
                "Mint commit failed (%s); serial %s left unused",
                e.kind,
                serial_number,
                extra={"serial_number": serial_number, "error_kind": e.kind},
            )
            raise

        ctx_logger.info(
            "Mint committed",
            extra={
                "serial_number": serial_number,
                "amount": amount,
                "final_value": valuation.final_value,
                "secondary_pin": secondary.status,
            },
        )

        return MintResult(
            mint_record=record,
            serial_number=serial_number,
            distributed_amount=amount,
            valuation=valuation,
            pin_result=pin_result,
        )

    async def reconcile_token(
        self, serial_number: str, token_identifier: str, transaction_hash: str | None = None
    ) -> MintRecord:
        """
        Record the on-chain token identifier of a mint, exactly once.

        Repeating the call with the same identifier returns the record
        unchanged.

        Raises:
            ValueError: If the identifier is the placeholder.
            NotFoundError: Unknown serial number.
            AlreadyReconciledError: The record carries a different identifier.
        """
        if token_identifier == PLACEHOLDER_TOKEN_IDENTIFIER:
            raise ValueError("The placeholder cannot be used as a token identifier")

        doc = await self._store.set_token_identifier(
            serial_number, token_identifier, transaction_hash, utc_now()
        )
        if doc is not None:
            logger.info(
                "Mint reconciled",
                extra={"serial_number": serial_number, "token_identifier": token_identifier},
            )
            return MintRecord.model_validate(doc)

        existing = await self._store.find_mint_record_by_serial(serial_number)
        if existing is None:
            raise NotFoundError(f"Mint '{serial_number}' not found", serial_number=serial_number)

        record = MintRecord.model_validate(existing)
        if record.token_identifier == token_identifier:
            return record
        raise AlreadyReconciledError(
            f"Mint '{serial_number}' is already reconciled with a different token",
            serial_number=serial_number,
        )

    async def get_mint(self, catalog_item_id: str) -> MintRecord:
        """Return the mint record of a catalog item or raise NotFoundError."""
        doc = await self._store.find_mint_record(catalog_item_id)
        if doc is None:
            raise NotFoundError(
                f"Catalog item '{catalog_item_id}' has not been minted",
                catalog_item_id=catalog_item_id,
            )
        return MintRecord.model_validate(doc)

    async def list_user_mints(
        self, owner_id: str, skip: int = 0, limit: int = 50
    ) -> tuple[list[MintRecord], int]:
        """List an owner's mint records, newest first, with the total count."""
        docs, total = await self._store.list_mint_records(owner_id, skip=skip, limit=limit)
        return [MintRecord.model_validate(doc) for doc in docs], total
