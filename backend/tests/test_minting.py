"""
Tests for the minting orchestrator.

Runs the full pipeline (valuation, pinning, serial allocation and the
commit transaction) against the in-memory store and scripted providers.
"""

import asyncio
import logging

from decimal import Decimal

import pytest

from stampmint.core.exceptions import (
    AlreadyMintedError,
    AlreadyReconciledError,
    ContentionError,
    MediaValidationError,
    NotFoundError,
    PinningFailedError,
    SupplyExhaustedError,
)
from stampmint.models.catalog import CatalogItem
from stampmint.models.ledger import DistributionKind
from stampmint.models.mint import PLACEHOLDER_TOKEN_IDENTIFIER
from stampmint.models.pinning import PinSkipped, PinSuccess
from stampmint.services.ledger_service import LedgerService
from stampmint.services.minting_service import MintingService, build_nft_metadata
from stampmint.services.pinning_service import PinningService
from stampmint.services.serial_service import SerialService

from conftest import FakePinProvider


@pytest.fixture
def build_minting_service(store, pricing_service):
    """Wire a MintingService for custom settings and providers."""

    def build(settings, primary=None, secondary=None):
        pinning = PinningService(
            settings,
            primary=primary or FakePinProvider("nft_storage"),
            secondary=secondary or FakePinProvider("pinata", configured=False),
        )
        return MintingService(
            store,
            settings,
            pricing_service,
            SerialService(store, settings),
            pinning,
            LedgerService(store, settings),
        )

    return build


# ==============================================================================
# Metadata
# ==============================================================================


class TestBuildNftMetadata:
    """Tests for build_nft_metadata."""

    def test_attributes(self, catalog_item, pricing_service):
        item = CatalogItem.model_validate(catalog_item)
        metadata = build_nft_metadata(item, pricing_service.valuate(item))

        assert metadata.name == item.title
        traits = {attribute["trait_type"]: attribute["value"] for attribute in metadata.attributes}
        assert traits["Country"] == "France"
        assert traits["Year"] == 1903
        assert traits["Rarity"] == "rare"
        assert traits["Condition"] == "mint"
        assert traits["Denomination"] == "10"
        assert traits["Designer"] == "Louis-Oscar Roty"
        assert traits["Valuation (USD)"] == "36.00"

    def test_missing_fields_omitted(self, pricing_service):
        item = CatalogItem(_id="bare", title="Bare stamp")
        metadata = build_nft_metadata(item, pricing_service.valuate(item))

        assert [attribute["trait_type"] for attribute in metadata.attributes] == ["Valuation (USD)"]


# ==============================================================================
# Mint Pipeline
# ==============================================================================


class TestMint:
    """Tests for MintingService.mint."""

    @pytest.mark.asyncio
    async def test_mint_success(self, minting_service, catalog_item, owner_id, store, primary_provider):
        result = await minting_service.mint("stamp-001", owner_id)

        assert result.serial_number == "FRANCE-000001"
        assert result.valuation.final_value == Decimal("36.00")
        assert result.distributed_amount == Decimal("360.00")
        assert isinstance(result.pin_result.primary, PinSuccess)
        assert isinstance(result.pin_result.secondary, PinSkipped)

        record = result.mint_record
        assert record.catalog_item_id == "stamp-001"
        assert record.owner_id == owner_id
        assert record.token_identifier == PLACEHOLDER_TOKEN_IDENTIFIER
        assert record.is_reconciled is False
        assert record.image_uri == result.pin_result.primary.uri
        assert record.metadata_uri == result.pin_result.primary.metadata_uri
        assert record.secondary_image_uri is None
        assert record.owner_address is None
        assert record.contract_address is None
        assert record.blockchain_network == "polygon"

        assert primary_provider.calls[0]["identifier"] == "stamp-001"

        assert len(store.mint_records) == 1
        assert len(store.distributions) == 1
        distribution = store.distributions[0]
        assert distribution["kind"] == DistributionKind.MINT_REWARD
        assert distribution["amount"] == Decimal("360.00")
        assert distribution["mint_record_id"] == record.id
        assert distribution["memo"] == "Mint reward for FRANCE-000001"
        assert store.balances[owner_id]["balance"] == Decimal("360.00")
        assert store.ledger_aggregate["circulating_supply"] == Decimal("360.00")

    @pytest.mark.asyncio
    async def test_wallet_and_contract_recorded(
        self, build_minting_service, settings_factory, catalog_item, owner_id, store
    ):
        service = build_minting_service(
            settings_factory(
                nft_contract_address="0xContract00000000000000000000000000000001",
                blockchain_network="arbitrum",
            )
        )

        result = await service.mint("stamp-001", owner_id, "0xWallet000000000000000000000000000000000042")

        stored = store.mint_records[result.mint_record.id]
        assert stored["owner_address"] == "0xWallet000000000000000000000000000000000042"
        assert stored["contract_address"] == "0xContract00000000000000000000000000000001"
        assert stored["blockchain_network"] == "arbitrum"

    @pytest.mark.asyncio
    async def test_secondary_image_uri_recorded(self, build_minting_service, test_settings, catalog_item, owner_id):
        service = build_minting_service(test_settings, secondary=FakePinProvider("pinata"))

        result = await service.mint("stamp-001", owner_id)

        assert result.mint_record.secondary_image_uri == result.pin_result.secondary.uri

    @pytest.mark.asyncio
    async def test_secondary_failure_does_not_block(self, build_minting_service, test_settings, catalog_item, owner_id):
        service = build_minting_service(test_settings, secondary=FakePinProvider("pinata", fail=True))

        result = await service.mint("stamp-001", owner_id)

        assert result.pin_result.secondary_failed is True
        assert result.mint_record.secondary_image_uri is None

    @pytest.mark.asyncio
    async def test_serials_are_scoped_by_country(self, minting_service, catalog_item_factory, owner_id):
        catalog_item_factory("fr-1")
        catalog_item_factory("fr-2")
        catalog_item_factory("jp-1", country="Japan")
        catalog_item_factory("xx-1", country=None)

        serials = [
            (await minting_service.mint(item_id, owner_id)).serial_number
            for item_id in ("fr-1", "jp-1", "fr-2", "xx-1")
        ]

        assert serials == ["FRANCE-000001", "JAPAN-000001", "FRANCE-000002", "INTL-000001"]

    @pytest.mark.asyncio
    async def test_unknown_item(self, minting_service, owner_id, primary_provider):
        with pytest.raises(NotFoundError):
            await minting_service.mint("missing", owner_id)
        assert primary_provider.calls == []

    @pytest.mark.asyncio
    async def test_already_minted(self, minting_service, catalog_item, owner_id, serial_service, primary_provider):
        await minting_service.mint("stamp-001", owner_id)

        with pytest.raises(AlreadyMintedError):
            await minting_service.mint("stamp-001", "someone-else")

        assert len(primary_provider.calls) == 1
        assert await serial_service.peek("France") == 1

    @pytest.mark.asyncio
    async def test_parallel_mints_of_one_item(self, minting_service, catalog_item, store):
        results = await asyncio.gather(
            *(minting_service.mint("stamp-001", f"owner-{i}") for i in range(10)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 9
        assert all(isinstance(error, AlreadyMintedError) for error in failures)

        assert len(store.mint_records) == 1
        assert len(store.distributions) == 1
        assert store.ledger_aggregate["circulating_supply"] == Decimal("360.00")
        winner = successes[0].mint_record.owner_id
        assert store.balances[winner]["balance"] == Decimal("360.00")
        assert len(store.balances) == 1

    @pytest.mark.asyncio
    async def test_lost_race_logs_serial_gap(self, minting_service, catalog_item, caplog):
        with caplog.at_level("WARNING"):
            await asyncio.gather(
                *(minting_service.mint("stamp-001", f"owner-{i}") for i in range(3)),
                return_exceptions=True,
            )

        assert any("left unused" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_primary_pin_failure_writes_nothing(
        self, build_minting_service, test_settings, catalog_item, owner_id, store
    ):
        service = build_minting_service(test_settings, primary=FakePinProvider("nft_storage", fail=True))

        with pytest.raises(PinningFailedError):
            await service.mint("stamp-001", owner_id)

        assert store.mint_records == {}
        assert store.distributions == []
        assert store.balances == {}
        assert store.serial_counters == {}
        assert store.ledger_aggregate is None
        assert store.commit_count == 0

    @pytest.mark.asyncio
    async def test_unusable_image(self, minting_service, catalog_item_factory, owner_id, store):
        catalog_item_factory("no-image", image_ref=None)
        catalog_item_factory("bad-image", image_ref="data:image/png;base64,aGVsbG8=")

        with pytest.raises(MediaValidationError):
            await minting_service.mint("no-image", owner_id)
        with pytest.raises(MediaValidationError):
            await minting_service.mint("bad-image", owner_id)
        assert store.mint_records == {}
        assert store.ledger_aggregate is None

    @pytest.mark.asyncio
    async def test_commit_contention_retried(self, minting_service, catalog_item, owner_id, store):
        store.fail_commits = 2

        result = await minting_service.mint("stamp-001", owner_id)

        assert result.serial_number == "FRANCE-000001"
        assert len(store.mint_records) == 1
        assert len(store.distributions) == 1

    @pytest.mark.asyncio
    async def test_commit_contention_exhausted(self, minting_service, catalog_item, owner_id, store, serial_service):
        store.fail_commits = 100

        with pytest.raises(ContentionError):
            await minting_service.mint("stamp-001", owner_id)

        assert store.mint_records == {}
        assert store.ledger_aggregate["circulating_supply"] == Decimal("0.00")
        # The allocated serial stays consumed
        assert await serial_service.peek("France") == 1

    @pytest.mark.asyncio
    async def test_ambiguous_commit_confirmed(self, minting_service, catalog_item, owner_id, store):
        store.ambiguous_commits = 1

        result = await minting_service.mint("stamp-001", owner_id)

        assert result.serial_number == "FRANCE-000001"
        assert len(store.mint_records) == 1
        assert len(store.distributions) == 1
        assert store.balances[owner_id]["balance"] == Decimal("360.00")

    @pytest.mark.asyncio
    async def test_ambiguous_commit_retry_hits_own_record_id(
        self, minting_service, catalog_item, owner_id, store, caplog
    ):
        store.ambiguous_commits = 1

        with caplog.at_level(logging.INFO, logger="stampmint.services.minting_service"):
            result = await minting_service.mint("stamp-001", owner_id)

        assert result.mint_record.id in store.mint_records
        assert store.commit_count == 1
        assert store.ledger_aggregate["circulating_supply"] == Decimal("360.00")
        assert any("confirmed after ambiguous result" in r.message for r in caplog.records)
        assert not any(r.levelno >= logging.ERROR for r in caplog.records)
        assert not any("left unused" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_supply_exhausted_rolls_back(
        self, build_minting_service, settings_factory, catalog_item_factory, owner_id, store
    ):
        service = build_minting_service(settings_factory(currency_max_supply=Decimal("500")))
        catalog_item_factory("first")
        catalog_item_factory("second")

        await service.mint("first", owner_id)
        with pytest.raises(SupplyExhaustedError):
            await service.mint("second", owner_id)

        assert [r["catalog_item_id"] for r in store.mint_records.values()] == ["first"]
        assert len(store.distributions) == 1
        assert store.ledger_aggregate["circulating_supply"] == Decimal("360.00")
        assert store.ledger_aggregate["circulating_supply"] <= store.ledger_aggregate["max_supply"]

    @pytest.mark.asyncio
    async def test_zero_valued_item(self, minting_service, catalog_item_factory, owner_id, store):
        catalog_item_factory("blank", denomination="unknown")

        result = await minting_service.mint("blank", owner_id)

        assert result.valuation.final_value == Decimal("0.00")
        assert result.distributed_amount == Decimal("0.00")
        assert len(store.distributions) == 1
        assert store.distributions[0]["amount"] == Decimal("0.00")
        assert store.ledger_aggregate["total_supply"] == Decimal("0.00")
        assert owner_id not in store.balances


# ==============================================================================
# Reconciliation and Queries
# ==============================================================================


class TestReconcile:
    """Tests for MintingService.reconcile_token."""

    @pytest.mark.asyncio
    async def test_reconcile_once(self, minting_service, catalog_item, owner_id):
        minted = await minting_service.mint("stamp-001", owner_id)

        record = await minting_service.reconcile_token(minted.serial_number, "token-7", "0xabc")

        assert record.token_identifier == "token-7"
        assert record.transaction_hash == "0xabc"
        assert record.reconciled_at is not None
        assert record.is_reconciled is True

    @pytest.mark.asyncio
    async def test_reconcile_is_idempotent(self, minting_service, catalog_item, owner_id):
        minted = await minting_service.mint("stamp-001", owner_id)
        first = await minting_service.reconcile_token(minted.serial_number, "token-7")

        again = await minting_service.reconcile_token(minted.serial_number, "token-7")

        assert again.token_identifier == "token-7"
        assert again.reconciled_at == first.reconciled_at

    @pytest.mark.asyncio
    async def test_reconcile_conflict(self, minting_service, catalog_item, owner_id):
        minted = await minting_service.mint("stamp-001", owner_id)
        await minting_service.reconcile_token(minted.serial_number, "token-7")

        with pytest.raises(AlreadyReconciledError):
            await minting_service.reconcile_token(minted.serial_number, "token-8")

    @pytest.mark.asyncio
    async def test_reconcile_unknown_serial(self, minting_service):
        with pytest.raises(NotFoundError):
            await minting_service.reconcile_token("FRANCE-999999", "token-7")

    @pytest.mark.asyncio
    async def test_placeholder_rejected(self, minting_service):
        with pytest.raises(ValueError):
            await minting_service.reconcile_token("FRANCE-000001", PLACEHOLDER_TOKEN_IDENTIFIER)


class TestQueries:
    """Tests for get_mint and list_user_mints."""

    @pytest.mark.asyncio
    async def test_get_mint(self, minting_service, catalog_item, owner_id):
        minted = await minting_service.mint("stamp-001", owner_id)

        record = await minting_service.get_mint("stamp-001")

        assert record.id == minted.mint_record.id
        with pytest.raises(NotFoundError):
            await minting_service.get_mint("never-minted")

    @pytest.mark.asyncio
    async def test_list_user_mints(self, minting_service, catalog_item_factory, owner_id):
        for item_id in ("a", "b", "c"):
            catalog_item_factory(item_id)
            await minting_service.mint(item_id, owner_id)
        catalog_item_factory("d")
        await minting_service.mint("d", "another-owner")

        records, total = await minting_service.list_user_mints(owner_id, skip=0, limit=2)

        assert total == 3
        assert len(records) == 2
        assert all(record.owner_id == owner_id for record in records)
