"""
Pytest Configuration and Test Fixtures for the StampMint Backend

This module provides:
- Test Settings with pinning credentials and zero retry delays
- InMemoryMintStore: an in-process MintStore with unique constraints and
  all-or-nothing transactions, used to exercise the minting pipeline and
  its concurrency guarantees without a MongoDB replica set
- FakePinProvider: scripted pinning provider (success, failure, delay)
- Real PNG payloads generated with Pillow
- Service fixtures wired the way the API dependencies wire them
"""

import asyncio
import base64
import copy
import io

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any

import pytest

from PIL import Image

from stampmint.config import Settings
from stampmint.core.auth import create_access_token
from stampmint.core.exceptions import ContentionError, UniqueConstraintError
from stampmint.core.pinning import PinningProviderError
from stampmint.models.common import utc_now
from stampmint.models.ledger import LEDGER_AGGREGATE_ID
from stampmint.models.mint import PLACEHOLDER_TOKEN_IDENTIFIER
from stampmint.models.pinning import PinMetadata, PinSuccess
from stampmint.services.ledger_service import LedgerService
from stampmint.services.minting_service import MintingService
from stampmint.services.pinning_service import PinningService
from stampmint.services.pricing_service import PricingService
from stampmint.services.serial_service import SerialService


TEST_SECRET_KEY = "test-secret-key-for-jwt-signing-minimum-32-chars"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "slow: mark test as slow-running")


# ==============================================================================
# Settings Fixtures
# ==============================================================================


def make_settings(**overrides: Any) -> Settings:
    """Build isolated test Settings; .env files are ignored."""
    values: dict[str, Any] = {
        "app_env": "testing",
        "app_name": "StampMint-Test",
        "json_logs": False,
        "secret_key": TEST_SECRET_KEY,
        "mongodb_uri": "mongodb://localhost:27017/?replicaSet=rs0",
        "mongodb_db_name": "stampmint_test",
        "nft_storage_api_key": "test-nft-storage-key",
        "pinata_jwt": None,
        "pinata_api_key": None,
        "pinata_secret_api_key": None,
        "pin_provider_timeout_seconds": 2.0,
        "retry_base_delay_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with a configured primary provider and no secondary provider."""
    return make_settings()


# ==============================================================================
# In-Memory Mint Store
# ==============================================================================


class InMemoryTransaction:
    """Staged copy of the store state; applied only when the transaction commits."""

    def __init__(self, store: "InMemoryMintStore") -> None:
        self.mint_records = copy.deepcopy(store.mint_records)
        self.distributions = copy.deepcopy(store.distributions)
        self.balances = copy.deepcopy(store.balances)
        self.ledger_aggregate = copy.deepcopy(store.ledger_aggregate)

    async def get_ledger_aggregate(self) -> dict[str, Any] | None:
        return copy.deepcopy(self.ledger_aggregate)

    async def insert_mint_record(self, document: dict[str, Any]) -> None:
        # MongoDB reports the _id index before any secondary unique index
        if document["_id"] in self.mint_records:
            raise UniqueConstraintError("duplicate _id", field="_id")
        for existing in self.mint_records.values():
            if existing["catalog_item_id"] == document["catalog_item_id"]:
                raise UniqueConstraintError("duplicate catalog_item_id", field="catalog_item_id")
            if existing["serial_number"] == document["serial_number"]:
                raise UniqueConstraintError("duplicate serial_number", field="serial_number")
        self.mint_records[document["_id"]] = copy.deepcopy(document)

    async def insert_distribution(self, document: dict[str, Any]) -> None:
        if any(existing["_id"] == document["_id"] for existing in self.distributions):
            raise UniqueConstraintError("duplicate _id", field="_id")
        self.distributions.append(copy.deepcopy(document))

    async def increment_supply(self, amount: Decimal) -> bool:
        aggregate = self.ledger_aggregate
        if aggregate is None or aggregate["circulating_supply"] + amount > aggregate["max_supply"]:
            return False
        aggregate["total_supply"] += amount
        aggregate["circulating_supply"] += amount
        aggregate["updated_at"] = utc_now()
        return True

    async def decrement_supply(self, amount: Decimal) -> bool:
        aggregate = self.ledger_aggregate
        if aggregate is None or aggregate["circulating_supply"] < amount:
            return False
        aggregate["circulating_supply"] -= amount
        aggregate["burned_supply"] += amount
        return True

    async def adjust_balance(self, user_id: str, delta: Decimal) -> bool:
        entry = self.balances.get(user_id)
        if delta < 0 and (entry is None or entry["balance"] < -delta):
            return False
        if entry is None:
            entry = {"user_id": user_id, "balance": Decimal("0.00")}
            self.balances[user_id] = entry
        entry["balance"] += delta
        entry["updated_at"] = utc_now()
        return True


class InMemoryMintStore:
    """
    MintStore kept in process memory.

    Transactions are serialized with an asyncio.Lock and applied atomically.
    ``fail_commits`` and ``fail_serial_increments`` inject ContentionError
    into the next N commits / counter increments; ``ambiguous_commits`` applies
    the next N commits and then reports them as contended.
    """

    def __init__(self) -> None:
        self.catalog_items: dict[str, dict[str, Any]] = {}
        self.mint_records: dict[str, dict[str, Any]] = {}
        self.distributions: list[dict[str, Any]] = []
        self.balances: dict[str, dict[str, Any]] = {}
        self.ledger_aggregate: dict[str, Any] | None = None
        self.serial_counters: dict[str, int] = {}
        self.fail_commits = 0
        self.fail_serial_increments = 0
        self.ambiguous_commits = 0
        self.commit_count = 0
        self._lock = asyncio.Lock()

    def add_catalog_item(self, document: dict[str, Any]) -> None:
        self.catalog_items[document["_id"]] = copy.deepcopy(document)

    async def get_catalog_item(self, catalog_item_id: str) -> dict[str, Any] | None:
        return copy.deepcopy(self.catalog_items.get(catalog_item_id))

    async def find_mint_record(self, catalog_item_id: str) -> dict[str, Any] | None:
        for record in self.mint_records.values():
            if record["catalog_item_id"] == catalog_item_id:
                return copy.deepcopy(record)
        return None

    async def find_mint_record_by_serial(self, serial_number: str) -> dict[str, Any] | None:
        for record in self.mint_records.values():
            if record["serial_number"] == serial_number:
                return copy.deepcopy(record)
        return None

    async def list_mint_records(
        self, owner_id: str, skip: int = 0, limit: int = 50
    ) -> tuple[list[dict[str, Any]], int]:
        records = sorted(
            (r for r in self.mint_records.values() if r["owner_id"] == owner_id),
            key=lambda r: r["created_at"],
            reverse=True,
        )
        return copy.deepcopy(records[skip : skip + limit]), len(records)

    async def set_token_identifier(
        self, serial_number: str, token_identifier: str, transaction_hash: str | None, reconciled_at: Any
    ) -> dict[str, Any] | None:
        async with self._lock:
            for record in self.mint_records.values():
                if (
                    record["serial_number"] == serial_number
                    and record["token_identifier"] == PLACEHOLDER_TOKEN_IDENTIFIER
                ):
                    record["token_identifier"] = token_identifier
                    record["transaction_hash"] = transaction_hash
                    record["reconciled_at"] = reconciled_at
                    return copy.deepcopy(record)
        return None

    async def increment_serial_counter(self, scope_key: str) -> int:
        async with self._lock:
            if self.fail_serial_increments > 0:
                self.fail_serial_increments -= 1
                raise ContentionError("injected serial contention")
            self.serial_counters[scope_key] = self.serial_counters.get(scope_key, 0) + 1
            return self.serial_counters[scope_key]

    async def get_serial_counter(self, scope_key: str) -> int:
        return self.serial_counters.get(scope_key, 0)

    async def ensure_ledger_aggregate(self, defaults: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            if self.ledger_aggregate is None:
                self.ledger_aggregate = copy.deepcopy(defaults)
                self.ledger_aggregate["_id"] = LEDGER_AGGREGATE_ID
            return copy.deepcopy(self.ledger_aggregate)

    async def get_ledger_aggregate(self) -> dict[str, Any] | None:
        return copy.deepcopy(self.ledger_aggregate)

    async def get_balance(self, user_id: str) -> dict[str, Any] | None:
        return copy.deepcopy(self.balances.get(user_id))

    async def list_distributions(
        self, user_id: str, skip: int = 0, limit: int = 50, kind: str | None = None
    ) -> tuple[list[dict[str, Any]], int]:
        rows = sorted(
            (
                d
                for d in self.distributions
                if d["user_id"] == user_id and (kind is None or d["kind"] == kind)
            ),
            key=lambda d: d["created_at"],
            reverse=True,
        )
        return copy.deepcopy(rows[skip : skip + limit]), len(rows)

    async def distribution_groups(self, field: str) -> list[dict[str, Any]]:
        groups: dict[str, dict[str, Any]] = {}
        for row in self.distributions:
            key = getattr(row[field], "value", row[field])
            group = groups.setdefault(key, {"_id": key, "count": 0, "total": Decimal("0")})
            group["count"] += 1
            group["total"] += row["amount"]
        return [groups[key] for key in sorted(groups)]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        async with self._lock:
            tx = InMemoryTransaction(self)
            yield tx
            if self.fail_commits > 0:
                self.fail_commits -= 1
                raise ContentionError("injected write conflict")
            self.mint_records = tx.mint_records
            self.distributions = tx.distributions
            self.balances = tx.balances
            self.ledger_aggregate = tx.ledger_aggregate
            self.commit_count += 1
            if self.ambiguous_commits > 0:
                self.ambiguous_commits -= 1
                raise ContentionError("commit result unknown")


@pytest.fixture
def store() -> InMemoryMintStore:
    return InMemoryMintStore()


# ==============================================================================
# Media Fixtures
# ==============================================================================


def make_png(size: tuple[int, int] = (4, 4), color: str = "red") -> bytes:
    """Encode a small solid-color PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def to_data_uri(content: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def png_data_uri(png_bytes: bytes) -> str:
    return to_data_uri(png_bytes)


# ==============================================================================
# Pinning Fixtures
# ==============================================================================


class FakePinProvider:
    """
    Scripted pinning provider.

    Args:
        provider_id: Identifier reported in outcomes.
        configured: Value of ``is_configured``.
        fail: Raise PinningProviderError from ``pin``.
        delay: Seconds to sleep before answering.
    """

    def __init__(
        self,
        provider_id: str,
        configured: bool = True,
        fail: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.provider_id = provider_id
        self.configured = configured
        self.fail = fail
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def pin(
        self, content: bytes, mime_type: str, identifier: str, metadata: PinMetadata
    ) -> PinSuccess:
        self.calls.append(
            {"content": content, "mime_type": mime_type, "identifier": identifier, "metadata": metadata}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise PinningProviderError(self.provider_id, "API error 500: upstream unavailable", 500)
        cid = f"bafy{self.provider_id}{len(self.calls):04d}"
        return PinSuccess(
            provider_id=self.provider_id,
            uri=f"ipfs://{cid}",
            cid=cid,
            gateway_url=f"https://gateway.test/ipfs/{cid}",
            metadata_uri=f"ipfs://{cid}meta",
        )


@pytest.fixture
def primary_provider() -> FakePinProvider:
    return FakePinProvider("nft_storage")


@pytest.fixture
def secondary_provider() -> FakePinProvider:
    return FakePinProvider("pinata", configured=False)


@pytest.fixture
def pinning_service(
    test_settings: Settings,
    primary_provider: FakePinProvider,
    secondary_provider: FakePinProvider,
) -> PinningService:
    return PinningService(test_settings, primary=primary_provider, secondary=secondary_provider)


# ==============================================================================
# Service Fixtures
# ==============================================================================


@pytest.fixture
def pricing_service() -> PricingService:
    return PricingService()


@pytest.fixture
def serial_service(store: InMemoryMintStore, test_settings: Settings) -> SerialService:
    return SerialService(store, test_settings)


@pytest.fixture
def ledger_service(store: InMemoryMintStore, test_settings: Settings) -> LedgerService:
    return LedgerService(store, test_settings)


@pytest.fixture
def minting_service(
    store: InMemoryMintStore,
    test_settings: Settings,
    pricing_service: PricingService,
    serial_service: SerialService,
    pinning_service: PinningService,
    ledger_service: LedgerService,
) -> MintingService:
    return MintingService(
        store, test_settings, pricing_service, serial_service, pinning_service, ledger_service
    )


# ==============================================================================
# Catalog and Principal Fixtures
# ==============================================================================


def make_catalog_item(item_id: str, image_ref: str | None = None, **overrides: Any) -> dict[str, Any]:
    document = {
        "_id": item_id,
        "country": "France",
        "issue_year": 1903,
        "denomination": "10",
        "condition": "mint",
        "rarity": "rare",
        "title": f"Sower {item_id}",
        "description": "Semeuse lignée, 10 centimes",
        "image_ref": image_ref,
        "designer": "Louis-Oscar Roty",
        "catalog_number": "Yvert 134",
    }
    document.update(overrides)
    return document


@pytest.fixture
def catalog_item(store: InMemoryMintStore, png_data_uri: str) -> dict[str, Any]:
    """A rare, mint-condition 10-unit French stamp (valued 36.00 USD)."""
    document = make_catalog_item("stamp-001", png_data_uri)
    store.add_catalog_item(document)
    return document


@pytest.fixture
def owner_id() -> str:
    return "collector-42"


@pytest.fixture
def auth_token(test_settings: Settings, owner_id: str) -> str:
    return create_access_token(owner_id, test_settings)


@pytest.fixture
def auth_headers(auth_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth_token}"}


# ==============================================================================
# Factory Fixtures
# ==============================================================================


@pytest.fixture
def settings_factory():
    """Build Settings with overrides."""
    return make_settings


@pytest.fixture
def png_factory():
    """Encode PNG images of a given size and color."""
    return make_png


@pytest.fixture
def catalog_item_factory(store: InMemoryMintStore, png_data_uri: str):
    """Add catalog items to the store; the image defaults to a small PNG data URI."""

    def factory(item_id: str, **overrides: Any) -> dict[str, Any]:
        overrides.setdefault("image_ref", png_data_uri)
        document = make_catalog_item(item_id, **overrides)
        store.add_catalog_item(document)
        return document

    return factory
