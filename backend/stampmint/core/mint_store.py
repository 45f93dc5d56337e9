"""
StampMint Persistence Boundary

This module defines the MintStore protocol used by the minting services and
its MongoDB implementation built on Motor. The store deals in plain
documents (dicts holding Python Decimals and datetimes); services validate
them into Pydantic models.

Atomic multi-document writes go through ``transaction()``, an async context
manager yielding a MintTransaction unit of work. Everything staged through
the unit of work commits together or not at all.

Error translation:
    DuplicateKeyError                    -> UniqueConstraintError(field)
    TransientTransactionError label,
    write conflicts, lost connections    -> ContentionError (retryable)
    any other PyMongoError               -> InternalStoreError
"""

import logging

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorClientSession
from pymongo import ReturnDocument
from pymongo.errors import (
    AutoReconnect,
    DuplicateKeyError,
    PyMongoError,
)
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from stampmint.core.database import DatabaseClient
from stampmint.core.exceptions import (
    ContentionError,
    InternalStoreError,
    MintingError,
    UniqueConstraintError,
)
from stampmint.models.common import utc_now
from stampmint.models.ledger import LEDGER_AGGREGATE_ID
from stampmint.models.mint import PLACEHOLDER_TOKEN_IDENTIFIER


logger = logging.getLogger(__name__)

# MongoDB server error code for WriteConflict
WRITE_CONFLICT_CODE = 112


# =============================================================================
# PROTOCOLS
# =============================================================================


@runtime_checkable
class MintTransaction(Protocol):
    """Unit of work staged inside one atomic store transaction."""

    async def get_ledger_aggregate(self) -> dict[str, Any] | None:
        """Read the ledger aggregate within the transaction snapshot."""

    async def insert_mint_record(self, document: dict[str, Any]) -> None:
        """Insert a mint record; raises UniqueConstraintError on duplicates."""

    async def insert_distribution(self, document: dict[str, Any]) -> None:
        """Append a currency distribution."""

    async def increment_supply(self, amount: Decimal) -> bool:
        """Add to total and circulating supply unless the cap would be exceeded."""

    async def decrement_supply(self, amount: Decimal) -> bool:
        """Move ``amount`` from circulating to burned supply if available."""

    async def adjust_balance(self, user_id: str, delta: Decimal) -> bool:
        """Apply a signed delta to a holder balance; debits never go negative."""


@runtime_checkable
class MintStore(Protocol):
    """Storage interface for catalog items, mint records and the StampCoin ledger."""

    async def get_catalog_item(self, catalog_item_id: str) -> dict[str, Any] | None:
        """Lookup a catalog item by identifier."""

    async def find_mint_record(self, catalog_item_id: str) -> dict[str, Any] | None:
        """Lookup the mint record of a catalog item."""

    async def find_mint_record_by_serial(self, serial_number: str) -> dict[str, Any] | None:
        """Lookup a mint record by serial number."""

    async def list_mint_records(
        self, owner_id: str, skip: int = 0, limit: int = 50
    ) -> tuple[list[dict[str, Any]], int]:
        """List an owner's mint records, newest first, with the total count."""

    async def set_token_identifier(
        self,
        serial_number: str,
        token_identifier: str,
        transaction_hash: str | None,
        reconciled_at: datetime,
    ) -> dict[str, Any] | None:
        """Replace the placeholder token identifier; None if not pending."""

    async def increment_serial_counter(self, scope_key: str) -> int:
        """Atomically increment and return the sequence for a scope."""

    async def get_serial_counter(self, scope_key: str) -> int:
        """Return the last issued sequence for a scope (0 if none)."""

    async def ensure_ledger_aggregate(self, defaults: dict[str, Any]) -> dict[str, Any]:
        """Create the ledger aggregate if missing and return it."""

    async def get_ledger_aggregate(self) -> dict[str, Any] | None:
        """Return the ledger aggregate, if initialized."""

    async def get_balance(self, user_id: str) -> dict[str, Any] | None:
        """Return a holder balance document."""

    async def list_distributions(
        self, user_id: str, skip: int = 0, limit: int = 50, kind: str | None = None
    ) -> tuple[list[dict[str, Any]], int]:
        """List a holder's distributions, newest first, with the total count."""

    async def distribution_groups(self, field: str) -> list[dict[str, Any]]:
        """Group distributions by ``field`` into ``{_id, count, total}`` rows."""

    def transaction(self) -> Any:
        """Async context manager yielding a MintTransaction."""


# =============================================================================
# BSON CONVERSION
# =============================================================================


def to_bson(value: Any) -> Any:
    """Convert Decimals to Decimal128 and enums to their values, recursively."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_bson(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [to_bson(item) for item in value]
    return value


def from_bson(value: Any) -> Any:
    """Convert Decimal128 values back to Decimal, recursively."""
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, dict):
        return {key: from_bson(item) for key, item in value.items()}
    if isinstance(value, list):
        return [from_bson(item) for item in value]
    return value


def duplicate_key_field(exc: DuplicateKeyError) -> str:
    """Name the key a DuplicateKeyError was raised for."""
    details = exc.details or {}
    key_pattern = details.get("keyPattern") or details.get("keyValue") or {}
    if key_pattern:
        return next(iter(key_pattern))
    message = str(exc)
    for field in ("catalog_item_id", "serial_number", "user_id", "_id"):
        if field in message:
            return field
    return "unknown"


def translate_error(exc: PyMongoError, operation: str) -> MintingError:
    """Map a driver error to the minting error taxonomy."""
    if isinstance(exc, DuplicateKeyError):
        field = duplicate_key_field(exc)
        return UniqueConstraintError(
            f"Unique constraint violated on '{field}' during {operation}", field=field
        )
    if (
        exc.has_error_label("TransientTransactionError")
        or exc.has_error_label("UnknownTransactionCommitResult")
        or getattr(exc, "code", None) == WRITE_CONFLICT_CODE
        or isinstance(exc, AutoReconnect)
    ):
        return ContentionError(f"Transient store conflict during {operation}", operation=operation)
    return InternalStoreError(f"Store failure during {operation}: {exc}", operation=operation)


# =============================================================================
# MONGODB IMPLEMENTATION
# =============================================================================


class MongoMintTransaction:
    """MintTransaction bound to one Motor client session."""

    def __init__(self, db_client: DatabaseClient, session: AsyncIOMotorClientSession) -> None:
        self._db = db_client
        self._session = session

    async def get_ledger_aggregate(self) -> dict[str, Any] | None:
        doc = await self._db.get_ledger_aggregate_collection().find_one(
            {"_id": LEDGER_AGGREGATE_ID}, session=self._session
        )
        return from_bson(doc) if doc else None

    async def insert_mint_record(self, document: dict[str, Any]) -> None:
        await self._db.get_mint_records_collection().insert_one(
            to_bson(document), session=self._session
        )

    async def insert_distribution(self, document: dict[str, Any]) -> None:
        await self._db.get_distributions_collection().insert_one(
            to_bson(document), session=self._session
        )

    async def increment_supply(self, amount: Decimal) -> bool:
        bson_amount = Decimal128(amount)
        result = await self._db.get_ledger_aggregate_collection().update_one(
            {
                "_id": LEDGER_AGGREGATE_ID,
                "$expr": {
                    "$lte": [{"$add": ["$circulating_supply", bson_amount]}, "$max_supply"]
                },
            },
            {
                "$inc": {"total_supply": bson_amount, "circulating_supply": bson_amount},
                "$set": {"updated_at": utc_now()},
            },
            session=self._session,
        )
        return result.matched_count == 1

    async def decrement_supply(self, amount: Decimal) -> bool:
        bson_amount = Decimal128(amount)
        result = await self._db.get_ledger_aggregate_collection().update_one(
            {"_id": LEDGER_AGGREGATE_ID, "circulating_supply": {"$gte": bson_amount}},
            {
                "$inc": {"circulating_supply": Decimal128(-amount), "burned_supply": bson_amount},
                "$set": {"updated_at": utc_now()},
            },
            session=self._session,
        )
        return result.matched_count == 1

    async def adjust_balance(self, user_id: str, delta: Decimal) -> bool:
        balances = self._db.get_balances_collection()
        update = {"$inc": {"balance": Decimal128(delta)}, "$set": {"updated_at": utc_now()}}
        if delta >= 0:
            await balances.update_one(
                {"user_id": user_id}, update, upsert=True, session=self._session
            )
            return True

        result = await balances.update_one(
            {"user_id": user_id, "balance": {"$gte": Decimal128(-delta)}},
            update,
            session=self._session,
        )
        return result.matched_count == 1


class MongoMintStore:
    """
    MintStore backed by MongoDB through Motor.

    Transactions use snapshot read concern and majority write concern, which
    requires a replica set deployment.

    Example usage:
        ```python
        store = MongoMintStore(get_db_client())
        async with store.transaction() as tx:
            await tx.insert_mint_record(record)
            await tx.insert_distribution(distribution)
        ```
    """

    def __init__(self, db_client: DatabaseClient) -> None:
        self._db = db_client

    async def get_catalog_item(self, catalog_item_id: str) -> dict[str, Any] | None:
        try:
            doc = await self._db.get_catalog_items_collection().find_one({"_id": catalog_item_id})
        except PyMongoError as e:
            raise translate_error(e, "get_catalog_item") from e
        return from_bson(doc) if doc else None

    async def find_mint_record(self, catalog_item_id: str) -> dict[str, Any] | None:
        try:
            doc = await self._db.get_mint_records_collection().find_one(
                {"catalog_item_id": catalog_item_id}
            )
        except PyMongoError as e:
            raise translate_error(e, "find_mint_record") from e
        return from_bson(doc) if doc else None

    async def find_mint_record_by_serial(self, serial_number: str) -> dict[str, Any] | None:
        try:
            doc = await self._db.get_mint_records_collection().find_one(
                {"serial_number": serial_number}
            )
        except PyMongoError as e:
            raise translate_error(e, "find_mint_record_by_serial") from e
        return from_bson(doc) if doc else None

    async def list_mint_records(
        self, owner_id: str, skip: int = 0, limit: int = 50
    ) -> tuple[list[dict[str, Any]], int]:
        collection = self._db.get_mint_records_collection()
        query = {"owner_id": owner_id}
        try:
            total = await collection.count_documents(query)
            cursor = collection.find(query).sort("created_at", -1).skip(skip).limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise translate_error(e, "list_mint_records") from e
        return [from_bson(doc) for doc in docs], total

    async def set_token_identifier(
        self,
        serial_number: str,
        token_identifier: str,
        transaction_hash: str | None,
        reconciled_at: datetime,
    ) -> dict[str, Any] | None:
        try:
            doc = await self._db.get_mint_records_collection().find_one_and_update(
                {"serial_number": serial_number, "token_identifier": PLACEHOLDER_TOKEN_IDENTIFIER},
                {
                    "$set": {
                        "token_identifier": token_identifier,
                        "transaction_hash": transaction_hash,
                        "reconciled_at": reconciled_at,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise translate_error(e, "set_token_identifier") from e
        return from_bson(doc) if doc else None

    async def increment_serial_counter(self, scope_key: str) -> int:
        try:
            doc = await self._db.get_serial_counters_collection().find_one_and_update(
                {"_id": scope_key},
                {"$inc": {"last_sequence": 1}, "$set": {"updated_at": utc_now()}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            # Two first-time upserts on the same scope raced; the loser retries.
            raise ContentionError(
                f"Serial counter for scope '{scope_key}' was created concurrently",
                scope=scope_key,
            ) from e
        except PyMongoError as e:
            raise translate_error(e, "increment_serial_counter") from e
        return int(doc["last_sequence"])

    async def get_serial_counter(self, scope_key: str) -> int:
        try:
            doc = await self._db.get_serial_counters_collection().find_one({"_id": scope_key})
        except PyMongoError as e:
            raise translate_error(e, "get_serial_counter") from e
        return int(doc["last_sequence"]) if doc else 0

    async def ensure_ledger_aggregate(self, defaults: dict[str, Any]) -> dict[str, Any]:
        try:
            doc = await self._db.get_ledger_aggregate_collection().find_one_and_update(
                {"_id": LEDGER_AGGREGATE_ID},
                {"$setOnInsert": to_bson({k: v for k, v in defaults.items() if k != "_id"})},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Lost the initialization race; the winner's document is authoritative.
            doc = await self._db.get_ledger_aggregate_collection().find_one(
                {"_id": LEDGER_AGGREGATE_ID}
            )
        except PyMongoError as e:
            raise translate_error(e, "ensure_ledger_aggregate") from e
        return from_bson(doc)

    async def get_ledger_aggregate(self) -> dict[str, Any] | None:
        try:
            doc = await self._db.get_ledger_aggregate_collection().find_one(
                {"_id": LEDGER_AGGREGATE_ID}
            )
        except PyMongoError as e:
            raise translate_error(e, "get_ledger_aggregate") from e
        return from_bson(doc) if doc else None

    async def get_balance(self, user_id: str) -> dict[str, Any] | None:
        try:
            doc = await self._db.get_balances_collection().find_one(
                {"user_id": user_id}, {"_id": 0}
            )
        except PyMongoError as e:
            raise translate_error(e, "get_balance") from e
        return from_bson(doc) if doc else None

    async def list_distributions(
        self, user_id: str, skip: int = 0, limit: int = 50, kind: str | None = None
    ) -> tuple[list[dict[str, Any]], int]:
        collection = self._db.get_distributions_collection()
        query: dict[str, Any] = {"user_id": user_id}
        if kind:
            query["kind"] = kind
        try:
            total = await collection.count_documents(query)
            cursor = collection.find(query).sort("created_at", -1).skip(skip).limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise translate_error(e, "list_distributions") from e
        return [from_bson(doc) for doc in docs], total

    async def distribution_groups(self, field: str) -> list[dict[str, Any]]:
        pipeline = [
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}, "total": {"$sum": "$amount"}}},
            {"$sort": {"_id": 1}},
        ]
        try:
            cursor = self._db.get_distributions_collection().aggregate(pipeline)
            rows = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise translate_error(e, "distribution_groups") from e
        return [from_bson(row) for row in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MongoMintTransaction]:
        """
        Run the enclosed writes as one MongoDB multi-document transaction.

        The transaction commits when the block exits normally and aborts on
        any exception. Driver errors raised by the block or by the commit are
        translated into the minting error taxonomy.
        """
        client = self._db.get_client()
        try:
            async with await client.start_session() as session:
                async with session.start_transaction(
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                ):
                    yield MongoMintTransaction(self._db, session)
        except PyMongoError as e:
            raise translate_error(e, "transaction") from e
