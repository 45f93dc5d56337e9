#!/usr/bin/env python3
"""
MongoDB Database Initialization Script for StampMint.

This script creates the StampMint collections with their validation rules
and indexes, initializes the StampCoin ledger aggregate, and optionally
imports catalog items from a JSON file. It is idempotent and can be run
multiple times safely; existing ledger counters are never overwritten.

Usage:
    python scripts/init_db.py [options]

Options:
    --drop              Drop existing collections before creation (WARNING: destructive)
    --catalog FILE      Import catalog items from a JSON array file
    --verbose           Display detailed operation logs
    --help              Show this help message and exit

Environment Variables:
    MONGODB_URI             MongoDB connection URI (replica set required for minting)
    MONGODB_DB_NAME         Database name (default: stampmint)
    CURRENCY_NAME           StampCoin display name (default: StampCoin)
    CURRENCY_SYMBOL         StampCoin symbol (default: STMP)
    CURRENCY_MAX_SUPPLY     Hard cap on circulating supply (default: 1000000)
    CURRENCY_PRICE_USD      USD price of one StampCoin (default: 0.10)
"""

import argparse
import json
import os
import sys
import time

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from bson.decimal128 import Decimal128
from dotenv import load_dotenv
from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING, IndexModel, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    BulkWriteError,
    CollectionInvalid,
    ConnectionFailure,
    OperationFailure,
    ServerSelectionTimeoutError,
)

from stampmint.core.database import (
    ALL_COLLECTIONS,
    BALANCES_COLLECTION,
    CATALOG_ITEMS_COLLECTION,
    DISTRIBUTIONS_COLLECTION,
    LEDGER_AGGREGATE_COLLECTION,
    MINT_RECORDS_COLLECTION,
    SERIAL_COUNTERS_COLLECTION,
)
from stampmint.core.mint_store import to_bson
from stampmint.models.catalog import CatalogItem
from stampmint.models.ledger import LEDGER_AGGREGATE_ID


# Constants
DEFAULT_MONGODB_URI = "mongodb://localhost:27017/?replicaSet=rs0"
DEFAULT_DATABASE_NAME = "stampmint"
CONNECTION_TIMEOUT_MS = 5000


class DatabaseInitializer:
    """
    MongoDB database initializer for StampMint.

    Handles collection creation with validation rules, index creation,
    ledger aggregate initialization and catalog import.
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.client: MongoClient | None = None
        self.db: Database | None = None
        self.database_name = DEFAULT_DATABASE_NAME
        self._error_count = 0
        self._success_count = 0

    def log(self, message: str, level: str = "INFO") -> None:
        """Print a timestamped message; DEBUG messages only in verbose mode."""
        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        if level == "DEBUG" and not self.verbose:
            return
        print(f"[{timestamp}] [{level}] {message}")

    def connect(self) -> bool:
        """
        Establish connection to MongoDB server with retry logic.

        Returns:
            True if connection successful, False otherwise.
        """
        load_dotenv()

        mongodb_uri = os.getenv("MONGODB_URI", DEFAULT_MONGODB_URI)
        self.database_name = os.getenv("MONGODB_DB_NAME", DEFAULT_DATABASE_NAME)

        self.log(f"Connecting to MongoDB at {self._mask_uri(mongodb_uri)}...")

        max_retries = 3
        retry_delay = 2

        for attempt in range(max_retries):
            try:
                self.client = MongoClient(
                    mongodb_uri,
                    serverSelectionTimeoutMS=CONNECTION_TIMEOUT_MS,
                    connectTimeoutMS=CONNECTION_TIMEOUT_MS,
                    tz_aware=True,
                )
                self.client.admin.command("ping")
                self.db = self.client[self.database_name]

                self.log("Successfully connected to MongoDB server")
                self.log(f"Using database: {self.database_name}", "DEBUG")
                return True

            except ServerSelectionTimeoutError as e:
                self.log(f"Server selection timeout: {e}", "ERROR")
                self.log("Ensure MongoDB is running and accessible at the configured URI.", "ERROR")
                return False

            except ConnectionFailure as e:
                self.log(f"Connection attempt {attempt + 1}/{max_retries} failed: {e}", "WARNING")
                if attempt < max_retries - 1:
                    self.log(f"Retrying in {retry_delay} seconds...")
                    time.sleep(retry_delay)
                    retry_delay *= 2

        self.log("Failed to connect after all retry attempts", "ERROR")
        return False

    @staticmethod
    def _mask_uri(uri: str) -> str:
        """Mask credentials in a MongoDB URI for logging."""
        if "@" in uri:
            protocol_end = uri.find("://") + 3
            at_pos = uri.find("@")
            return f"{uri[:protocol_end]}***:***{uri[at_pos:]}"
        return uri

    def drop_collections(self) -> bool:
        """Drop all StampMint collections (destructive operation)."""
        self.log("=" * 60, "WARNING")
        self.log("DROPPING ALL COLLECTIONS - THIS IS DESTRUCTIVE!", "WARNING")
        self.log("=" * 60, "WARNING")

        try:
            existing = self.db.list_collection_names()
            for name in ALL_COLLECTIONS:
                if name in existing:
                    self.db[name].drop()
                    self.log(f"Dropped collection: {name}", "WARNING")
            return True
        except OperationFailure as e:
            self.log(f"Error dropping collections: {e}", "ERROR")
            return False

    def create_collection_with_validation(self, name: str, validator: dict[str, Any] | None) -> Collection:
        """
        Create a collection, applying a JSON schema validator when given.

        Existing collections get their validation rules updated.
        """
        options: dict[str, Any] = {}
        if validator:
            options = {"validator": validator, "validationLevel": "moderate", "validationAction": "error"}

        if name in self.db.list_collection_names():
            if options:
                self.log(f"Collection {name} already exists, updating validation rules", "DEBUG")
                self.db.command("collMod", name, **options)
            return self.db[name]

        try:
            self.db.create_collection(name, **options)
            self.log(f"Created collection: {name}")
        except CollectionInvalid as e:
            self.log(f"Collection {name} already exists: {e}", "DEBUG")
        return self.db[name]

    def create_collections(self) -> bool:
        """Create every collection with its validation rules and indexes."""
        definitions: dict[str, tuple[dict[str, Any] | None, list[IndexModel]]] = {
            CATALOG_ITEMS_COLLECTION: (
                {
                    "$jsonSchema": {
                        "bsonType": "object",
                        "required": ["_id", "title"],
                        "properties": {
                            "_id": {"bsonType": "string"},
                            "title": {"bsonType": "string", "minLength": 1},
                            "issue_year": {"bsonType": ["int", "null"]},
                            "image_ref": {"bsonType": ["string", "null"]},
                        },
                    }
                },
                [IndexModel([("country", ASCENDING)], name="country_idx")],
            ),
            MINT_RECORDS_COLLECTION: (
                {
                    "$jsonSchema": {
                        "bsonType": "object",
                        "required": [
                            "catalog_item_id",
                            "serial_number",
                            "owner_id",
                            "token_identifier",
                            "image_uri",
                            "final_value",
                            "created_at",
                        ],
                        "properties": {
                            "serial_number": {"bsonType": "string", "pattern": "^[A-Z0-9_-]+-[0-9]{6,}$"},
                            "final_value": {"bsonType": "decimal"},
                            "created_at": {"bsonType": "date"},
                        },
                    }
                },
                [
                    IndexModel([("catalog_item_id", ASCENDING)], unique=True, name="catalog_item_id_unique_idx"),
                    IndexModel([("serial_number", ASCENDING)], unique=True, name="serial_number_unique_idx"),
                    IndexModel([("owner_id", ASCENDING), ("created_at", DESCENDING)], name="owner_mints_sorted_idx"),
                ],
            ),
            DISTRIBUTIONS_COLLECTION: (
                {
                    "$jsonSchema": {
                        "bsonType": "object",
                        "required": ["user_id", "amount", "kind", "status", "created_at"],
                        "properties": {
                            "amount": {"bsonType": "decimal"},
                            "kind": {"enum": ["mint_reward", "adjustment", "burn"]},
                            "status": {"enum": ["pending", "completed", "failed"]},
                        },
                    }
                },
                [
                    IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)], name="user_history_idx"),
                    IndexModel([("mint_record_id", ASCENDING)], sparse=True, name="mint_record_id_idx"),
                    IndexModel([("kind", ASCENDING)], name="kind_idx"),
                    IndexModel([("status", ASCENDING)], name="status_idx"),
                ],
            ),
            BALANCES_COLLECTION: (
                None,
                [IndexModel([("user_id", ASCENDING)], unique=True, name="user_id_unique_idx")],
            ),
            LEDGER_AGGREGATE_COLLECTION: (None, []),
            SERIAL_COUNTERS_COLLECTION: (None, []),
        }

        ok = True
        for name, (validator, indexes) in definitions.items():
            self.log(f"Creating {name} collection...")
            try:
                collection = self.create_collection_with_validation(name, validator)
                self._create_indexes_safely(collection, indexes)
                self._success_count += 1
            except OperationFailure as e:
                self.log(f"Error creating {name} collection: {e}", "ERROR")
                self._error_count += 1
                ok = False
        return ok

    def _create_indexes_safely(self, collection: Collection, indexes: list[IndexModel]) -> None:
        """Create indexes, skipping the ones that already exist."""
        existing_indexes = collection.index_information()
        for index in indexes:
            index_name = index.document.get("name", "unnamed_index")
            if index_name in existing_indexes:
                self.log(f"  Index '{index_name}' already exists, skipping", "DEBUG")
                continue
            try:
                collection.create_indexes([index])
                self.log(f"  Created index: {index_name}", "DEBUG")
            except OperationFailure as e:
                if "already exists" in str(e).lower():
                    self.log(f"  Equivalent index already exists: {index_name}", "DEBUG")
                else:
                    raise

    def initialize_ledger(self) -> bool:
        """Create the StampCoin ledger aggregate if it does not exist yet."""
        self.log("Initializing StampCoin ledger aggregate...")

        try:
            max_supply = Decimal(os.getenv("CURRENCY_MAX_SUPPLY", "1000000"))
            price_usd = Decimal(os.getenv("CURRENCY_PRICE_USD", "0.10"))
        except InvalidOperation as e:
            self.log(f"Invalid currency configuration: {e}", "ERROR")
            self._error_count += 1
            return False

        if max_supply <= 0 or price_usd <= 0:
            self.log("CURRENCY_MAX_SUPPLY and CURRENCY_PRICE_USD must be positive", "ERROR")
            self._error_count += 1
            return False

        zero = Decimal128("0.00")
        defaults = {
            "currency_name": os.getenv("CURRENCY_NAME", "StampCoin"),
            "currency_symbol": os.getenv("CURRENCY_SYMBOL", "STMP"),
            "total_supply": zero,
            "circulating_supply": zero,
            "burned_supply": zero,
            "max_supply": Decimal128(max_supply),
            "price_usd": Decimal128(price_usd),
            "updated_at": datetime.now(UTC),
        }

        result = self.db[LEDGER_AGGREGATE_COLLECTION].update_one(
            {"_id": LEDGER_AGGREGATE_ID}, {"$setOnInsert": defaults}, upsert=True
        )
        if result.upserted_id is not None:
            self.log(f"Created ledger aggregate (max supply {max_supply}, price {price_usd} USD)")
        else:
            self.log("Ledger aggregate already exists, counters left unchanged")
        self._success_count += 1
        return True

    def import_catalog(self, path: Path) -> bool:
        """
        Import catalog items from a JSON array file.

        Each entry is validated as a catalog item. Existing items with the
        same identifier are left untouched.
        """
        self.log(f"Importing catalog items from {path}...")

        try:
            entries = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            self.log(f"Could not read catalog file: {e}", "ERROR")
            self._error_count += 1
            return False

        if not isinstance(entries, list):
            self.log("Catalog file must contain a JSON array", "ERROR")
            self._error_count += 1
            return False

        documents = []
        for position, entry in enumerate(entries):
            try:
                item = CatalogItem.model_validate(entry)
            except ValidationError as e:
                self.log(f"  Skipping entry {position}: {e.error_count()} validation error(s)", "WARNING")
                continue
            documents.append(to_bson(item.model_dump(by_alias=True)))

        collection = self.db[CATALOG_ITEMS_COLLECTION]
        inserted = 0
        for document in documents:
            result = collection.update_one(
                {"_id": document["_id"]}, {"$setOnInsert": document}, upsert=True
            )
            if result.upserted_id is not None:
                inserted += 1

        self.log(
            f"Imported {inserted} new catalog items "
            f"({len(documents) - inserted} already present, {len(entries) - len(documents)} invalid)"
        )
        self._success_count += 1
        return True

    def verify_initialization(self) -> bool:
        """Report collection counts and index counts."""
        self.log("=" * 60)
        self.log("VERIFICATION SUMMARY")
        self.log("=" * 60)

        existing = self.db.list_collection_names()
        all_valid = True
        for name in ALL_COLLECTIONS:
            if name not in existing:
                self.log(f"  ✗ {name}: missing", "ERROR")
                all_valid = False
                continue
            count = self.db[name].count_documents({})
            index_count = len(self.db[name].index_information()) - 1
            self.log(f"  ✓ {name}: {count} documents, {index_count} custom indexes")

        aggregate = self.db[LEDGER_AGGREGATE_COLLECTION].find_one({"_id": LEDGER_AGGREGATE_ID})
        if aggregate is None:
            self.log("  ✗ ledger aggregate missing", "ERROR")
            all_valid = False
        else:
            self.log(
                f"  Ledger: {aggregate['circulating_supply']} / {aggregate['max_supply']} "
                f"{aggregate['currency_symbol']} in circulation"
            )

        self.log(f"Operations succeeded: {self._success_count}, failed: {self._error_count}")
        return all_valid and self._error_count == 0

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize the StampMint MongoDB database")
    parser.add_argument("--drop", action="store_true", help="Drop existing collections first (destructive)")
    parser.add_argument("--catalog", type=Path, help="JSON array of catalog items to import")
    parser.add_argument("--verbose", action="store_true", help="Display detailed operation logs")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    initializer = DatabaseInitializer(verbose=args.verbose)

    if not initializer.connect():
        return 1

    try:
        if args.drop and not initializer.drop_collections():
            return 1
        initializer.create_collections()
        initializer.initialize_ledger()
        if args.catalog:
            initializer.import_catalog(args.catalog)
        return 0 if initializer.verify_initialization() else 1
    except (OperationFailure, BulkWriteError) as e:
        initializer.log(f"Initialization aborted: {e}", "ERROR")
        return 1
    finally:
        initializer.close()


if __name__ == "__main__":
    sys.exit(main())
