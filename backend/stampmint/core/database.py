"""
StampMint MongoDB Database Client Module

This module provides async MongoDB connection management for StampMint using
Motor (async MongoDB driver). It implements:
- Connection pooling with configurable pool size
- Health checks using MongoDB ping command
- Collection accessor methods for all minting collections
- Index creation, including the unique constraints the mint pipeline relies on
- Startup/shutdown lifecycle management for FastAPI integration
- Retry logic with exponential backoff for connection reliability

Multi-document transactions (mint record + distribution + ledger aggregate)
require MongoDB to run as a replica set.
"""

import asyncio
import logging

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

from stampmint.config import Settings


# Configure module logger for structured logging
logger = logging.getLogger(__name__)

# Collection name constants for consistency
CATALOG_ITEMS_COLLECTION = "catalog_items"
MINT_RECORDS_COLLECTION = "mint_records"
DISTRIBUTIONS_COLLECTION = "currency_distributions"
BALANCES_COLLECTION = "currency_balances"
LEDGER_AGGREGATE_COLLECTION = "ledger_aggregate"
SERIAL_COUNTERS_COLLECTION = "serial_counters"

ALL_COLLECTIONS = (
    CATALOG_ITEMS_COLLECTION,
    MINT_RECORDS_COLLECTION,
    DISTRIBUTIONS_COLLECTION,
    BALANCES_COLLECTION,
    LEDGER_AGGREGATE_COLLECTION,
    SERIAL_COUNTERS_COLLECTION,
)


class DatabaseClient:
    """
    Async MongoDB client wrapper with connection pooling and lifecycle management.

    Attributes:
        _settings: Settings instance containing MongoDB configuration
        _client: Motor async MongoDB client instance
        _database: Motor async database instance

    Example usage:
        ```python
        db_client = DatabaseClient(settings)
        await db_client.connect()
        records = db_client.get_mint_records_collection()
        await db_client.close()
        ```
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._mongodb_uri = settings.mongodb_uri
        self._db_name = settings.mongodb_db_name
        self._min_pool_size = settings.mongodb_min_pool_size
        self._max_pool_size = settings.mongodb_max_pool_size
        self._client: AsyncIOMotorClient | None = None
        self._database: AsyncIOMotorDatabase | None = None

        logger.info(
            "DatabaseClient initialized with pool size %s-%s for database: %s",
            self._min_pool_size,
            self._max_pool_size,
            self._db_name,
        )

    async def connect(self) -> bool:
        """
        Establish MongoDB connection with retry logic and exponential backoff.

        Implements 3 attempts with exponential backoff (1s, 2s, 4s).

        Returns:
            bool: True if connection successful, False on failure after all retries.
        """
        max_retries = 3
        retry_delay = 1.0

        for attempt in range(1, max_retries + 1):
            try:
                logger.info(
                    "Attempting MongoDB connection (attempt %s/%s) to %s...",
                    attempt,
                    max_retries,
                    self._db_name,
                )

                self._client = AsyncIOMotorClient(
                    self._mongodb_uri,
                    minPoolSize=self._min_pool_size,
                    maxPoolSize=self._max_pool_size,
                    serverSelectionTimeoutMS=5000,
                    tz_aware=True,
                )
                self._database = self._client[self._db_name]

                # Verify connection by running ping command
                await self._client.admin.command("ping")

                logger.info("Successfully connected to MongoDB database: %s", self._db_name)
                return True

            except (ServerSelectionTimeoutError, ConnectionFailure):
                logger.exception(
                    "MongoDB connection failure (attempt %s/%s)", attempt, max_retries
                )
                if attempt < max_retries:
                    logger.warning("Retrying in %s seconds...", retry_delay)
                    await asyncio.sleep(retry_delay)
                    retry_delay *= 2  # Exponential backoff

        logger.error(
            "Failed to connect to MongoDB after %s attempts. "
            "Check connection URI and server availability.",
            max_retries,
        )
        return False

    async def close(self) -> None:
        """Gracefully close MongoDB connection and release resources."""
        if self._client is None:
            logger.warning("MongoDB close called but no active connection exists")
            return

        self._client.close()
        self._client = None
        self._database = None
        logger.info("MongoDB connection closed for database: %s", self._db_name)

    async def ping(self) -> bool:
        """
        Health check using MongoDB admin ping command.

        Returns:
            bool: True if ping successful, False on failure.
        """
        if self._client is None:
            logger.warning("MongoDB ping failed: No active connection")
            return False

        try:
            await self._client.admin.command("ping")
            return True
        except (ConnectionFailure, ServerSelectionTimeoutError):
            logger.exception("MongoDB ping failed")
            return False

    def get_client(self) -> AsyncIOMotorClient:
        """
        Get the Motor client, used to start sessions for transactions.

        Raises:
            RuntimeError: If not connected to MongoDB.
        """
        if self._client is None:
            raise RuntimeError(
                "MongoDB client not available. Call connect() first or check connection status."
            )
        return self._client

    def get_database(self) -> AsyncIOMotorDatabase:
        """
        Get the database instance for direct operations.

        Raises:
            RuntimeError: If not connected to MongoDB.
        """
        if self._database is None:
            raise RuntimeError(
                "MongoDB database not available. Call connect() first or check connection status."
            )
        return self._database

    def _collection(self, name: str) -> AsyncIOMotorCollection:
        return self.get_database()[name]

    def get_catalog_items_collection(self) -> AsyncIOMotorCollection:
        """Catalog items imported from the stamp archive (read-only for the pipeline)."""
        return self._collection(CATALOG_ITEMS_COLLECTION)

    def get_mint_records_collection(self) -> AsyncIOMotorCollection:
        """Mint records, unique on catalog_item_id and serial_number."""
        return self._collection(MINT_RECORDS_COLLECTION)

    def get_distributions_collection(self) -> AsyncIOMotorCollection:
        """Append-only StampCoin distributions."""
        return self._collection(DISTRIBUTIONS_COLLECTION)

    def get_balances_collection(self) -> AsyncIOMotorCollection:
        """Per-holder StampCoin balances, unique on user_id."""
        return self._collection(BALANCES_COLLECTION)

    def get_ledger_aggregate_collection(self) -> AsyncIOMotorCollection:
        """Singleton supply counters."""
        return self._collection(LEDGER_AGGREGATE_COLLECTION)

    def get_serial_counters_collection(self) -> AsyncIOMotorCollection:
        """Serial counters keyed by scope."""
        return self._collection(SERIAL_COUNTERS_COLLECTION)

    async def create_indexes(self) -> None:
        """
        Create collections and indexes.

        The unique indexes on mint_records.catalog_item_id and
        mint_records.serial_number are the source of truth for mint
        uniqueness. Collections are created explicitly because MongoDB
        versions before 4.4 cannot create collections inside a transaction.
        """
        database = self.get_database()

        try:
            logger.info("Creating MongoDB collections and indexes...")

            existing = set(await database.list_collection_names())
            for name in ALL_COLLECTIONS:
                if name not in existing:
                    await database.create_collection(name)

            mint_records = database[MINT_RECORDS_COLLECTION]
            await mint_records.create_index("catalog_item_id", unique=True)
            await mint_records.create_index("serial_number", unique=True)
            await mint_records.create_index([("owner_id", 1), ("created_at", -1)])

            distributions = database[DISTRIBUTIONS_COLLECTION]
            await distributions.create_index([("user_id", 1), ("created_at", -1)])
            await distributions.create_index("mint_record_id", sparse=True)
            await distributions.create_index("kind")
            await distributions.create_index("status")

            balances = database[BALANCES_COLLECTION]
            await balances.create_index("user_id", unique=True)

            catalog = database[CATALOG_ITEMS_COLLECTION]
            await catalog.create_index("country")

            logger.info("All MongoDB indexes created successfully")

        except Exception:
            logger.exception("Error creating MongoDB indexes")
            raise


# Container class for database client singleton to avoid global statements
class _DatabaseClientContainer:
    client: DatabaseClient | None = None


_container = _DatabaseClientContainer()


async def init_db(settings: Settings | None = None) -> DatabaseClient:
    """
    Initialize the global database client singleton.

    Creates a DatabaseClient, connects to MongoDB and creates indexes. Called
    during FastAPI application startup.

    Raises:
        RuntimeError: If connection to MongoDB fails after all retries.
    """
    if _container.client is not None:
        logger.warning("Database client already initialized, returning existing instance")
        return _container.client

    if settings is None:
        settings = Settings()

    logger.info("Initializing MongoDB database client...")

    _container.client = DatabaseClient(settings)

    connected = await _container.client.connect()
    if not connected:
        _container.client = None
        raise RuntimeError(
            "Failed to establish MongoDB connection. "
            "Check mongodb_uri configuration and server availability."
        )

    await _container.client.create_indexes()

    logger.info("MongoDB database client initialization complete")
    return _container.client


async def close_db() -> None:
    """Close the global database client connection."""
    if _container.client is not None:
        logger.info("Closing MongoDB database client...")
        await _container.client.close()
        _container.client = None
    else:
        logger.warning("close_db called but no database client exists")


def get_db_client() -> DatabaseClient:
    """
    Get the global database client singleton instance.

    Raises:
        RuntimeError: If database client has not been initialized.
    """
    if _container.client is None:
        raise RuntimeError(
            "Database client not initialized. Call init_db() first during application startup."
        )
    return _container.client
