"""
StampCoin Ledger Service for StampMint.

Tracks StampCoin supply against a hard cap and keeps per-holder balances.

Invariants:
    circulating_supply <= max_supply           (checked inside the same atomic
                                                update that increments supply)
    circulating_supply == total_supply - burned_supply
    every distribution is appended in the same transaction that moves supply

Credits are rejected, never clamped: a credit that would cross the cap raises
SupplyExhaustedError and aborts the enclosing transaction.
"""

import asyncio
import logging

from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any, TypeVar

from stampmint.config import Settings
from stampmint.core.exceptions import (
    ContentionError,
    InsufficientBalanceError,
    InternalStoreError,
    SupplyExhaustedError,
)
from stampmint.core.mint_store import MintStore, MintTransaction
from stampmint.models.common import ZERO, quantize_amount
from stampmint.models.ledger import (
    CurrencyBalance,
    CurrencyDistribution,
    DistributionBreakdown,
    DistributionKind,
    LedgerAggregate,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_transaction(
    store: MintStore,
    work: Callable[[MintTransaction], Awaitable[T]],
    *,
    max_attempts: int,
    base_delay: float,
    operation: str,
) -> T:
    """
    Run ``work`` inside a store transaction, retrying on ContentionError.

    Each attempt opens a fresh transaction; a contended attempt is rolled
    back in full before the next one starts.

    Raises:
        ContentionError: When every attempt was contended.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            async with store.transaction() as tx:
                return await work(tx)
        except ContentionError:
            if attempt == max_attempts:
                logger.warning(
                    "%s gave up after %s contended attempts",
                    operation,
                    max_attempts,
                    extra={"operation": operation},
                )
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.info(
                "%s contended, retrying",
                operation,
                extra={"operation": operation, "attempt": attempt, "delay": delay},
            )
            await asyncio.sleep(delay)

    raise ContentionError(f"{operation} did not run", operation=operation)


class LedgerService:
    """
    StampCoin ledger operations.

    Args:
        store: Mint store holding the aggregate, distributions and balances.
        settings: Settings with the supply cap, price and retry policy.
    """

    def __init__(self, store: MintStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def _aggregate_defaults(self) -> dict[str, Any]:
        aggregate = LedgerAggregate(
            currency_name=self._settings.currency_name,
            currency_symbol=self._settings.currency_symbol,
            max_supply=self._settings.currency_max_supply,
            price_usd=self._settings.currency_price_usd,
        )
        return aggregate.model_dump(by_alias=True)

    async def ensure_aggregate(self) -> LedgerAggregate:
        """Create the aggregate with configured supply parameters if it is missing."""
        doc = await self._store.ensure_ledger_aggregate(self._aggregate_defaults())
        return LedgerAggregate.model_validate(doc)

    async def get_aggregate(self) -> LedgerAggregate:
        """Return the supply counters, initializing them on first use."""
        doc = await self._store.get_ledger_aggregate()
        if doc is None:
            logger.info("Ledger aggregate missing, initializing with configured supply")
            return await self.ensure_aggregate()
        return LedgerAggregate.model_validate(doc)

    async def credit(self, amount: Decimal, tx: MintTransaction, user_id: str) -> None:
        """
        Credit StampCoin to a holder inside an open transaction.

        Raises:
            ValueError: If the amount is negative.
            SupplyExhaustedError: If the credit would exceed the supply cap.
            InternalStoreError: If the aggregate has not been initialized.
        """
        amount = quantize_amount(amount)
        if amount < 0:
            raise ValueError(f"Credit amount must not be negative, got {amount}")
        if amount == ZERO:
            return

        if not await tx.increment_supply(amount):
            aggregate_doc = await tx.get_ledger_aggregate()
            if aggregate_doc is None:
                raise InternalStoreError("Ledger aggregate is not initialized")
            aggregate = LedgerAggregate.model_validate(aggregate_doc)
            raise SupplyExhaustedError(
                f"Crediting {amount} {aggregate.currency_symbol} would exceed the maximum "
                f"supply of {aggregate.max_supply}",
                amount=str(amount),
                remaining=str(aggregate.remaining_supply),
            )

        await tx.adjust_balance(user_id, amount)

    async def grant_adjustment(self, user_id: str, amount: Decimal, memo: str = "") -> CurrencyDistribution:
        """
        Credit an administrative adjustment, subject to the same supply cap.

        Raises:
            ValueError: If the amount is not positive.
            SupplyExhaustedError: If the credit would exceed the supply cap.
        """
        amount = quantize_amount(amount)
        if amount <= 0:
            raise ValueError("Adjustment amount must be positive")

        await self.get_aggregate()
        distribution = CurrencyDistribution(
            user_id=user_id, amount=amount, kind=DistributionKind.ADJUSTMENT, memo=memo
        )

        async def work(tx: MintTransaction) -> CurrencyDistribution:
            await self.credit(amount, tx, user_id)
            await tx.insert_distribution(distribution.model_dump(by_alias=True))
            return distribution

        result = await run_in_transaction(
            self._store,
            work,
            max_attempts=self._settings.mint_commit_max_attempts,
            base_delay=self._settings.retry_base_delay_seconds,
            operation="grant_adjustment",
        )
        logger.info(
            "Granted adjustment",
            extra={"user_id": user_id, "amount": amount, "distribution_id": result.id},
        )
        return result

    async def burn(self, user_id: str, amount: Decimal, memo: str = "") -> CurrencyDistribution:
        """
        Remove StampCoin from a holder and from circulation.

        Raises:
            ValueError: If the amount is not positive.
            InsufficientBalanceError: If the holder's balance is below ``amount``.
        """
        amount = quantize_amount(amount)
        if amount <= 0:
            raise ValueError("Burn amount must be positive")

        distribution = CurrencyDistribution(
            user_id=user_id, amount=amount, kind=DistributionKind.BURN, memo=memo
        )

        async def work(tx: MintTransaction) -> CurrencyDistribution:
            if not await tx.adjust_balance(user_id, -amount):
                raise InsufficientBalanceError(
                    f"Balance of {user_id} is below {amount}", user_id=user_id, amount=str(amount)
                )
            if not await tx.decrement_supply(amount):
                raise InternalStoreError("Circulating supply is below a holder balance")
            await tx.insert_distribution(distribution.model_dump(by_alias=True))
            return distribution

        result = await run_in_transaction(
            self._store,
            work,
            max_attempts=self._settings.mint_commit_max_attempts,
            base_delay=self._settings.retry_base_delay_seconds,
            operation="burn",
        )
        logger.info("Burned StampCoin", extra={"user_id": user_id, "amount": amount})
        return result

    async def get_balance(self, user_id: str) -> CurrencyBalance:
        """Return a holder's balance; holders without entries have zero."""
        doc = await self._store.get_balance(user_id)
        if doc is None:
            return CurrencyBalance(user_id=user_id)
        return CurrencyBalance.model_validate(doc)

    async def list_distributions(
        self,
        user_id: str,
        skip: int = 0,
        limit: int = 50,
        kind: DistributionKind | None = None,
    ) -> tuple[list[CurrencyDistribution], int]:
        """List a holder's distributions, newest first, with the total count."""
        docs, total = await self._store.list_distributions(
            user_id, skip=skip, limit=limit, kind=kind.value if kind else None
        )
        return [CurrencyDistribution.model_validate(doc) for doc in docs], total

    async def distribution_breakdown(self) -> DistributionBreakdown:
        """Count and sum all distributions by kind and by status."""
        by_kind = await self._store.distribution_groups("kind")
        by_status = await self._store.distribution_groups("status")
        return DistributionBreakdown.from_groups(by_kind, by_status)
