"""
Serial Number Allocation Service for StampMint.

Issues human-readable serial numbers of the form ``{SCOPE}-{sequence:06d}``
(for example ``FRANCE-000042``). Each scope has its own counter, advanced by
a single atomic increment-and-read in the mint store, so concurrent callers
always receive distinct, dense sequences. Sequences wider than six digits
are printed in full.

Transient store failures are retried with jittered exponential backoff; once
the retry budget is spent a ContentionError is raised and no sequence is
reserved by the failed attempts.
"""

import asyncio
import logging
import random

from stampmint.config import Settings
from stampmint.core.exceptions import ContentionError
from stampmint.core.mint_store import MintStore
from stampmint.utils.media_validator import sanitize_identifier


logger = logging.getLogger(__name__)

SEQUENCE_WIDTH = 6


def format_serial(scope_key: str, sequence: int) -> str:
    """Render a serial number, zero-padding the sequence to six digits."""
    return f"{scope_key}-{sequence:0{SEQUENCE_WIDTH}d}"


class SerialService:
    """
    Allocates serial numbers per scope.

    Args:
        store: Mint store providing the atomic counter.
        settings: Settings with the default scope and retry policy.
    """

    def __init__(self, store: MintStore, settings: Settings) -> None:
        self._store = store
        self._default_scope = settings.serial_default_scope
        self._max_attempts = settings.serial_max_attempts
        self._base_delay = settings.retry_base_delay_seconds

    def normalize_scope(self, scope_key: str | None) -> str:
        """Sanitize and upper-case a scope; empty scopes use the default."""
        if not scope_key or not scope_key.strip():
            return self._default_scope
        sanitized = sanitize_identifier(scope_key.strip().replace(" ", "_"))
        return sanitized.upper()

    async def allocate(self, scope_key: str | None) -> str:
        """
        Allocate the next serial number in a scope.

        Raises:
            ContentionError: If the counter stays contended past the retry budget.
        """
        scope = self.normalize_scope(scope_key)

        for attempt in range(1, self._max_attempts + 1):
            try:
                sequence = await self._store.increment_serial_counter(scope)
            except ContentionError:
                if attempt == self._max_attempts:
                    break
                delay = self._base_delay * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)
                logger.info(
                    "Serial counter contended, retrying",
                    extra={"scope": scope, "attempt": attempt, "delay": round(delay, 4)},
                )
                await asyncio.sleep(delay)
                continue

            return format_serial(scope, sequence)

        logger.warning(
            "Serial allocation gave up after %s attempts", self._max_attempts, extra={"scope": scope}
        )
        raise ContentionError(
            f"Serial counter for scope '{scope}' is contended; retry later", scope=scope
        )

    async def peek(self, scope_key: str | None) -> int:
        """Return the last sequence issued in a scope (0 when none)."""
        return await self._store.get_serial_counter(self.normalize_scope(scope_key))
