"""
Error taxonomy for the StampMint minting pipeline.

Every failure the pipeline surfaces to a caller is a subclass of MintingError
carrying a stable ``kind`` string and a ``retryable`` flag. The API layer maps
kinds to HTTP status codes; services never translate them into one another
except where documented (ContentionError is retried inside the orchestrator).
"""

from typing import Any


class MintingError(Exception):
    """Base exception for all minting pipeline errors."""

    kind: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for API responses and structured logs."""
        return {
            "error": self.kind,
            "detail": self.message,
            "retryable": self.retryable,
        }


class NotFoundError(MintingError):
    """Raised when a catalog item or mint record does not exist."""

    kind = "not_found"


class AlreadyMintedError(MintingError):
    """Raised when a catalog item already has a mint record."""

    kind = "already_minted"


class PinningFailedError(MintingError):
    """Raised when the primary pinning provider fails after its retries."""

    kind = "pinning_failed"


class SupplyExhaustedError(MintingError):
    """Raised when a credit would push circulating supply above the cap."""

    kind = "supply_exhausted"


class ContentionError(MintingError):
    """Raised when a shared counter or the ledger stays contended past the retry budget."""

    kind = "contention"
    retryable = True


class MediaValidationError(MintingError):
    """Raised when an asset is rejected locally (size, MIME type, encoding)."""

    kind = "validation_error"


class InsufficientBalanceError(MintingError):
    """Raised when a burn exceeds the holder's balance."""

    kind = "insufficient_balance"


class AlreadyReconciledError(MintingError):
    """Raised when a mint record already carries a different on-chain identifier."""

    kind = "conflict"


class InternalStoreError(MintingError):
    """Raised for unexpected persistent store failures."""

    kind = "internal_error"


class UniqueConstraintError(InternalStoreError):
    """
    Raised by the mint store when a write violates a unique index.

    ``field`` names the violated key (for example ``catalog_item_id`` or
    ``serial_number``) so callers can map the violation to a domain error.
    """

    def __init__(self, message: str, field: str, **context: Any) -> None:
        super().__init__(message, field=field, **context)
        self.field = field
