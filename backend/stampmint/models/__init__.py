"""
Models Package for StampMint.

Pydantic models for catalog items, valuations, mint records, ledger entries
and pinning results. Persisted models alias ``id`` to MongoDB's ``_id`` so
documents round-trip with ``model_validate`` / ``model_dump(by_alias=True)``.

Models Overview:
    - CatalogItem: Catalogued physical stamp (immutable)
    - Valuation: Deterministic USD valuation (derived, not persisted)
    - MintRecord: The single token record of a catalog item
    - CurrencyDistribution: Append-only StampCoin ledger entry
    - LedgerAggregate: Singleton supply counters
    - PinResult: Combined primary/secondary pinning outcome
"""

from stampmint.models.catalog import CatalogItem, Condition, Rarity, Valuation
from stampmint.models.common import DECIMAL_PRECISION, quantize_amount
from stampmint.models.ledger import (
    LEDGER_AGGREGATE_ID,
    CurrencyBalance,
    CurrencyDistribution,
    DistributionBreakdown,
    DistributionKind,
    DistributionStatus,
    DistributionTotals,
    LedgerAggregate,
    LedgerEntryRequest,
)
from stampmint.models.mint import (
    PLACEHOLDER_TOKEN_IDENTIFIER,
    MintRecord,
    MintRequest,
    MintResult,
    ReconcileRequest,
)
from stampmint.models.pinning import PinFailure, PinMetadata, PinResult, PinSkipped, PinSuccess


__all__ = [
    "DECIMAL_PRECISION",
    "LEDGER_AGGREGATE_ID",
    "PLACEHOLDER_TOKEN_IDENTIFIER",
    "CatalogItem",
    "Condition",
    "CurrencyBalance",
    "CurrencyDistribution",
    "DistributionBreakdown",
    "DistributionKind",
    "DistributionStatus",
    "DistributionTotals",
    "LedgerAggregate",
    "LedgerEntryRequest",
    "MintRecord",
    "MintRequest",
    "MintResult",
    "PinFailure",
    "PinMetadata",
    "PinResult",
    "PinSkipped",
    "PinSuccess",
    "Rarity",
    "ReconcileRequest",
    "Valuation",
    "quantize_amount",
]
