"""
StampMint Backend Application Package

This package contains the StampMint FastAPI service that converts catalogued
physical stamps into tokenized mints and tracks the capped StampCoin supply
awarded for each mint. The service provides:

- Deterministic catalog item valuation
- Collision-free serial number allocation per catalog scope
- Dual-provider content pinning (primary mandatory, secondary best-effort)
- Atomic mint + ledger credit transactions with a hard supply cap

Package Structure:
- api/: REST API endpoints organized by version (v1)
- core/: Core infrastructure (database, mint store, pinning clients, auth, errors)
- models/: Pydantic data models for all entities
- services/: Business logic layer for pricing, serials, pinning, ledger, minting
- utils/: Logging and media validation helpers
"""

__version__ = "1.0.0"
__app_name__ = "StampMint"
