"""
StampMint API Package.

Package Structure:
    - errors.py: Mapping of minting errors to HTTP responses
    - v1/: Version 1 API endpoints
        - mint.py: Minting, mint records and reconciliation
        - pricing.py: Valuations and quotes
        - pin.py: Direct IPFS pinning
        - ledger.py: StampCoin supply, balances and distributions
        - dependencies.py: Service providers for dependency injection

All endpoints are versioned under the /api/v1 URL prefix.
"""
