"""
Services module for the StampMint backend.

This package contains the business logic of the minting pipeline:

- pricing_service: Deterministic stamp valuation and USD to StampCoin conversion
- serial_service: Per-scope serial number allocation
- pinning_service: Dual-provider IPFS pinning with local media validation
- ledger_service: StampCoin supply cap, balances and distributions
- minting_service: Orchestration of a mint from catalog item to token record
"""
