"""
Core infrastructure for the StampMint backend.

This package contains the foundational infrastructure components:
- auth: Bearer-token principal resolution (local JWT)
- database: MongoDB async client with Motor driver and connection pooling
- exceptions: Minting error taxonomy shared by services and the API layer
- mint_store: Persistence boundary for catalog items, mint records and the ledger
- pinning: HTTP clients for the primary and secondary IPFS pinning providers

All services in this package are designed for async operation and follow
the singleton pattern for efficient resource management.
"""
