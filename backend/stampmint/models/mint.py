"""
Mint Record Models for StampMint.

A MintRecord is the single token record produced for a catalog item. It is
created once inside the mint transaction with a placeholder token identifier
and later reconciled with the on-chain identifier. Records are never deleted.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stampmint.models.catalog import Valuation
from stampmint.models.common import new_id, utc_now
from stampmint.models.pinning import PinResult


# Token identifier stored until the on-chain mint is reconciled
PLACEHOLDER_TOKEN_IDENTIFIER = "pending"


class MintRecord(BaseModel):
    """
    Token record for one catalog item.

    Attributes:
        id: Record identifier (aliased from MongoDB _id).
        catalog_item_id: Minted catalog item; unique across all records.
        serial_number: Human-readable serial; unique across all records.
        owner_id: Authenticated principal that requested the mint.
        owner_address: Wallet address the token is destined for, when given.
        contract_address: Token contract address configured at mint time.
        blockchain_network: Network of the token contract.
        token_identifier: On-chain token id, "pending" until reconciled.
        transaction_hash: On-chain transaction hash once reconciled.
        metadata_uri: ipfs:// URI of the pinned metadata document.
        image_uri: ipfs:// URI of the image on the primary provider.
        secondary_image_uri: Image URI on the secondary provider, when it succeeded.
        final_value: USD valuation at mint time.
        created_at: Creation timestamp.
        reconciled_at: Timestamp of on-chain reconciliation.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id, alias="_id")
    catalog_item_id: str = Field(..., min_length=1)
    serial_number: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1, max_length=100)
    owner_address: str | None = Field(default=None, max_length=100)
    contract_address: str | None = Field(default=None, max_length=100)
    blockchain_network: str | None = Field(default=None, max_length=20)
    token_identifier: str = Field(default=PLACEHOLDER_TOKEN_IDENTIFIER)
    transaction_hash: str | None = None
    metadata_uri: str | None = None
    image_uri: str
    secondary_image_uri: str | None = None
    final_value: Decimal = Field(..., ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    reconciled_at: datetime | None = None

    @property
    def is_reconciled(self) -> bool:
        """True once the record carries its on-chain token identifier."""
        return self.token_identifier != PLACEHOLDER_TOKEN_IDENTIFIER


class MintResult(BaseModel):
    """Outcome of a successful mint."""

    mint_record: MintRecord
    serial_number: str
    distributed_amount: Decimal
    valuation: Valuation
    pin_result: PinResult


class MintRequest(BaseModel):
    """Request body for minting a catalog item."""

    catalog_item_id: str = Field(..., min_length=1, max_length=100)
    wallet_address: str | None = Field(
        default=None,
        pattern=r"^[A-Za-z0-9]{20,100}$",
        description="Wallet address the token should be sent to",
    )

    @field_validator("wallet_address", mode="before")
    @classmethod
    def blank_wallet_address_to_none(cls, value: str | None) -> str | None:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ReconcileRequest(BaseModel):
    """Request body for reconciling a mint with its on-chain token."""

    token_identifier: str = Field(..., min_length=1, max_length=100)
    transaction_hash: str | None = Field(default=None, max_length=100)

    @field_validator("token_identifier")
    @classmethod
    def validate_token_identifier(cls, value: str) -> str:
        """The placeholder cannot be used as an on-chain identifier."""
        if value.strip() == PLACEHOLDER_TOKEN_IDENTIFIER:
            raise ValueError(f"'{PLACEHOLDER_TOKEN_IDENTIFIER}' is not a valid token identifier")
        return value.strip()
