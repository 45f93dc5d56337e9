"""
Pinning Result Models for StampMint.

A pin call talks to two independent providers. Each provider's outcome is a
typed variant of a discriminated union (``status`` = ok | error | skipped) so
that a failed secondary provider is reported as data, never as an exception.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class PinMetadata(BaseModel):
    """Token metadata sent alongside the pinned image."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=5000)
    attributes: list[dict[str, Any]] = Field(default_factory=list)
    external_url: str | None = None


class PinSuccess(BaseModel):
    """A provider pinned the image and its metadata document."""

    status: Literal["ok"] = "ok"
    provider_id: str
    uri: str = Field(..., description="ipfs:// URI of the pinned image")
    cid: str
    gateway_url: str | None = None
    metadata_uri: str | None = Field(default=None, description="ipfs:// URI of the metadata JSON")


class PinFailure(BaseModel):
    """A provider was configured but failed or timed out."""

    status: Literal["error"] = "error"
    provider_id: str
    error: str
    timed_out: bool = False


class PinSkipped(BaseModel):
    """The provider is not configured."""

    status: Literal["skipped"] = "skipped"
    provider_id: str
    reason: str = "provider not configured"


SecondaryOutcome = Annotated[PinSuccess | PinFailure | PinSkipped, Field(discriminator="status")]


class PinResult(BaseModel):
    """
    Combined outcome of one pin call.

    The primary provider is mandatory, so a PinResult only exists when the
    primary succeeded; the secondary may have succeeded, failed or been skipped.
    """

    primary: PinSuccess
    secondary: SecondaryOutcome

    @property
    def secondary_failed(self) -> bool:
        """True when the secondary provider was configured but failed."""
        return isinstance(self.secondary, PinFailure)
