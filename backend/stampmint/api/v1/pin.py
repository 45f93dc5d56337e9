"""
StampMint Pinning API Router Module.

Endpoints:
    POST / - Pin a base64 image (or data: URI) and its metadata

The primary provider is mandatory; a failed secondary provider is reported
inside the response body rather than as an error.
"""

import logging

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from stampmint.api.v1.dependencies import get_pinning_service
from stampmint.core.auth import get_current_principal
from stampmint.models.pinning import PinResult
from stampmint.services.pinning_service import PinningService


logger = logging.getLogger(__name__)

router = APIRouter(tags=["pinning"])


class PinRequest(BaseModel):
    """Image and descriptive fields to pin."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=5000)
    image_base64: str = Field(..., min_length=1, description="Base64 payload or data: URI")


@router.post("", response_model=PinResult)
async def pin_asset(
    request: PinRequest,
    principal: dict[str, Any] = Depends(get_current_principal),
    service: PinningService = Depends(get_pinning_service),
) -> PinResult:
    """Pin an image to the primary and, when configured, the secondary provider."""
    result = await service.pin_base64(request.name, request.description, request.image_base64)
    logger.info(
        "Asset pinned",
        extra={
            "principal": principal["_id"],
            "cid": result.primary.cid,
            "secondary_status": result.secondary.status,
        },
    )
    return result
