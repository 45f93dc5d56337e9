"""
StampMint IPFS Pinning Provider Clients

This module provides async HTTP clients for the two content-addressed pinning
providers used when minting:
- NFTStorageProvider: mandatory primary provider (NFT.Storage-compatible API)
- PinataProvider: optional secondary provider (Pinata-compatible API)

Each provider pins the image first and then an OpenSea-style metadata JSON
document referencing the image CID. Requests are retried on transport
errors, HTTP 429 and 5xx responses with exponential backoff. Overall time
limits are enforced by the pinning service, not here.
"""

import asyncio
import json
import logging

from abc import ABC, abstractmethod
from typing import Any

import httpx

from stampmint.config import Settings
from stampmint.models.pinning import PinMetadata, PinSuccess


logger = logging.getLogger(__name__)

PRIMARY_PROVIDER_ID = "nft_storage"
SECONDARY_PROVIDER_ID = "pinata"

# Status codes that are worth another attempt
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class PinningProviderError(Exception):
    """Raised when a provider request fails after its retries."""

    def __init__(self, provider_id: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id
        self.status_code = status_code


class PinningProvider(ABC):
    """
    Base class for pinning provider clients.

    Subclasses implement ``_auth_headers``, ``_upload_path`` and
    ``_extract_cid``; the upload, retry and metadata flow is shared.

    Args:
        settings: Application settings with provider credentials.
        transport: Optional httpx transport, used to substitute a mock transport.
    """

    provider_id: str = "provider"

    def __init__(
        self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._max_attempts = settings.pin_provider_max_attempts
        self._base_delay = settings.retry_base_delay_seconds

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when credentials for the provider are present."""

    @property
    @abstractmethod
    def base_url(self) -> str:
        """API base URL."""

    @property
    @abstractmethod
    def gateway_url(self) -> str:
        """Public gateway prefix for CIDs."""

    @abstractmethod
    def _auth_headers(self) -> dict[str, str]:
        """Authentication headers for every request."""

    @abstractmethod
    def _upload_path(self) -> str:
        """Path of the file upload endpoint."""

    @abstractmethod
    def _extract_cid(self, payload: dict[str, Any]) -> str | None:
        """Pull the content identifier out of an upload response."""

    def _extra_form_fields(self, name: str) -> dict[str, str]:
        return {}

    async def pin(
        self, content: bytes, mime_type: str, identifier: str, metadata: PinMetadata
    ) -> PinSuccess:
        """
        Pin an image and its metadata document.

        Args:
            content: Validated image bytes.
            mime_type: Image MIME type.
            identifier: Sanitized identifier used to name the uploaded files.
            metadata: Token name, description and attributes.

        Returns:
            PinSuccess with the image URI and the metadata URI.

        Raises:
            PinningProviderError: If either upload fails after retries.
            RuntimeError: If the provider is not configured.
        """
        if not self.is_configured:
            raise RuntimeError(f"Pinning provider '{self.provider_id}' is not configured")

        extension = mime_type.split("/", 1)[-1]
        async with httpx.AsyncClient(
            base_url=self.base_url,
            transport=self._transport,
            timeout=self._settings.pin_provider_timeout_seconds,
        ) as client:
            image_cid = await self._upload(
                client, f"{identifier}.{extension}", content, mime_type, metadata.name
            )
            image_uri = f"ipfs://{image_cid}"

            document = {
                "name": metadata.name,
                "description": metadata.description,
                "image": image_uri,
                "attributes": metadata.attributes,
            }
            if metadata.external_url:
                document["external_url"] = metadata.external_url

            metadata_cid = await self._upload(
                client,
                f"{identifier}-metadata.json",
                json.dumps(document).encode("utf-8"),
                "application/json",
                f"{metadata.name} metadata",
            )

        logger.info(
            "Pinned asset to %s",
            self.provider_id,
            extra={"provider": self.provider_id, "cid": image_cid, "metadata_cid": metadata_cid},
        )

        return PinSuccess(
            provider_id=self.provider_id,
            uri=image_uri,
            cid=image_cid,
            gateway_url=f"{self.gateway_url.rstrip('/')}/{image_cid}",
            metadata_uri=f"ipfs://{metadata_cid}",
        )

    async def _upload(
        self,
        client: httpx.AsyncClient,
        filename: str,
        content: bytes,
        mime_type: str,
        name: str,
    ) -> str:
        files = {"file": (filename, content, mime_type)}
        data = self._extra_form_fields(name)
        last_error = "no attempts made"
        status_code: int | None = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                response = await client.post(
                    self._upload_path(), files=files, data=data, headers=self._auth_headers()
                )
            except httpx.TransportError as e:
                last_error = f"request failed: {e}"
                status_code = None
            else:
                if response.status_code < 300:
                    try:
                        payload = response.json()
                    except ValueError as e:
                        raise PinningProviderError(
                            self.provider_id, f"unparseable response: {e}", response.status_code
                        ) from e
                    if not isinstance(payload, dict):
                        raise PinningProviderError(
                            self.provider_id,
                            f"unexpected response body of type {type(payload).__name__}",
                            response.status_code,
                        )
                    cid = self._extract_cid(payload)
                    if not isinstance(cid, str) or not cid:
                        raise PinningProviderError(
                            self.provider_id, "response did not contain a CID", response.status_code
                        )
                    return cid

                status_code = response.status_code
                last_error = f"API error {response.status_code}: {response.text[:200]}"
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    raise PinningProviderError(self.provider_id, last_error, status_code)

            if attempt < self._max_attempts:
                delay = self._base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Pin upload to %s failed (attempt %s/%s), retrying in %.2fs: %s",
                    self.provider_id,
                    attempt,
                    self._max_attempts,
                    delay,
                    last_error,
                )
                await asyncio.sleep(delay)

        raise PinningProviderError(self.provider_id, last_error, status_code)


class NFTStorageProvider(PinningProvider):
    """Primary provider speaking the NFT.Storage upload API."""

    provider_id = PRIMARY_PROVIDER_ID

    @property
    def is_configured(self) -> bool:
        return self._settings.is_primary_pinning_configured

    @property
    def base_url(self) -> str:
        return self._settings.nft_storage_base_url

    @property
    def gateway_url(self) -> str:
        return self._settings.nft_storage_gateway_url

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._settings.nft_storage_api_key}"}

    def _upload_path(self) -> str:
        return "/upload"

    def _extract_cid(self, payload: dict[str, Any]) -> str | None:
        value = payload.get("value")
        return value.get("cid") if isinstance(value, dict) else None


class PinataProvider(PinningProvider):
    """Secondary provider speaking the Pinata pinFileToIPFS API."""

    provider_id = SECONDARY_PROVIDER_ID

    @property
    def is_configured(self) -> bool:
        return self._settings.is_secondary_pinning_configured

    @property
    def base_url(self) -> str:
        return self._settings.pinata_base_url

    @property
    def gateway_url(self) -> str:
        return self._settings.pinata_gateway_url

    def _auth_headers(self) -> dict[str, str]:
        if self._settings.pinata_jwt:
            return {"Authorization": f"Bearer {self._settings.pinata_jwt}"}
        return {
            "pinata_api_key": self._settings.pinata_api_key or "",
            "pinata_secret_api_key": self._settings.pinata_secret_api_key or "",
        }

    def _upload_path(self) -> str:
        return "/pinning/pinFileToIPFS"

    def _extra_form_fields(self, name: str) -> dict[str, str]:
        return {"pinataMetadata": json.dumps({"name": name})}

    def _extract_cid(self, payload: dict[str, Any]) -> str | None:
        return payload.get("IpfsHash")
