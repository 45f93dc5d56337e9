"""
IPFS Pinning Service for StampMint.

Pins a validated image and its metadata to two independent providers:

    primary   (NFT.Storage-compatible)  mandatory; failure aborts the pin
    secondary (Pinata-compatible)       optional; failure is reported as data

Workflow:
    1. Validate the payload locally (non-empty, size cap, image MIME allow-list
       checked against the decoded content). No network call happens for a
       rejected payload.
    2. Sanitize the identifier used to name provider-side files.
    3. Run both providers concurrently, each bounded by
       ``pin_provider_timeout_seconds``.
    4. Primary failure or timeout raises PinningFailedError. Secondary
       failure or timeout becomes a PinFailure inside the returned
       PinResult and is logged at WARNING; an unconfigured secondary is
       reported as PinSkipped.

The service also resolves catalog image references (``load_media``):
``data:`` URIs are decoded locally and http(s) URLs are downloaded with the
same size limit.
"""

import asyncio
import logging

import httpx

from stampmint.config import Settings
from stampmint.core.exceptions import MediaValidationError, PinningFailedError
from stampmint.core.pinning import (
    NFTStorageProvider,
    PinataProvider,
    PinningProvider,
    PinningProviderError,
)
from stampmint.models.pinning import PinFailure, PinMetadata, PinResult, PinSkipped, PinSuccess
from stampmint.utils.media_validator import (
    decode_base64_payload,
    sanitize_identifier,
    validate_image_payload,
)


logger = logging.getLogger(__name__)

# Content types that carry no real type information
GENERIC_CONTENT_TYPES = frozenset({"application/octet-stream", "binary/octet-stream", ""})


class PinningService:
    """
    Pins assets to the primary and secondary providers.

    Args:
        settings: Settings with credentials, limits and timeouts.
        primary: Primary provider; defaults to an NFTStorageProvider.
        secondary: Secondary provider; defaults to a PinataProvider.
        transport: Optional httpx transport shared by the default providers
            and the media downloader.

    Example:
        ```python
        service = PinningService(get_settings())
        result = await service.pin(png_bytes, "image/png", PinMetadata(name="Penny Black"))
        print(result.primary.uri, result.secondary.status)
        ```
    """

    def __init__(
        self,
        settings: Settings,
        primary: PinningProvider | None = None,
        secondary: PinningProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._primary = primary or NFTStorageProvider(settings, transport=transport)
        self._secondary = secondary or PinataProvider(settings, transport=transport)
        self._transport = transport
        self._timeout = settings.pin_provider_timeout_seconds

    def validate(self, asset: bytes, mime_type: str | None) -> str:
        """
        Validate an asset and return its detected MIME type.

        Raises:
            MediaValidationError: If the asset is empty, too large or not an allowed image.
        """
        return validate_image_payload(
            asset,
            mime_type,
            self._settings.allowed_image_mime_types,
            self._settings.max_pin_bytes,
        )

    async def pin(
        self,
        asset: bytes,
        mime_type: str | None,
        metadata: PinMetadata,
        identifier: str | None = None,
    ) -> PinResult:
        """
        Pin an asset and its metadata to both providers.

        Args:
            asset: Raw image bytes.
            mime_type: Declared MIME type, or None to rely on content detection.
            metadata: Token metadata for the metadata document.
            identifier: Name for provider-side files; defaults to the metadata name.

        Returns:
            PinResult with the primary success and the secondary outcome.

        Raises:
            MediaValidationError: If local validation fails.
            PinningFailedError: If the primary provider fails or times out.
        """
        detected_mime = self.validate(asset, mime_type)
        safe_identifier = sanitize_identifier(identifier or metadata.name)

        if not self._primary.is_configured:
            raise PinningFailedError(
                "Primary pinning provider is not configured", provider=self._primary.provider_id
            )

        primary_outcome, secondary_outcome = await asyncio.gather(
            self._pin_with_timeout(self._primary, asset, detected_mime, safe_identifier, metadata),
            self._pin_secondary(asset, detected_mime, safe_identifier, metadata),
        )

        if isinstance(primary_outcome, PinFailure):
            logger.error(
                "Primary pinning failed: %s",
                primary_outcome.error,
                extra={"provider": primary_outcome.provider_id, "timed_out": primary_outcome.timed_out},
            )
            raise PinningFailedError(
                f"Primary pinning provider failed: {primary_outcome.error}",
                provider=primary_outcome.provider_id,
                timed_out=primary_outcome.timed_out,
            )

        if isinstance(secondary_outcome, PinFailure):
            logger.warning(
                "Secondary pinning failed, continuing with primary only: %s",
                secondary_outcome.error,
                extra={
                    "provider": secondary_outcome.provider_id,
                    "timed_out": secondary_outcome.timed_out,
                    "identifier": safe_identifier,
                },
            )

        return PinResult(primary=primary_outcome, secondary=secondary_outcome)

    async def _pin_secondary(
        self, asset: bytes, mime_type: str, identifier: str, metadata: PinMetadata
    ) -> PinSuccess | PinFailure | PinSkipped:
        if not self._secondary.is_configured:
            return PinSkipped(provider_id=self._secondary.provider_id)
        try:
            return await self._pin_with_timeout(self._secondary, asset, mime_type, identifier, metadata)
        except Exception as e:
            # The secondary outcome is always data, whatever the provider did
            logger.exception("Unexpected error from secondary pinning provider")
            return PinFailure(
                provider_id=self._secondary.provider_id, error=f"unexpected error: {type(e).__name__}: {e}"
            )

    async def _pin_with_timeout(
        self,
        provider: PinningProvider,
        asset: bytes,
        mime_type: str,
        identifier: str,
        metadata: PinMetadata,
    ) -> PinSuccess | PinFailure:
        try:
            return await asyncio.wait_for(
                provider.pin(asset, mime_type, identifier, metadata), timeout=self._timeout
            )
        except TimeoutError:
            return PinFailure(
                provider_id=provider.provider_id,
                error=f"timed out after {self._timeout:g}s",
                timed_out=True,
            )
        except (PinningProviderError, httpx.HTTPError) as e:
            return PinFailure(provider_id=provider.provider_id, error=str(e))

    async def pin_base64(self, name: str, description: str, image_base64: str) -> PinResult:
        """Decode a base64 or data: URI payload and pin it."""
        content, declared_mime = decode_base64_payload(image_base64)
        return await self.pin(content, declared_mime, PinMetadata(name=name, description=description))

    async def load_media(self, image_ref: str | None) -> tuple[bytes, str | None]:
        """
        Resolve a catalog image reference to bytes and a declared MIME type.

        Raises:
            MediaValidationError: If the reference is missing, unsupported,
                unreachable or larger than the size limit.
        """
        if not image_ref or not image_ref.strip():
            raise MediaValidationError("Catalog item has no image")

        image_ref = image_ref.strip()
        if image_ref.startswith("data:"):
            return decode_base64_payload(image_ref)
        if image_ref.startswith(("http://", "https://")):
            return await self._download(image_ref)
        raise MediaValidationError("Unsupported image reference; expected an http(s) URL or data: URI")

    async def _download(self, url: str) -> tuple[bytes, str | None]:
        max_bytes = self._settings.max_pin_bytes
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout, follow_redirects=True
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code >= 400:
                        raise MediaValidationError(
                            f"Image download failed with HTTP {response.status_code}", url=url
                        )

                    declared_length = response.headers.get("content-length")
                    if declared_length and declared_length.isdigit() and int(declared_length) > max_bytes:
                        raise MediaValidationError(
                            f"Image exceeds maximum allowed size of {max_bytes} bytes", url=url
                        )

                    chunks: list[bytes] = []
                    received = 0
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > max_bytes:
                            raise MediaValidationError(
                                f"Image exceeds maximum allowed size of {max_bytes} bytes", url=url
                            )
                        chunks.append(chunk)

                    content_type = response.headers.get("content-type", "")
        except httpx.HTTPError as e:
            raise MediaValidationError(f"Image download failed: {e}", url=url) from e

        declared_mime = content_type.split(";", 1)[0].strip().lower()
        return b"".join(chunks), None if declared_mime in GENERIC_CONTENT_TYPES else declared_mime
