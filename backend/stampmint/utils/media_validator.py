"""
Media Validation Utilities for StampMint

Local checks applied to every asset before it is sent to a pinning provider:
- Identifier sanitization for provider-side file names
- Base64 and data: URI decoding
- Size enforcement (5 MiB by default, configurable)
- Content-based MIME detection with Pillow, so a payload declared as
  image/png must actually decode as a PNG

Every rejection raises MediaValidationError; nothing here talks to the network.
"""

import base64
import binascii
import io
import re

from PIL import Image, UnidentifiedImageError

from stampmint.core.exceptions import MediaValidationError


# =============================================================================
# CONSTANTS
# =============================================================================

BYTES_PER_MB: int = 1024 * 1024

# Maximum sanitized identifier length
MAX_IDENTIFIER_LENGTH: int = 64

FALLBACK_IDENTIFIER: str = "asset"

_IDENTIFIER_DISALLOWED = re.compile(r"[^A-Za-z0-9_-]")
_DATA_URI = re.compile(r"^data:(?P<mime>[^;,]+)(?:;[^,]*)?;base64,(?P<content>.*)$", re.DOTALL)


# =============================================================================
# IDENTIFIERS
# =============================================================================


def sanitize_identifier(value: str | None, max_length: int = MAX_IDENTIFIER_LENGTH) -> str:
    """
    Reduce an identifier to ``[A-Za-z0-9_-]`` and cap its length.

    Example:
        >>> sanitize_identifier("../../etc/passwd")
        'etcpasswd'
        >>> sanitize_identifier("Penny Black #1")
        'PennyBlack1'
        >>> sanitize_identifier("!!!")
        'asset'
    """
    if not value:
        return FALLBACK_IDENTIFIER
    cleaned = _IDENTIFIER_DISALLOWED.sub("", value)[:max_length]
    return cleaned or FALLBACK_IDENTIFIER


# =============================================================================
# DECODING
# =============================================================================


def decode_base64_payload(payload: str) -> tuple[bytes, str | None]:
    """
    Decode a base64 string or a ``data:<mime>;base64,<content>`` URI.

    Returns:
        Tuple of (decoded bytes, declared MIME type or None for bare base64).

    Raises:
        MediaValidationError: If the payload is empty or not valid base64.
    """
    if not payload or not payload.strip():
        raise MediaValidationError("Image data is required")

    declared_mime: str | None = None
    content = payload.strip()

    if content.startswith("data:"):
        match = _DATA_URI.match(content)
        if match is None:
            raise MediaValidationError("Invalid data URI format")
        declared_mime = match.group("mime").strip().lower()
        content = match.group("content")

    try:
        decoded = base64.b64decode(re.sub(r"\s+", "", content), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MediaValidationError(f"Invalid base64 image data: {e}") from e

    return decoded, declared_mime


# =============================================================================
# VALIDATION
# =============================================================================


def validate_payload_size(size: int, max_bytes: int) -> None:
    """
    Enforce the non-empty and maximum size rules.

    Raises:
        MediaValidationError: If the payload is empty or larger than ``max_bytes``.
    """
    if size <= 0:
        raise MediaValidationError("Image data is empty")
    if size > max_bytes:
        raise MediaValidationError(
            f"File size ({size / BYTES_PER_MB:.2f} MB) exceeds maximum allowed "
            f"size of {max_bytes / BYTES_PER_MB:.0f}MB",
            size=size,
            max_bytes=max_bytes,
        )


def detect_image_mime(content: bytes) -> str | None:
    """Detect an image's MIME type from its content, or None if it is not an image."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError):
        return None
    if image_format is None:
        return None
    return Image.MIME.get(image_format.upper())


def validate_mime_type(content: bytes, declared_mime: str | None, allowed: list[str]) -> str:
    """
    Validate an image's type against the allow-list.

    The declared type (if any) must be allowed and must match the type
    detected from the content.

    Returns:
        The detected MIME type.

    Raises:
        MediaValidationError: For unsupported, undetectable or spoofed types.
    """
    allowed_set = {mime.lower() for mime in allowed}

    if declared_mime and declared_mime.lower() not in allowed_set:
        raise MediaValidationError(f"Unsupported image type: {declared_mime}")

    detected = detect_image_mime(content)
    if detected is None:
        raise MediaValidationError("Content is not a recognizable image")
    if detected not in allowed_set:
        raise MediaValidationError(f"Unsupported image type: {detected}")
    if declared_mime and declared_mime.lower() != detected:
        raise MediaValidationError(
            f"Image content type '{detected}' does not match declared type '{declared_mime}'"
        )
    return detected


def validate_image_payload(
    content: bytes, declared_mime: str | None, allowed: list[str], max_bytes: int
) -> str:
    """
    Run the size and type checks on an image payload.

    Returns:
        The detected MIME type.

    Raises:
        MediaValidationError: On the first failed check.
    """
    validate_payload_size(len(content), max_bytes)
    return validate_mime_type(content, declared_mime, allowed)
