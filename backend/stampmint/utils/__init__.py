"""
Utilities Package for StampMint.

Modules:
--------
logger:
    Structured logging configuration:
    - JSONFormatter for structured log output
    - setup_logging for application-wide configuration
    - add_log_context for per-mint context fields

media_validator:
    Local validation of assets before pinning:
    - Identifier sanitization
    - Base64 / data URI decoding
    - Size and content-based MIME type checks
"""

from stampmint.utils.logger import add_log_context, get_logger, setup_logging
from stampmint.utils.media_validator import (
    decode_base64_payload,
    detect_image_mime,
    sanitize_identifier,
    validate_image_payload,
    validate_mime_type,
    validate_payload_size,
)


__all__ = [
    "add_log_context",
    "decode_base64_payload",
    "detect_image_mime",
    "get_logger",
    "sanitize_identifier",
    "setup_logging",
    "validate_image_payload",
    "validate_mime_type",
    "validate_payload_size",
]
