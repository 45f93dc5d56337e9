"""
StampMint Authentication Module

Resolves the authenticated principal for minting and ledger routes from a
locally signed HS256 bearer token. Account management lives outside this
service; the token's ``sub`` claim is the principal identifier recorded as
the mint owner and the distribution recipient.

Usage:
    ```python
    from fastapi import Depends
    from stampmint.core.auth import get_current_principal

    @router.get("/protected")
    async def protected_route(principal: dict = Depends(get_current_principal)):
        return {"user_id": principal["_id"]}
    ```
"""

import logging

from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from stampmint.config import Settings, get_settings


logger = logging.getLogger(__name__)


# =============================================================================
# Security Scheme
# =============================================================================

security = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token identifying the minting principal.",
    auto_error=True,
)


# =============================================================================
# Token Functions
# =============================================================================


def create_access_token(principal_id: str, settings: Settings | None = None) -> str:
    """
    Create a signed bearer token for a principal.

    Token claims:
    - sub: Principal identifier
    - exp: Expiration timestamp (jwt_expiration_hours from now)
    - iat: Issued at timestamp
    - type: "local"

    Args:
        principal_id: The principal's unique identifier.
        settings: Optional settings; loaded from the environment when omitted.

    Returns:
        str: The encoded JWT token string.
    """
    if settings is None:
        settings = get_settings()

    now = datetime.now(UTC)
    expire = now + timedelta(hours=settings.jwt_expiration_hours)
    payload = {"sub": principal_id, "exp": expire, "iat": now, "type": "local"}

    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    logger.info("Created access token for principal: %s (expires: %s)", principal_id, expire.isoformat())
    return token


def validate_access_token(token: str, settings: Settings) -> dict[str, Any]:
    """
    Validate a bearer token's signature and expiration.

    Raises:
        JWTError: If the token is invalid, expired, or has no subject.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.warning("Access token validation failed: %s", str(e))
        raise

    if not payload.get("sub"):
        raise JWTError("Token has no subject claim")
    return payload


# =============================================================================
# Authentication Dependencies
# =============================================================================


async def authenticate_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Validate the Bearer token from the Authorization header.

    Raises:
        HTTPException: With 401 status if token validation fails.
    """
    try:
        return validate_access_token(credentials.credentials, settings)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_current_principal(
    token_data: dict[str, Any] = Depends(authenticate_token),
) -> dict[str, Any]:
    """
    Build the principal document for the authenticated caller.

    Returns:
        dict: ``{"_id": <sub>, ...claims}``.
    """
    return {"_id": str(token_data["sub"]), **token_data}


async def require_ledger_admin(
    principal: dict[str, Any] = Depends(get_current_principal),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Allow only principals listed in ``ledger_admin_subjects``.

    Raises:
        HTTPException: With 403 status for any other caller.
    """
    if principal["_id"] not in settings.ledger_admin_subjects:
        logger.warning("Ledger administration denied", extra={"subject": principal["_id"]})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to administer the ledger",
        )
    return principal
