"""
HTTP rendering of minting errors.

Every MintingError becomes a JSON body ``{"error", "detail", "retryable"}``
with a status code chosen by its kind. Retryable errors carry a
``Retry-After`` header.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from stampmint.core.exceptions import MintingError


logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[str, int] = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "already_minted": status.HTTP_409_CONFLICT,
    "pinning_failed": status.HTTP_502_BAD_GATEWAY,
    "supply_exhausted": status.HTTP_409_CONFLICT,
    "contention": status.HTTP_503_SERVICE_UNAVAILABLE,
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "insufficient_balance": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "internal_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

RETRY_AFTER_SECONDS = "1"


async def minting_error_handler(request: Request, exc: MintingError) -> JSONResponse:
    """Render a MintingError as a JSON response."""
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    log_extra = {"error_kind": exc.kind, "path": request.url.path, **exc.context}
    if status_code >= 500:
        logger.error("Request failed: %s", exc.message, extra=log_extra)
    else:
        logger.info("Request rejected: %s", exc.message, extra=log_extra)

    headers = {"Retry-After": RETRY_AFTER_SECONDS} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the MintingError handler on an application."""
    app.add_exception_handler(MintingError, minting_error_handler)
