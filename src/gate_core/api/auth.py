"""FastAPI authentication dependencies for the gate API."""
import logging
import secrets
from typing import Annotated, Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader


logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-GATE-API-KEY"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def configured_api_key(request: Request) -> Optional[str]:
    """Key the running app was configured with (``GateSettings.api_key``)."""
    return getattr(request.app.state, "api_key", None)


async def require_api_key(
    request: Request,
    api_key: Annotated[Optional[str], Security(api_key_header)] = None,
) -> str:
    """Check the request's API key against the app's configured key.

    Args:
        request: Incoming request; its app carries the configured key
        api_key: Value of the X-GATE-API-KEY header, if any

    Returns:
        Validated API key

    Raises:
        RuntimeError: If the app was started without an API key
        HTTPException: 401 if the header is missing or does not match
    """
    expected_key = configured_api_key(request)
    if not expected_key:
        raise RuntimeError("Gate API key not configured (GATE_API_KEY)")

    if not api_key or not secrets.compare_digest(api_key, expected_key):
        logger.warning("Rejected request to %s: bad API key", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )

    return api_key
