"""
API key authentication for the admin API.
"""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from jobqueue.config import Settings, get_settings
from jobqueue.constants import API_KEY_HEADER

# Security scheme
api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def require_api_key(
    api_key: Annotated[str | None, Depends(api_key_header)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    """
    FastAPI dependency that checks the X-API-Key header.

    Args:
        api_key: Value of the header, if sent.
        settings: Settings holding the expected key.

    Returns:
        The accepted key.

    Raises:
        HTTPException: 401 if the header is missing or wrong.
    """
    if not api_key or not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return api_key


# Type alias for dependency injection
ApiKey = Annotated[str, Depends(require_api_key)]
