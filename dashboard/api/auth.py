"""API authentication for the serverdeck dashboard API."""

from __future__ import annotations

from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dashboard.services.config import get_settings

_bearer = HTTPBearer(auto_error=False)


async def require_api_key(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> str:
    """Validate the bearer token against SERVERDECK_API_KEY.

    If SERVERDECK_API_KEY is empty (dev mode), authentication is skipped.
    """
    api_key = get_settings().api_key

    if not api_key:
        return "anonymous"

    if not credentials or credentials.credentials != api_key:
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials
