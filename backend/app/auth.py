"""Authentication for internal (server-to-server) endpoints."""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings

# Make bearer optional so a missing header gets our 401, not FastAPI's 403
security = HTTPBearer(auto_error=False)


def tokens_match(provided: str, expected: str) -> bool:
    """Constant-time token comparison."""
    return secrets.compare_digest(provided.encode(), expected.encode())


async def require_admin_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Require ``Authorization: Bearer <ADMIN_API_TOKEN>``."""
    if not settings.admin_api_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API token not configured",
        )

    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not tokens_match(credentials.credentials, settings.admin_api_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )


AdminAuth = Annotated[None, Depends(require_admin_token)]
