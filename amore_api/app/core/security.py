"""
Security helpers for the admin API.

Roster and statistics reads are open to anyone who can reach the admin
port.  Roster reload and the per-member like and match lists require
the static token configured via ``ADMIN_API_TOKEN`` in the
``Authorization: Bearer`` header.  When no token is configured those
endpoints are effectively disabled.
"""

import hmac
from typing import Dict

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings


security = HTTPBearer(auto_error=False)


def require_admin_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict[str, str]:
    """Dependency that accepts only the configured static admin token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    expected = settings.admin_api_token
    # Constant-time comparison to prevent timing attacks
    if not expected or not hmac.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return {"sub": "admin"}
