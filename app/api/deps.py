from datetime import UTC, datetime

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.db import get_session
from app.core.security import StaffClaims, decode_access_token

__all__ = ["get_session", "get_current_staff", "get_now"]

security = HTTPBearer(auto_error=False)


def get_now() -> datetime:
    """Wall clock for availability filtering; overridden in tests."""
    return datetime.now(UTC)


async def get_current_staff(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> StaffClaims:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    claims = decode_access_token(credentials.credentials)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims
