from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from app.core.config import settings


@dataclass(frozen=True)
class StaffClaims:
    subject: str
    business_id: int


def create_access_token(subject: str | int, business_id: int) -> str:
    """Issue a staff token. Production tokens come from the auth service; this is for tooling and tests."""
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {
        "sub": str(subject),
        "business_id": business_id,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> StaffClaims | None:
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=[settings.algorithm]
        )
    except JWTError:
        return None
    if payload.get("type") != "access":
        return None
    sub = payload.get("sub")
    business_id = payload.get("business_id")
    if not sub or business_id is None:
        return None
    try:
        return StaffClaims(subject=str(sub), business_id=int(business_id))
    except (TypeError, ValueError):
        return None
