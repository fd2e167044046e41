"""JWT access tokens. Sign-in happens at the SSO provider; this service only issues and checks bearer tokens."""

import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from cover.config import settings

ALGORITHM = "HS256"


def create_access_token(user_id: uuid.UUID, email: str) -> str:
    """Create a short-lived access token."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": str(user_id),
        "email": email,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and validate an access token. Raises JWTError on failure."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    return payload
