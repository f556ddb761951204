"""Security utilities: bearer tokens and content hashing."""

from datetime import datetime, timedelta, timezone
import hashlib
import logging

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


# Bearer tokens
class TokenPayload(BaseModel):
    """Claims carried by an access token."""

    sub: str
    roles: list[str] = []
    exp: datetime
    iat: datetime
    type: str = "access"


def create_access_token(
    username: str,
    roles: list[str] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Issue an HS256 access token for `username` with the given roles."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": username,
        "roles": list(roles or []),
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_token(token: str) -> TokenPayload | None:
    """Return the claims of a valid token, or None for anything unusable."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except jwt.InvalidTokenError:
        return None


def hash_content(content: str) -> str:
    """Hex SHA-256 digest, used for usage event dedup keys."""
    return hashlib.sha256(content.encode()).hexdigest()
