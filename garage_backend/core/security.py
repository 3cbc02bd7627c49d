"""
Bearer token handling.

Staff tokens are issued by the authentication service. This API only checks
the signature and expiry and reads two claims: ``sub`` (the user) and
``garage_id`` (the tenant). Issuing is kept for scripts and tests.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from garage_backend.core.config import settings

ACCESS_TOKEN_TTL = timedelta(minutes=30)


def create_access_token(claims: dict, expires_delta: Optional[timedelta] = None) -> str:
    issued_at = datetime.now(timezone.utc)
    payload = dict(claims)
    if "sub" in payload:
        payload["sub"] = str(payload["sub"])
    payload["type"] = "access"
    payload["jti"] = uuid.uuid4().hex
    payload["iat"] = issued_at
    payload["exp"] = issued_at + (expires_delta or ACCESS_TOKEN_TTL)
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Verified claims, or None for a bad signature or an expired token."""
    try:
        # Older tokens carry a numeric sub
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_sub": False},
        )
    except JWTError:
        return None
