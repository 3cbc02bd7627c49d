"""
Request dependencies: who is calling and which garage they work for.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from garage_backend.core.database import get_db
from garage_backend.core.security import decode_token
from garage_backend.models import Garage
from garage_backend.repositories import TenantScope

security = HTTPBearer()


@dataclass
class TenantContext:
    """Authenticated caller and the garage every query is scoped to."""
    user_id: str
    garage_id: int
    scope: TenantScope


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _tenant_claims(payload: Optional[dict]) -> tuple[str, int]:
    if not payload or payload.get("type") != "access":
        raise _unauthorized("Invalid or expired token")
    user_id = payload.get("sub")
    try:
        garage_id = int(payload["garage_id"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Token is missing tenant claims")
    if user_id is None:
        raise _unauthorized("Token is missing tenant claims")
    return str(user_id), garage_id


async def get_current_tenant(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    user_id, garage_id = _tenant_claims(decode_token(credentials.credentials))

    garage = await db.get(Garage, garage_id)
    if garage is None:
        raise _unauthorized("Garage not found")
    if not garage.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Garage is disabled")

    return TenantContext(user_id=user_id, garage_id=garage_id, scope=TenantScope(db, garage_id))
