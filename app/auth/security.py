from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import jwt

from app.core.config import settings


def create_access_token(
    *,
    user_id: UUID,
    role: str,
    permissions: Optional[Dict[str, Dict[str, bool]]] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Sign a token in the shape the identity service issues (sub, role, optional permissions)."""
    if expires_minutes is None:
        expires_minutes = settings.access_token_expire_minutes

    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
    }
    if permissions:
        claims["permissions"] = permissions
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verified claims; raises jose.JWTError for bad signatures and expired tokens."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
