from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from app.auth.schemas import CurrentUser
from app.auth.security import decode_access_token


# Tokens are issued by the identity service; this app only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login-oauth")


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """Acting admin taken from the verified token claims. No user lookup: the ledger has no user table."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        claims = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    subject = claims.get("user_id") or claims.get("sub")
    role = claims.get("role")
    if not subject or not role:
        raise credentials_exception
    try:
        user_id = UUID(str(subject))
    except ValueError:
        raise credentials_exception

    permissions = claims.get("permissions")
    if not isinstance(permissions, dict):
        permissions = {}

    return CurrentUser(id=user_id, role=role, permissions=permissions)
