"""
Authentication dependencies shared by the routers.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from engage_flags.core.config import settings
from engage_flags.core.db import get_db
from engage_flags.core.security import JWTError, decode_access_token
from engage_flags.crud.users import get_user_by_username
from engage_flags.models.users import User


bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise _unauthorized("Could not validate credentials")
    username = payload.get("sub")
    if not username:
        raise _unauthorized("Could not validate credentials")
    user = get_user_by_username(db, username)
    if user is None:
        raise _unauthorized("Could not validate credentials")
    request.state.user_id = user.id
    return user


def is_admin_user(user: User | None) -> bool:
    if user is None:
        return False
    if user.is_admin:
        return True
    role = getattr(user.role, "value", user.role)
    return role in settings.ADMIN_ROLES


def require_admin():
    """
    Dependency admitting only administrators: users flagged is_admin or
    holding one of settings.ADMIN_ROLES.
    """

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not is_admin_user(current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
        return current_user

    return dependency
