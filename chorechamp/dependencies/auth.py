from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from chorechamp.models.user import User
from chorechamp.services.auth_service import auth_service

# auto_error is off so a missing header is a 401 like any other bad token
security = HTTPBearer(auto_error=False)


def _unauthenticated(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def resolve_token(token: str) -> Optional[User]:
    """Return the active user a bearer token belongs to, if any"""
    user_id = auth_service.verify_token(token)
    if user_id is None:
        return None
    user = auth_service.get_user_by_id(user_id)
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> User:
    """Get current authenticated user"""
    if credentials is None:
        raise _unauthenticated("Please authenticate.")

    user = resolve_token(credentials.credentials)
    if user is None:
        raise _unauthenticated("Invalid authentication credentials")

    return user


async def require_parent(current_user: User = Depends(get_current_user)) -> User:
    """Reject callers with the child role"""
    if not current_user.is_parent:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Parents only."
        )
    return current_user
