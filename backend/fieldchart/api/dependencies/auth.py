"""Authentication dependencies for API endpoints."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel


class Actor(BaseModel):
    """The user performing a request."""

    id: UUID
    is_active: bool = True

    @property
    def user_id(self) -> str:
        return str(self.id)


class RequestMeta(BaseModel):
    """Client details recorded on audit events."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    """
    Development identity - the bearer token is the user's UUID.

    TODO: Replace with JWT validation once the identity service issues tokens.

    Raises:
        HTTPException: 401 if the token is missing or not a UUID
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        user_id = UUID(credentials.credentials)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Actor(id=user_id)


async def get_current_active_user(
    current_user: Annotated[Actor, Depends(get_current_user)],
) -> Actor:
    """
    Verify user is active.

    Raises:
        HTTPException: If user is inactive
    """
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user",
        )
    return current_user


async def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
