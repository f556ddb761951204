"""Request-scoped dependencies: caller identity, role checks, session and clock."""

import logging
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import Clock, get_clock
from .database import get_session
from .security import decode_token

logger = logging.getLogger(__name__)

# Missing credentials answer 401 in get_current_user
bearer_scheme = HTTPBearer(auto_error=False)


class Role(str, Enum):
    ADMIN = "ADMIN"
    PRODUCT_MANAGER = "PRODUCT_MANAGER"
    USER = "USER"


class CurrentUser:
    """Caller identity decoded from the bearer token."""

    def __init__(self, username: str, roles: list[str] | None = None):
        self.username = username
        self.roles = set(roles or [])

    @property
    def id(self) -> str:
        return self.username

    def has_any_role(self, *roles: Role) -> bool:
        return any(role.value in self.roles for role in roles)

    @property
    def is_admin(self) -> bool:
        return self.has_any_role(Role.ADMIN)

    @property
    def is_product_manager(self) -> bool:
        return self.has_any_role(Role.PRODUCT_MANAGER)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> CurrentUser:
    """Resolve the caller from `Authorization: Bearer <jwt>` or answer 401."""
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid or expired token")
    if payload.type != "access":
        raise _unauthorized("Invalid token type")

    return CurrentUser(username=payload.sub, roles=payload.roles)


def _require_roles(*roles: Role, label: str):
    def dependency(
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        if not current_user.has_any_role(*roles):
            logger.warning(f"User {current_user.username} denied {label} access")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{label.capitalize()} privileges required",
            )
        return current_user

    return dependency


require_admin = _require_roles(Role.ADMIN, label="admin")
require_product_manager = _require_roles(Role.ADMIN, Role.PRODUCT_MANAGER, label="product manager")


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
AdminDep = Annotated[CurrentUser, Depends(require_admin)]
ProductManagerDep = Annotated[CurrentUser, Depends(require_product_manager)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
ClockDep = Annotated[Clock, Depends(get_clock)]
