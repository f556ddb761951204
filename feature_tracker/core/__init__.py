"""Core application utilities."""

from .clock import Clock, FixedClock, SystemClock, ensure_utc, get_clock
from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    engine,
    get_session,
    session_scope,
    init_db,
)
from .dependencies import (
    AdminDep,
    ClockDep,
    CurrentUser,
    CurrentUserDep,
    ProductManagerDep,
    Role,
    SessionDep,
    get_current_user,
    require_admin,
    require_product_manager,
)
from .security import (
    create_access_token,
    decode_token,
    hash_content,
)

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "FixedClock",
    "get_clock",
    "ensure_utc",
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "session_scope",
    "init_db",
    "close_db",
    # Dependencies
    "Role",
    "CurrentUser",
    "get_current_user",
    "require_admin",
    "require_product_manager",
    "CurrentUserDep",
    "AdminDep",
    "ProductManagerDep",
    "SessionDep",
    "ClockDep",
    # Security
    "create_access_token",
    "decode_token",
    "hash_content",
]
