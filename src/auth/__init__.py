from src.auth.context import AuthContext
from src.auth.dependencies import (
    get_current_user,
    require_admin,
)

__all__ = [
    "AuthContext",
    "get_current_user",
    "require_admin",
]
