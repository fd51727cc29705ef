from dataclasses import dataclass


ADMIN_ROLE = "admin"


@dataclass
class AuthContext:
    """Identity context for authenticated requests."""
    user_id: str
    role: str = "user"
    auth_method: str = "session"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE
