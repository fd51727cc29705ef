from fastapi import Depends, Header, HTTPException, status
from src.auth.context import AuthContext
from src.auth.jwt import decode_access_token


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from 'Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def auth_from_token(token: str) -> AuthContext | None:
    """Session tokens are issued elsewhere; this only verifies them."""
    payload = decode_access_token(token)
    if not payload:
        return None
    return AuthContext(
        user_id=str(payload["sub"]),
        role=str(payload.get("role") or "user"),
        auth_method="session",
    )


async def get_current_user(authorization: str | None = Header(None)) -> AuthContext:
    """
    JWT session only auth. For user-facing endpoints.
    """
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )

    auth = auth_from_token(token)
    if not auth:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )

    return auth


async def require_admin(auth: AuthContext = Depends(get_current_user)) -> AuthContext:
    """Authorization dependency for operator-only endpoints."""
    if not auth.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return auth
