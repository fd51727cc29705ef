from jose import jwt, JWTError
from src.config import settings


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a JWT. Returns payload or None if invalid."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        if payload.get("type") != "session" or not payload.get("sub"):
            return None
        return payload
    except JWTError:
        return None
