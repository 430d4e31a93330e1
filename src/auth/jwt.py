from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
from src.config import settings

SUPER_ADMIN_TOKEN_TYPE = "super_admin"


def create_super_admin_token(super_admin_id: str) -> str:
    """Create a signed operator JWT for the webhook console."""
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": super_admin_id,
        "type": SUPER_ADMIN_TOKEN_TYPE,
        "exp": issued_at + timedelta(minutes=settings.jwt_expiration_minutes),
        "iat": issued_at,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_super_admin_token(token: str) -> dict | None:
    """Decode and validate an operator JWT. Returns payload or None if invalid."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("type") != SUPER_ADMIN_TOKEN_TYPE:
        return None
    return payload
