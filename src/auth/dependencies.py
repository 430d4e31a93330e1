from fastapi import Header, HTTPException, status
from src.auth.context import SuperAdminContext
from src.auth.jwt import decode_super_admin_token
from src.db import supabase


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from 'Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def get_current_super_admin(authorization: str | None = Header(None)) -> SuperAdminContext:
    """
    Operator JWT auth. The token must be of type 'super_admin' and the
    subject must still exist in the super_admins table.
    """
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )

    payload = decode_super_admin_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired super-admin token",
        )

    result = supabase.table("super_admins").select("id, email").eq(
        "id", payload["sub"]
    ).execute()
    if not result.data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Super-admin not found",
        )

    super_admin = result.data[0]
    return SuperAdminContext(
        super_admin_id=super_admin["id"],
        email=super_admin["email"],
    )
