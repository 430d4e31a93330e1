from src.auth.context import SuperAdminContext
from src.auth.dependencies import get_current_super_admin
from src.auth.jwt import create_super_admin_token, decode_super_admin_token

__all__ = [
    "SuperAdminContext",
    "get_current_super_admin",
    "create_super_admin_token",
    "decode_super_admin_token",
]
