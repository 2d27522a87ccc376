"""Authentication and authorization."""

from commun.auth.jwt_service import JWTService
from commun.auth.middleware import AuthMiddleware, get_auth
from commun.auth.password import PasswordService
from commun.auth.permissions import (
    get_auth_permissions,
    has_valid_permission,
)
from commun.auth.types import ANONYMOUS, AuthPermissions, TokenClaims

__all__ = [
    "ANONYMOUS",
    "AuthMiddleware",
    "AuthPermissions",
    "JWTService",
    "PasswordService",
    "TokenClaims",
    "get_auth",
    "get_auth_permissions",
    "has_valid_permission",
]
