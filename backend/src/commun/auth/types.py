"""Type definitions for authentication and authorization."""

from dataclasses import dataclass


@dataclass
class TokenClaims:
    """Claims embedded in an access token.

    Attributes:
        user_id: The authenticated user's ID
        exp: Token expiration timestamp
        iat: Token issued-at timestamp
        type: Token type
    """

    user_id: str
    exp: int = 0
    iat: int = 0
    type: str = "access"


@dataclass(frozen=True)
class AuthPermissions:
    """Caller identity as seen by the permission evaluator.

    Attributes:
        user_id: Caller identity, None for anonymous callers
        is_admin: Privileged flag read from the caller's own user record
    """

    user_id: str | None = None
    is_admin: bool = False


ANONYMOUS = AuthPermissions()
