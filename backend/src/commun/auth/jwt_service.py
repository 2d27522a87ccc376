"""Access-token signing and verification.

Verification is the only capability the request pipeline needs: a valid
access token yields the caller identity ``{"id": <user id>}``.
"""

import time

import jwt

from commun.auth.types import TokenClaims


class JWTError(Exception):
    """Base exception for JWT-related errors."""

    pass


class TokenExpiredError(JWTError):
    """Raised when a token has expired."""

    pass


class InvalidTokenError(JWTError):
    """Raised when a token is invalid or malformed."""

    pass


class JWTService:
    """Signs and verifies HS256 access tokens with a shared secret."""

    ACCESS_TOKEN_TTL = 15 * 60  # 15 minutes

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self._secret_key = secret_key
        self._algorithm = algorithm

    def create_access_token(self, user_id: str, ttl: int | None = None) -> str:
        """Issue an access token for a user id.

        Args:
            user_id: Identity to embed as the subject
            ttl: Lifetime in seconds (defaults to ACCESS_TOKEN_TTL)
        """
        now = int(time.time())
        claims = {
            "sub": user_id,
            "iat": now,
            "exp": now + (ttl if ttl is not None else self.ACCESS_TOKEN_TTL),
            "type": "access",
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def decode_token(self, token: str) -> TokenClaims:
        """Decode and validate a token.

        Raises:
            TokenExpiredError: If the token has expired
            InvalidTokenError: If the token is invalid or malformed
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}")

        return TokenClaims(
            user_id=payload.get("sub", ""),
            exp=payload.get("exp", 0),
            iat=payload.get("iat", 0),
            type=payload.get("type", "access"),
        )

    def verify_access_token(self, token: str) -> dict[str, str] | None:
        """Return the caller identity for a valid access token, else None."""
        try:
            claims = self.decode_token(token)
        except JWTError:
            return None
        if claims.type != "access" or not claims.user_id:
            return None
        return {"id": claims.user_id}
