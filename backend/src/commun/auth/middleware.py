"""Authentication middleware for FastAPI."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from commun.auth.jwt_service import JWTService


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that extracts the caller identity from a Bearer token.

    The middleware:
    1. Extracts Bearer token from Authorization header
    2. Verifies the access token
    3. Sets request.state.auth to {"id": <user id>}

    If no token is present or the token is invalid, request.state.auth is
    None and the caller is anonymous. The middleware does NOT reject
    requests; permission checks happen in the entity controller.
    """

    def __init__(self, app, jwt_service: JWTService):
        super().__init__(app)
        self._jwt_service = jwt_service

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.auth = None

        if self._should_skip_auth(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header[7:]  # Remove "Bearer " prefix
            request.state.auth = self._jwt_service.verify_access_token(token)

        return await call_next(request)

    def _should_skip_auth(self, path: str) -> bool:
        skip_paths = [
            "/docs",
            "/openapi.json",
            "/redoc",
        ]
        return any(path.startswith(p) for p in skip_paths)


def get_auth(request: Request) -> dict[str, str] | None:
    """Get the caller identity from the request state."""
    return getattr(request.state, "auth", None)
