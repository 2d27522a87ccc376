"""Error types raised by the entity request pipeline.

Every error carries the HTTP status the REST adapter answers with.
"""


class CommunError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code = 500

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": {"message": self.message}}


class ClientError(CommunError):
    """Error caused by the request itself."""

    status_code = 400


class BadRequestError(ClientError):
    """Invalid input: schema violations, bad filters or identities."""

    def __init__(self, message: str = "Bad request"):
        super().__init__(message, 400)


class UnauthorizedError(ClientError):
    """Permission check failed. Never says which rule failed."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, 401)


class NotFoundError(ClientError):
    """Missing record, entity or plugin."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, 404)


class ServerError(CommunError):
    """Internal failure. The cause is logged, never returned to the caller."""

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, 500)


class DuplicateKeyError(Exception):
    """Raised by data stores when a unique index rejects a write."""

    def __init__(self, message: str = "Duplicate key", key: str | None = None):
        super().__init__(message)
        self.key = key
