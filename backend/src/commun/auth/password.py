"""One-way hashing for ``format: hash`` properties."""

from passlib.context import CryptContext

HASH_ROUNDS = 12


class PasswordService:
    """Hashes and verifies secrets with bcrypt at a fixed cost factor."""

    def __init__(self, rounds: int = HASH_ROUNDS):
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    def hash(self, secret: str) -> str:
        """Hash a secret. The result embeds algorithm, cost and salt."""
        return self._context.hash(str(secret))

    def verify(self, secret: str, hashed: str) -> bool:
        """Check a secret against a stored hash. Malformed hashes never match."""
        try:
            return self._context.verify(str(secret), hashed)
        except ValueError:
            return False
