"""Password hashing with bcrypt.
"""
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

from starlette.concurrency import run_in_threadpool


class PasswordHasher:
    """Hashes and verifies passwords with a fixed bcrypt work factor."""

    def __init__(self, rounds: int = 12):
        self.pwd_context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds
        )

    def hash(self, password: str) -> str:
        """Generates a salted hash for the given password.

        Args:
            password (str): The plain text password to hash.

        Returns:
            str: The hashed password.
        """
        return self.pwd_context.hash(password)

    def verify(self, plain_password: str, hashed_password: str | None) -> bool:
        """Verifies that `plain_password` matches `hashed_password`.

        Args:
            plain_password (str): The plain text password to verify.
            hashed_password (str | None): The stored hash. Missing or unreadable hashes never match.

        Returns:
            bool: True if the passwords match, False otherwise.
        """
        if not hashed_password:
            return False
        try:
            return self.pwd_context.verify(plain_password, hashed_password)
        except (UnknownHashError, ValueError):
            return False

    async def hash_async(self, password: str) -> str:
        return await run_in_threadpool(self.hash, password)

    async def verify_async(self, plain_password: str, hashed_password: str | None) -> bool:
        return await run_in_threadpool(self.verify, plain_password, hashed_password)
