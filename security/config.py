"""Settings for token issuance, lockout policy and password hashing.
"""
import os
import re

from datetime import timedelta

from dotenv import load_dotenv

from pydantic import BaseModel, Field

from typing import Annotated

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {
    "": "seconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


def parse_duration(value: str | int | timedelta) -> timedelta:
    """Parses a duration such as `15m`, `7d`, `2h`, `30s` or `3600`.

    Args:
        value (str | int | timedelta): The duration to parse. Bare numbers are seconds.

    Raises:
        ValueError: Raised when `value` is not a recognised duration.

    Returns:
        timedelta: The parsed duration.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, int):
        return timedelta(seconds=value)

    match = _DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")

    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


class AuthSettings(BaseModel):
    """Configuration shared by the token issuer, session manager and auth gate."""

    access_token_secret: Annotated[str, Field(min_length=1)]
    refresh_token_secret: Annotated[str, Field(min_length=1)]
    access_token_ttl: Annotated[timedelta, Field(default=timedelta(minutes=15))]
    refresh_token_ttl: Annotated[timedelta, Field(default=timedelta(days=7))]
    issuer: Annotated[str, Field(default="urlshortener-api")]
    audience: Annotated[str, Field(default="urlshortener-client")]
    algorithm: Annotated[str, Field(default="HS256")]
    max_login_attempts: Annotated[int, Field(default=5, ge=1)]
    lockout_duration: Annotated[timedelta, Field(default=timedelta(hours=2))]
    refresh_token_retention: Annotated[timedelta, Field(default=timedelta(days=7))]
    password_hash_rounds: Annotated[int, Field(default=12, ge=4, le=31)]

    @classmethod
    def from_env(cls) -> "AuthSettings":
        """Builds settings from environment variables (and a `.env` file if present)."""
        load_dotenv()

        return cls(
            access_token_secret=os.getenv("JWT_ACCESS_SECRET", "your-super-secret-access-key"),
            refresh_token_secret=os.getenv("JWT_REFRESH_SECRET", "your-super-secret-refresh-key"),
            access_token_ttl=parse_duration(os.getenv("JWT_ACCESS_EXPIRY", "15m")),
            refresh_token_ttl=parse_duration(os.getenv("JWT_REFRESH_EXPIRY", "7d")),
            issuer=os.getenv("JWT_ISSUER", "urlshortener-api"),
            audience=os.getenv("JWT_AUDIENCE", "urlshortener-client"),
            max_login_attempts=int(os.getenv("MAX_LOGIN_ATTEMPTS", "5")),
            lockout_duration=parse_duration(os.getenv("LOCKOUT_DURATION", "2h")),
            refresh_token_retention=parse_duration(os.getenv("REFRESH_TOKEN_RETENTION", "7d")),
            password_hash_rounds=int(os.getenv("BCRYPT_ROUNDS", "12")),
        )
