"""Pytest configuration and fixtures."""

import os
import secrets

from datetime import datetime, timedelta

import pytest
import pytz

from httpx import ASGITransport, AsyncClient

# Keep logfire quiet and local before the app module configures it
os.environ.setdefault("LOGFIRE_CONSOLE", "false")
os.environ.setdefault("LOGFIRE_SEND_TO_LOGFIRE", "false")
os.environ.pop("LOGFIRE_WRITE_TOKEN", None)

from main import create_app  # noqa: E402

from models.users import RefreshTokenEntry  # noqa: E402
from schema.users import NewUser, UserRecord  # noqa: E402
from security.config import AuthSettings  # noqa: E402
from security.errors import DuplicateIdentity, StoreUnavailable  # noqa: E402
from security.lockout import as_utc, is_locked, lock_has_expired  # noqa: E402
from services.sessions import SessionManager  # noqa: E402


class FakeClock:
    """Controllable replacement for `datetime.now(pytz.utc)`."""

    def __init__(self):
        self.now = datetime.now(pytz.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InMemoryCredentialStore:
    """Dict-backed stand-in for `CredentialStore` with the same method contract."""

    def __init__(self):
        self.users: dict[str, UserRecord] = {}
        self.unavailable = False

    def _check(self):
        if self.unavailable:
            raise StoreUnavailable()

    @staticmethod
    def _live(tokens, cutoff):
        return [entry for entry in tokens if as_utc(entry.created_at) >= cutoff]

    def _save(self, user_id: str, **changes) -> None:
        self.users[user_id] = self.users[user_id].model_copy(update=changes)

    async def find_by_id(self, user_id):
        self._check()
        user = self.users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def find_by_identifier(self, identifier):
        self._check()
        email = identifier.lower()
        matches = [u for u in self.users.values() if u.email == email or u.username == identifier]
        for user in matches:
            if user.email == email:
                return user.model_copy(deep=True)
        return matches[0].model_copy(deep=True) if matches else None

    async def find_conflict(self, username, email, exclude_id=None):
        self._check()
        for user in self.users.values():
            if user.id == exclude_id:
                continue
            if (username and user.username == username) or (email and user.email == email.lower()):
                return user.model_copy(deep=True)
        return None

    async def insert(self, new_user: NewUser, now):
        self._check()
        if await self.find_conflict(new_user.username, new_user.email):
            raise DuplicateIdentity("Username or email already registered")
        user = UserRecord(id=secrets.token_hex(12), **new_user.model_dump(), created_at=now, updated_at=now)
        self.users[user.id] = user
        return user.model_copy(deep=True)

    async def record_failed_login(self, user_id, now, max_attempts, lockout_duration):
        self._check()
        user = self.users.get(user_id)
        if user is None:
            return None
        if lock_has_expired(user, now):
            self._save(user_id, login_attempts=1, lock_until=None)
        else:
            self._save(user_id, login_attempts=user.login_attempts + 1)
            user = self.users[user_id]
            if user.login_attempts >= max_attempts and not is_locked(user, now):
                self._save(user_id, lock_until=now + lockout_duration)
        return self.users[user_id].model_copy(deep=True)

    async def record_login(self, user_id, refresh_token, now, retention):
        self._check()
        tokens = self._live(self.users[user_id].refresh_tokens, now - retention)
        tokens.append(RefreshTokenEntry(token=refresh_token, created_at=now))
        self._save(
            user_id,
            login_attempts=0,
            lock_until=None,
            last_login=now,
            updated_at=now,
            refresh_tokens=tokens,
        )

    async def rotate_refresh_token(self, user_id, old_token, new_token, now, retention):
        self._check()
        cutoff = now - retention
        live = self._live(self.users[user_id].refresh_tokens, cutoff)
        if old_token not in [entry.token for entry in live]:
            return False
        tokens = [entry for entry in live if entry.token != old_token]
        tokens.append(RefreshTokenEntry(token=new_token, created_at=now))
        self._save(user_id, refresh_tokens=tokens, updated_at=now)
        return True

    async def remove_refresh_token(self, user_id, token):
        self._check()
        tokens = [entry for entry in self.users[user_id].refresh_tokens if entry.token != token]
        self._save(user_id, refresh_tokens=tokens)

    async def clear_refresh_tokens(self, user_id):
        self._check()
        self._save(user_id, refresh_tokens=[])

    async def update_profile(self, user_id, changes, now):
        self._check()
        if user_id not in self.users:
            return None
        self._save(user_id, updated_at=now, **changes)
        return self.users[user_id].model_copy(deep=True)

    async def set_password_hash(self, user_id, password_hash, now):
        self._check()
        self._save(user_id, password_hash=password_hash, refresh_tokens=[], updated_at=now)

    def tokens_of(self, user_id) -> list[str]:
        return [entry.token for entry in self.users[user_id].refresh_tokens]


@pytest.fixture
def settings() -> AuthSettings:
    """Settings with deterministic secrets and the cheapest bcrypt work factor."""
    return AuthSettings(
        access_token_secret="test-access-secret",
        refresh_token_secret="test-refresh-secret",
        password_hash_rounds=4,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def sessions(settings, store, clock) -> SessionManager:
    return SessionManager(settings, store, clock=clock)


@pytest.fixture
def app(settings, store, clock):
    return create_app(settings=settings, store=store, clock=clock)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def alice_payload() -> dict:
    return {
        "username": "alice",
        "email": "alice@x.com",
        "password": "Abcdef1!",
        "firstName": "Alice",
        "lastName": "Liddell",
    }
