"""Unit tests for AuthGate."""

from datetime import datetime, timedelta

import pytest
import pytz

from models.helpers import UserRole
from schema.users import RegisterRequest
from security.errors import Forbidden, StoreUnavailable, Unauthorized
from security.gate import AuthGate
from security.tokens import TokenIssuer


@pytest.fixture
def gate(settings, store, sessions):
    return AuthGate(settings, store, issuer=sessions.issuer)


@pytest.fixture
async def alice(sessions, alice_payload):
    return await sessions.register(RegisterRequest(**alice_payload))


def bearer(token: str) -> str:
    return f"Bearer {token}"


class TestAuthenticate:

    async def test_resolves_identity(self, gate, alice):
        user, tokens = alice

        context = await gate.authenticate(bearer(tokens.access_token))

        assert context.user_id == user.id
        assert context.username == "alice"
        assert context.role is UserRole.USER
        assert context.user.email == "alice@x.com"

    @pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer"])
    async def test_missing_token(self, gate, header):
        with pytest.raises(Unauthorized) as exc_info:
            await gate.authenticate(header)

        assert exc_info.value.code == "MISSING_TOKEN"

    async def test_expired_token(self, gate, settings, alice):
        past = TokenIssuer(settings, clock=lambda: datetime.now(pytz.utc) - timedelta(hours=1))
        token = past.issue_pair(alice[0]).access_token

        with pytest.raises(Unauthorized) as exc_info:
            await gate.authenticate(bearer(token))

        assert exc_info.value.code == "TOKEN_EXPIRED"

    async def test_refresh_token_rejected(self, gate, alice):
        with pytest.raises(Unauthorized) as exc_info:
            await gate.authenticate(bearer(alice[1].refresh_token))

        assert exc_info.value.code == "INVALID_SIGNATURE"

    async def test_malformed_token(self, gate):
        with pytest.raises(Unauthorized) as exc_info:
            await gate.authenticate(bearer("garbage"))

        assert exc_info.value.code == "MALFORMED"

    async def test_wrong_type_with_shared_secret(self, settings, store, alice):
        shared = settings.model_copy(update={"refresh_token_secret": settings.access_token_secret})
        issuer = TokenIssuer(shared)
        gate = AuthGate(shared, store, issuer=issuer)

        with pytest.raises(Unauthorized) as exc_info:
            await gate.authenticate(bearer(issuer.issue_pair(alice[0]).refresh_token))

        assert exc_info.value.code == "INVALID_TOKEN"

    async def test_user_gone(self, gate, store, alice):
        del store.users[alice[0].id]

        with pytest.raises(Unauthorized) as exc_info:
            await gate.authenticate(bearer(alice[1].access_token))

        assert exc_info.value.code == "USER_NOT_FOUND"

    async def test_deactivated(self, gate, store, alice):
        store._save(alice[0].id, is_active=False)

        with pytest.raises(Unauthorized) as exc_info:
            await gate.authenticate(bearer(alice[1].access_token))

        assert exc_info.value.code == "ACCOUNT_DEACTIVATED"

    async def test_locked(self, gate, store, clock, alice):
        store._save(alice[0].id, lock_until=clock() + timedelta(hours=1))

        with pytest.raises(Unauthorized) as exc_info:
            await gate.authenticate(bearer(alice[1].access_token))

        assert exc_info.value.code == "ACCOUNT_LOCKED"

    async def test_store_failure_is_not_unauthorized(self, gate, store, alice):
        store.unavailable = True

        with pytest.raises(StoreUnavailable):
            await gate.authenticate(bearer(alice[1].access_token))

    async def test_does_not_touch_the_store(self, gate, store, alice):
        before = store.users[alice[0].id].model_copy(deep=True)

        await gate.authenticate(bearer(alice[1].access_token))

        assert store.users[alice[0].id] == before


class TestOptional:

    async def test_anonymous_on_failure(self, gate):
        assert await gate.authenticate_optional(None) is None
        assert await gate.authenticate_optional(bearer("garbage")) is None

    async def test_identity_when_valid(self, gate, alice):
        context = await gate.authenticate_optional(bearer(alice[1].access_token))

        assert context.user_id == alice[0].id

    async def test_store_failure_still_raises(self, gate, store, alice):
        store.unavailable = True

        with pytest.raises(StoreUnavailable):
            await gate.authenticate_optional(bearer(alice[1].access_token))


class TestAuthorize:

    async def test_role_in_set(self, gate, alice):
        context = await gate.authenticate(bearer(alice[1].access_token))

        assert AuthGate.authorize(context, {UserRole.USER, UserRole.ADMIN}) is context

    async def test_role_not_in_set(self, gate, alice):
        context = await gate.authenticate(bearer(alice[1].access_token))

        with pytest.raises(Forbidden):
            AuthGate.authorize(context, {UserRole.ADMIN})

    def test_anonymous(self):
        with pytest.raises(Unauthorized):
            AuthGate.authorize(None, {UserRole.USER})
