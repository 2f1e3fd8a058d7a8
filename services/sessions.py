"""Session lifecycle: registration, login with lockout, refresh-token rotation and logout."""

import logfire
import pytz

from datetime import datetime

from models.helpers import TokenType

from schema.security import TokenPair
from schema.users import (
    ChangePasswordRequest,
    NewUser,
    PublicUser,
    RegisterRequest,
    UpdateProfileRequest,
    UserRecord,
)

from security.config import AuthSettings
from security.errors import (
    AccountDeactivated,
    AccountLocked,
    DuplicateIdentity,
    InvalidCredentials,
    InvalidToken,
    TokenRevoked,
    UserNotFound,
)
from security.lockout import as_utc, full_name, is_locked
from security.passwords import PasswordHasher
from security.tokens import TokenIssuer

from .credential_store import CredentialStore


def public_user(user: UserRecord) -> PublicUser:
    """Builds the outward view of `user`."""
    return PublicUser(
        id=user.id,
        username=user.username,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        full_name=full_name(user),
        role=user.role,
        is_email_verified=user.is_email_verified,
        last_login=user.last_login,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


class SessionManager:
    """Coordinates the credential store, password hasher and token issuer.

    Args:
        settings (AuthSettings): Token and lockout configuration.
        store (CredentialStore): Where users and their refresh tokens live.
        issuer (TokenIssuer, optional): Built from `settings` when omitted.
        hasher (PasswordHasher, optional): Built from `settings` when omitted.
        clock (callable, optional): Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        settings: AuthSettings,
        store: CredentialStore,
        issuer: TokenIssuer | None = None,
        hasher: PasswordHasher | None = None,
        clock=None,
    ):
        self.settings = settings
        self.store = store
        self.clock = clock or (lambda: datetime.now(pytz.utc))
        self.issuer = issuer or TokenIssuer(settings, clock=self.clock)
        self.hasher = hasher or PasswordHasher(rounds=settings.password_hash_rounds)

    async def register(self, payload: RegisterRequest) -> tuple[UserRecord, TokenPair]:
        with logfire.span(f"Registering new user: {payload.username}"):
            existing = await self.store.find_conflict(payload.username, payload.email)
            if existing:
                logfire.warning(f"Attempt to register duplicate user: {payload.username}")
                if existing.email == payload.email:
                    raise DuplicateIdentity("Email already registered")
                raise DuplicateIdentity("Username already taken")

            password_hash = await self.hasher.hash_async(payload.password)

            now = self.clock()
            user = await self.store.insert(
                NewUser(
                    username=payload.username,
                    email=payload.email,
                    password_hash=password_hash,
                    first_name=payload.first_name,
                    last_name=payload.last_name,
                ),
                now,
            )
            logfire.info(f"Saved new user to database: {user.username}")

            tokens = self.issuer.issue_pair(user)
            await self.store.record_login(
                user.id, tokens.refresh_token, now, self.settings.refresh_token_retention
            )

            return user.model_copy(update={"last_login": now}), tokens

    async def login(self, identifier: str, password: str) -> tuple[UserRecord, TokenPair]:
        """Authenticates `identifier` (email or username) and `password`.

        Raises:
            InvalidCredentials: Unknown identifier or wrong password.
            AccountLocked: Too many failed attempts, the lock has not run out yet.
            AccountDeactivated: The account has been deactivated.

        Returns:
            tuple[UserRecord, TokenPair]: The user and a freshly issued token pair.
        """
        user = await self.store.find_by_identifier(identifier)
        if user is None:
            logfire.info("Login failed: no matching account")
            raise InvalidCredentials()

        now = self.clock()
        if is_locked(user, now):
            logfire.warning(f"Login attempt on locked account {user.id}")
            raise AccountLocked()

        if not user.is_active:
            raise AccountDeactivated()

        if not await self.hasher.verify_async(password, user.password_hash):
            updated = await self.store.record_failed_login(
                user.id, now, self.settings.max_login_attempts, self.settings.lockout_duration
            )
            if updated is not None and is_locked(updated, now):
                logfire.warning(f"Account {user.id} locked until {as_utc(updated.lock_until).isoformat()}")
            raise InvalidCredentials()

        tokens = self.issuer.issue_pair(user)
        await self.store.record_login(
            user.id, tokens.refresh_token, now, self.settings.refresh_token_retention
        )
        logfire.info(f"User {user.username} logged in successfully")

        return user.model_copy(update={"login_attempts": 0, "lock_until": None, "last_login": now}), tokens

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchanges a stored refresh token for a new pair, retiring the presented token."""
        claims = self.issuer.verify_refresh(refresh_token)
        if claims.type is not TokenType.REFRESH:
            raise InvalidToken(message="Invalid token type")

        user = await self.store.find_by_id(claims.sub)
        if user is None:
            raise UserNotFound()

        now = self.clock()
        if not user.is_active:
            raise AccountDeactivated()
        if is_locked(user, now):
            raise AccountLocked()

        tokens = self.issuer.issue_pair(user)
        rotated = await self.store.rotate_refresh_token(
            user.id, refresh_token, tokens.refresh_token, now, self.settings.refresh_token_retention
        )
        if not rotated:
            logfire.warning(f"Refresh with unknown or revoked token for user {user.id}")
            raise TokenRevoked()

        logfire.info(f"Tokens refreshed for user {user.username}")
        return tokens

    async def logout(self, user: UserRecord, refresh_token: str | None) -> None:
        if refresh_token:
            await self.store.remove_refresh_token(user.id, refresh_token)
        logfire.info(f"User {user.username} logged out")

    async def logout_all(self, user: UserRecord) -> None:
        await self.store.clear_refresh_tokens(user.id)
        logfire.info(f"All devices logged out for user {user.username}")

    async def update_profile(self, user: UserRecord, payload: UpdateProfileRequest) -> UserRecord:
        changes: dict = {}

        if payload.email and payload.email != user.email:
            if await self.store.find_conflict(None, payload.email, exclude_id=user.id):
                raise DuplicateIdentity("Email already registered")
            changes["email"] = payload.email
            changes["is_email_verified"] = False

        # An explicit null clears the name, an omitted field leaves it alone
        for field in ("first_name", "last_name"):
            if field in payload.model_fields_set:
                changes[field] = getattr(payload, field)

        if not changes:
            return user

        updated = await self.store.update_profile(user.id, changes, self.clock())
        if updated is None:
            raise UserNotFound()

        logfire.info(f"Profile updated for user {user.username}")
        return updated

    async def change_password(self, user: UserRecord, payload: ChangePasswordRequest) -> None:
        """Replaces the password and signs the user out of every session."""
        if not await self.hasher.verify_async(payload.current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        password_hash = await self.hasher.hash_async(payload.new_password)
        await self.store.set_password_hash(user.id, password_hash, self.clock())
        logfire.info(f"Password changed for user {user.username}")
