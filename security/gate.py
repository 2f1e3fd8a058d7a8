"""Resolves the calling user from the `Authorization` header.

`get_current_user` rejects unauthenticated requests, `get_optional_user`
lets them through as anonymous, and `require_roles` adds a role check on top
of `get_current_user`.
"""
import logfire

from fastapi import Depends, Request

from pydantic import BaseModel

from typing import Annotated

from models.helpers import TokenType, UserRole

from schema.users import UserRecord

from .config import AuthSettings
from .errors import Forbidden, InvalidToken, Unauthorized
from .lockout import is_locked
from .tokens import TokenIssuer, extract_bearer


class AuthContext(BaseModel):
    """Identity attached to an authenticated request."""

    user_id: str
    username: str
    role: UserRole
    user: UserRecord


class AuthGate:
    """Verifies access tokens and loads the user they refer to. Never writes to the store."""

    def __init__(self, settings: AuthSettings, store, issuer: TokenIssuer | None = None, clock=None):
        self.settings = settings
        self.store = store
        self.issuer = issuer or TokenIssuer(settings, clock=clock)
        self.clock = self.issuer.clock

    async def authenticate(self, authorization: str | None) -> AuthContext:
        """Authenticates a request from its `Authorization` header value.

        Raises:
            Unauthorized: With a code telling the client why (`MISSING_TOKEN`, `TOKEN_EXPIRED`,
                `INVALID_SIGNATURE`, `MALFORMED`, `INVALID_TOKEN`, `USER_NOT_FOUND`,
                `ACCOUNT_DEACTIVATED`, `ACCOUNT_LOCKED`).
            StoreUnavailable: The user could not be loaded.

        Returns:
            AuthContext: The authenticated identity.
        """
        token = extract_bearer(authorization)
        if token is None:
            raise Unauthorized("Access token is required", code="MISSING_TOKEN")

        try:
            claims = self.issuer.verify_access(token)
        except InvalidToken as e:
            raise Unauthorized(e.message, code=e.code) from e

        if claims.type is not TokenType.ACCESS:
            raise Unauthorized("Invalid token type", code="INVALID_TOKEN")

        user = await self.store.find_by_id(claims.sub)
        if user is None:
            raise Unauthorized("User not found", code="USER_NOT_FOUND")

        if not user.is_active:
            raise Unauthorized("Account is deactivated", code="ACCOUNT_DEACTIVATED")

        if is_locked(user, self.clock()):
            raise Unauthorized(
                "Account is temporarily locked due to multiple failed login attempts",
                code="ACCOUNT_LOCKED",
            )

        return AuthContext(user_id=user.id, username=user.username, role=user.role, user=user)

    async def authenticate_optional(self, authorization: str | None) -> AuthContext | None:
        try:
            return await self.authenticate(authorization)
        except Unauthorized:
            return None

    @staticmethod
    def authorize(context: AuthContext | None, roles: set[UserRole]) -> AuthContext:
        if context is None:
            raise Unauthorized()
        if context.role not in roles:
            logfire.warning(f"User {context.username} denied, role {context.role.value} not permitted")
            raise Forbidden()
        return context


def get_auth_gate(request: Request) -> AuthGate:
    return request.app.state.auth_gate


async def get_current_user(
    request: Request, gate: Annotated[AuthGate, Depends(get_auth_gate)]
) -> AuthContext:
    """Get the authenticated caller or reject the request with 401."""
    context = await gate.authenticate(request.headers.get("Authorization"))
    request.state.auth = context
    return context


async def get_optional_user(
    request: Request, gate: Annotated[AuthGate, Depends(get_auth_gate)]
) -> AuthContext | None:
    """Get the authenticated caller, or None for anonymous requests."""
    context = await gate.authenticate_optional(request.headers.get("Authorization"))
    request.state.auth = context
    return context


def require_roles(*roles: UserRole):
    """Builds a dependency admitting only callers whose role is in `roles`."""
    allowed = set(roles)

    async def check_role(
        context: Annotated[AuthContext, Depends(get_current_user)],
    ) -> AuthContext:
        return AuthGate.authorize(context, allowed)

    return check_role


admin_only = require_roles(UserRole.ADMIN)
user_or_admin = require_roles(UserRole.USER, UserRole.ADMIN)
