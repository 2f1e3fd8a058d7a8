"""Issues and verifies signed access and refresh tokens.

Access and refresh tokens are signed with different secrets and carry their
kind in the `type` claim, so neither can stand in for the other.
"""
import secrets

import pytz

from datetime import datetime

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError

from pydantic import ValidationError

from models.helpers import TokenType

from schema.security import TokenClaims, TokenPair
from schema.users import UserRecord

from .config import AuthSettings
from .errors import InvalidToken, TokenErrorKind


def extract_bearer(header_value: str | None) -> str | None:
    """Returns the token from an `Authorization: Bearer <token>` header value.

    Any other shape (missing header, other scheme, extra parts) yields `None`.
    """
    if not header_value:
        return None

    parts = header_value.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None

    return parts[1]


class TokenIssuer:
    """Creates and verifies the access/refresh token pair for a user."""

    def __init__(self, settings: AuthSettings, clock=None):
        self.settings = settings
        self.clock = clock or (lambda: datetime.now(pytz.utc))

    def _encode(self, payload: dict, secret: str, ttl) -> str:
        now = self.clock()
        to_encode = payload.copy()
        to_encode.update(
            {
                "iat": int(now.timestamp()),
                "exp": int((now + ttl).timestamp()),
                "iss": self.settings.issuer,
                "aud": self.settings.audience,
                "jti": secrets.token_urlsafe(16),  # unique per call
            }
        )
        return jwt.encode(to_encode, secret, algorithm=self.settings.algorithm)

    def issue_access_token(self, claims: dict) -> str:
        """Creates a new access token.

        Args:
            claims (dict): Must contain `id`, `username`, `email` and `role`.

        Returns:
            str: The signed access token.
        """
        return self._encode(
            {
                "sub": str(claims["id"]),
                "username": claims["username"],
                "email": claims.get("email"),
                "role": claims.get("role"),
                "type": TokenType.ACCESS.value,
            },
            self.settings.access_token_secret,
            self.settings.access_token_ttl,
        )

    def issue_refresh_token(self, claims: dict) -> str:
        """Creates a new refresh token.

        Args:
            claims (dict): Must contain `id` and `username`.

        Returns:
            str: The signed refresh token.
        """
        return self._encode(
            {
                "sub": str(claims["id"]),
                "username": claims["username"],
                "type": TokenType.REFRESH.value,
            },
            self.settings.refresh_token_secret,
            self.settings.refresh_token_ttl,
        )

    def issue_pair(self, user: UserRecord) -> TokenPair:
        claims = {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "role": user.role.value,
        }
        return TokenPair(
            access_token=self.issue_access_token(claims),
            refresh_token=self.issue_refresh_token(claims),
            expires_in=int(self.settings.access_token_ttl.total_seconds()),
        )

    def _decode(self, token: str, secret: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.settings.algorithm],
                audience=self.settings.audience,
                issuer=self.settings.issuer,
            )
        except ExpiredSignatureError as e:
            raise InvalidToken(TokenErrorKind.EXPIRED, "Token has expired") from e
        except JWTClaimsError as e:
            raise InvalidToken(TokenErrorKind.MALFORMED, "Invalid token claims") from e
        except JWTError as e:
            kind = self._classify(token)
            if kind is TokenErrorKind.BAD_SIGNATURE:
                raise InvalidToken(kind, "Invalid token signature") from e
            raise InvalidToken(kind, "Invalid or malformed token") from e

        try:
            return TokenClaims(**payload)
        except ValidationError as e:
            raise InvalidToken(TokenErrorKind.MALFORMED, "Invalid or malformed token") from e

    @staticmethod
    def _classify(token: str) -> TokenErrorKind:
        # A token whose header and claims parse but still fails verification was signed with another key.
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError:
            return TokenErrorKind.MALFORMED
        return TokenErrorKind.BAD_SIGNATURE

    def verify_access(self, token: str) -> TokenClaims:
        return self._decode(token, self.settings.access_token_secret)

    def verify_refresh(self, token: str) -> TokenClaims:
        return self._decode(token, self.settings.refresh_token_secret)
