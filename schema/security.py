"""Defines schema of requests and responses related to security"""

from pydantic import BaseModel, ConfigDict, Field

from typing import Annotated, Optional

from models.helpers import TokenType, UserRole


class TokenPair(BaseModel):
    """Model representing both access and refresh tokens."""

    access_token: Annotated[str, Field(serialization_alias="accessToken")]
    refresh_token: Annotated[str, Field(serialization_alias="refreshToken")]
    token_type: Annotated[str, Field(default="Bearer", serialization_alias="tokenType")]
    expires_in: Annotated[int, Field(serialization_alias="expiresIn")]  # Access token expiry in seconds


class RefreshTokenRequest(BaseModel):
    """Model for refresh token request."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_token: Annotated[str, Field(min_length=1, alias="refreshToken")]


class LogoutRequest(BaseModel):
    """Model for logout request. Without a refresh token logout is a no-op."""

    model_config = ConfigDict(populate_by_name=True)

    refresh_token: Annotated[Optional[str], Field(default=None, alias="refreshToken")]


class TokenClaims(BaseModel):
    """Model representing the verified claims of an access or refresh token."""

    sub: str  # user id
    username: str
    email: Optional[str] = None
    role: Optional[UserRole] = None
    type: TokenType
    iat: int
    exp: int
    iss: str
    aud: str
    jti: str
