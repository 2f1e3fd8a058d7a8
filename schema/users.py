"""Contains the schema definition for requests and responses related to users
"""

import re

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator, model_validator

from typing import Annotated, List, Optional, Self

from models.helpers import UserRole
from models.users import RefreshTokenEntry

from .security import TokenPair

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s]*$")


def _check_password_strength(value: str) -> str:
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"\d", value):
        raise ValueError("Password must contain at least one number")
    return value


def _check_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not NAME_PATTERN.match(value):
        raise ValueError("Name can only contain letters and spaces")
    return value


class UserRecord(BaseModel):
    """A user as seen by the service layer, detached from the database document."""

    id: str
    username: str
    email: str
    password_hash: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole = UserRole.USER
    is_active: bool = True
    is_email_verified: bool = False
    login_attempts: int = 0
    lock_until: Optional[datetime] = None
    refresh_tokens: List[RefreshTokenEntry] = []
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class NewUser(BaseModel):
    """Validated fields for a user that is about to be inserted."""

    username: str
    email: str
    password_hash: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole = UserRole.USER


class RegisterRequest(BaseModel):
    """Describes the structure of the register request."""

    model_config = ConfigDict(populate_by_name=True)

    username: Annotated[str, Field(min_length=3, max_length=30)]
    email: Annotated[EmailStr, Field(max_length=100)]
    password: Annotated[str, Field(min_length=6, max_length=128)]
    first_name: Annotated[Optional[str], Field(default=None, max_length=50, alias="firstName")]
    last_name: Annotated[Optional[str], Field(default=None, max_length=50, alias="lastName")]

    @field_validator("username", mode="before")
    @classmethod
    def validate_username(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not USERNAME_PATTERN.match(v):
                raise ValueError("Username can only contain letters, numbers, and underscores")
        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_strength(v)

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_names(cls, v: Optional[str]) -> Optional[str]:
        return _check_name(v)


class LoginRequest(BaseModel):
    """Describes the structure of the login request. `identifier` is an email or a username."""

    identifier: Annotated[str, Field(min_length=3, max_length=100)]
    password: Annotated[str, Field(min_length=1, max_length=128)]

    @field_validator("identifier", mode="before")
    @classmethod
    def strip_identifier(cls, v):
        return v.strip() if isinstance(v, str) else v


class UpdateProfileRequest(BaseModel):
    """Describes the structure of the update profile request."""

    model_config = ConfigDict(populate_by_name=True)

    email: Optional[Annotated[EmailStr, Field(max_length=100)]] = None
    first_name: Annotated[Optional[str], Field(default=None, max_length=50, alias="firstName")]
    last_name: Annotated[Optional[str], Field(default=None, max_length=50, alias="lastName")]

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_names(cls, v: Optional[str]) -> Optional[str]:
        return _check_name(v)


class ChangePasswordRequest(BaseModel):
    """Describes the structure of the change password request."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: Annotated[str, Field(min_length=1, alias="currentPassword")]
    new_password: Annotated[str, Field(min_length=6, max_length=128, alias="newPassword")]
    confirm_password: Annotated[str, Field(alias="confirmPassword")]

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_strength(v)

    # * Checks if new password and confirmation fields match
    @model_validator(mode="after")
    def check_password_match(self) -> Self:
        if self.new_password != self.confirm_password:
            raise ValueError("Password confirmation does not match new password")
        return self


class PublicUser(BaseModel):
    """The outward view of a user. Never carries credentials or token state."""

    id: str
    username: str
    email: str
    first_name: Annotated[Optional[str], Field(default=None, serialization_alias="firstName")]
    last_name: Annotated[Optional[str], Field(default=None, serialization_alias="lastName")]
    full_name: Annotated[str, Field(serialization_alias="fullName")]
    role: UserRole
    is_email_verified: Annotated[bool, Field(serialization_alias="isEmailVerified")]
    last_login: Annotated[Optional[datetime], Field(default=None, serialization_alias="lastLogin")]
    created_at: Annotated[Optional[datetime], Field(default=None, serialization_alias="createdAt")]
    updated_at: Annotated[Optional[datetime], Field(default=None, serialization_alias="updatedAt")]


class AuthData(BaseModel):
    user: PublicUser
    tokens: TokenPair


class TokensData(BaseModel):
    tokens: TokenPair


class UserData(BaseModel):
    user: PublicUser


class AuthResponse(BaseModel):
    """Response returned by register and login."""

    success: bool = True
    message: str
    data: AuthData


class TokensResponse(BaseModel):
    """Response returned by refresh."""

    success: bool = True
    message: str
    data: TokensData


class UserResponse(BaseModel):
    """Response returned by the profile endpoints."""

    success: bool = True
    message: Optional[str] = None
    data: UserData


class MessageResponse(BaseModel):
    success: bool = True
    message: str
