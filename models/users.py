"""Defines the persisted user document.
"""
import pytz

from datetime import datetime

from pydantic import BaseModel, Field, field_serializer

from typing import Annotated, List, Optional

import pymongo
from beanie import Document, Indexed, PydanticObjectId

from .helpers import UserRole


class RefreshTokenEntry(BaseModel):
    """A refresh token issued to the user and not yet revoked."""
    token: Annotated[str, Field()]
    created_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(pytz.utc))]


class User(Document):
    """User account with credentials, lockout state and active refresh tokens.
    """
    username: Annotated[str, Indexed(unique=True), Field(min_length=3, max_length=30, pattern=r"^[a-zA-Z0-9_]+$")]
    email: Annotated[str, Indexed(unique=True), Field(max_length=100)]  # always stored lower-cased
    password_hash: Annotated[str, Field()]
    first_name: Annotated[Optional[str], Field(default=None, max_length=50)]
    last_name: Annotated[Optional[str], Field(default=None, max_length=50)]
    role: Annotated[UserRole, Field(default=UserRole.USER)]
    is_active: Annotated[bool, Indexed(), Field(default=True)]
    is_email_verified: Annotated[bool, Field(default=False)]
    login_attempts: Annotated[int, Field(default=0, ge=0)]
    lock_until: Annotated[Optional[datetime], Field(default=None)]
    refresh_tokens: Annotated[List[RefreshTokenEntry], Field(default=[])]
    last_login: Annotated[Optional[datetime], Field(default=None)]
    created_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(pytz.utc))]
    updated_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(pytz.utc))]

    @field_serializer("id")
    def convert_pydantic_object_id_to_string(self, id: PydanticObjectId):
        return str(id)

    class Settings:
        name = "users"
        indexes = [
            pymongo.IndexModel([("refresh_tokens.token", pymongo.ASCENDING)]),
        ]
