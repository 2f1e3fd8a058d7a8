"""Derived user fields and lockout checks.

Nothing here touches the database. Counting failed attempts and setting the
lock happen atomically in the credential store.
"""
import pytz

from datetime import datetime

from typing import Optional

from schema.users import UserRecord


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treats naive datetimes read back from MongoDB as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=pytz.utc)
    return value


def is_locked(user: UserRecord, now: datetime) -> bool:
    lock_until = as_utc(user.lock_until)
    return lock_until is not None and lock_until > now


def lock_has_expired(user: UserRecord, now: datetime) -> bool:
    """True when the user was locked and the lock has run out."""
    lock_until = as_utc(user.lock_until)
    return lock_until is not None and lock_until <= now


def full_name(user: UserRecord) -> str:
    if user.first_name and user.last_name:
        return f"{user.first_name} {user.last_name}"
    return user.first_name or user.last_name or user.username
