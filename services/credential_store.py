"""MongoDB-backed persistence for user credentials and refresh tokens.

Mutations are atomic updates keyed by user id, so concurrent requests for the
same user never read-modify-write the document.
"""
import logfire

from contextlib import contextmanager

from datetime import datetime, timedelta

from bson import ObjectId

from pymongo.errors import DuplicateKeyError, PyMongoError

from beanie import UpdateResponse
from beanie.operators import Set

from typing import Optional

from models.users import User

from schema.users import NewUser, UserRecord

from security.errors import DuplicateIdentity, StoreUnavailable


@contextmanager
def _store_errors(action: str):
    try:
        yield
    except DuplicateKeyError as e:
        logfire.warning(f"Duplicate key while {action}")
        raise DuplicateIdentity("Username or email already registered") from e
    except PyMongoError as e:
        logfire.error(f"Database error while {action}: {str(e)}")
        raise StoreUnavailable() from e


def _to_record(user: User | None) -> UserRecord | None:
    if user is None:
        return None
    return UserRecord.model_validate({**user.model_dump(exclude={"id"}), "id": str(user.id)})


def _object_id(user_id: str) -> ObjectId | None:
    return ObjectId(user_id) if ObjectId.is_valid(user_id) else None


def _live_tokens(cutoff: datetime, *conditions: dict) -> dict:
    """Aggregation expression for stored refresh tokens issued at or after `cutoff`."""
    return {
        "$filter": {
            "input": {"$ifNull": ["$refresh_tokens", []]},
            "as": "entry",
            "cond": {"$and": [{"$gte": ["$$entry.created_at", cutoff]}, *conditions]},
        }
    }


class CredentialStore:
    """Reads and atomically updates `User` documents."""

    async def find_by_id(self, user_id: str) -> UserRecord | None:
        oid = _object_id(user_id)
        if oid is None:
            return None
        with _store_errors("fetching user by id"):
            return _to_record(await User.get(oid))

    async def find_by_identifier(self, identifier: str) -> UserRecord | None:
        """Finds a user whose email (case-insensitive) or username equals `identifier`.

        When the identifier is one account's email and another account's
        username, the email match wins.
        """
        email = identifier.lower()
        with _store_errors("fetching user by identifier"):
            matches = await User.find(
                {"$or": [{"email": email}, {"username": identifier}]}
            ).to_list(2)

        for user in matches:
            if user.email == email:
                return _to_record(user)
        return _to_record(matches[0]) if matches else None

    async def find_conflict(
        self, username: Optional[str], email: Optional[str], exclude_id: Optional[str] = None
    ) -> UserRecord | None:
        """Returns a user already holding `username` or `email`, other than `exclude_id`."""
        clauses = []
        if username:
            clauses.append({"username": username})
        if email:
            clauses.append({"email": email.lower()})
        if not clauses:
            return None

        query: dict = {"$or": clauses}
        if exclude_id and (oid := _object_id(exclude_id)):
            query["_id"] = {"$ne": oid}

        with _store_errors("checking for existing user"):
            return _to_record(await User.find_one(query))

    async def insert(self, new_user: NewUser, now: datetime) -> UserRecord:
        user = User(**new_user.model_dump(), created_at=now, updated_at=now)
        with _store_errors(f"inserting user {new_user.username}"):
            await user.insert()
        return _to_record(user)

    async def record_failed_login(
        self, user_id: str, now: datetime, max_attempts: int, lockout_duration: timedelta
    ) -> UserRecord | None:
        """Counts a failed password check and locks the account once the threshold is reached.

        The lock decision is made on the counter value returned by the increment,
        so concurrent failures cannot all slip under the threshold.

        Returns:
            UserRecord | None: The user after the update, None when the user is gone.
        """
        oid = ObjectId(user_id)
        with _store_errors("recording failed login"):
            # A lock that has run out starts a new series at one
            restarted = await User.find_one({"_id": oid, "lock_until": {"$lte": now}}).update(
                {"$set": {"login_attempts": 1}, "$unset": {"lock_until": ""}},
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
            if restarted is not None:
                return _to_record(restarted)

            user = await User.find_one({"_id": oid}).update(
                {"$inc": {"login_attempts": 1}},
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
            if user is None or user.login_attempts < max_attempts:
                return _to_record(user)

            locked = await User.find_one(
                {
                    "_id": oid,
                    "login_attempts": {"$gte": max_attempts},
                    "$or": [{"lock_until": None}, {"lock_until": {"$lte": now}}],
                }
            ).update(
                {"$set": {"lock_until": now + lockout_duration}},
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
            return _to_record(locked or await User.get(oid))

    async def record_login(
        self, user_id: str, refresh_token: str, now: datetime, retention: timedelta
    ) -> None:
        """Resets the attempt counter and lock, stores `refresh_token` and stamps `last_login`.

        Tokens older than the retention window are dropped in the same update.
        """
        with _store_errors("recording login"):
            await User.find_one({"_id": ObjectId(user_id)}).update(
                [
                    {
                        "$set": {
                            "refresh_tokens": {
                                "$concatArrays": [
                                    _live_tokens(now - retention),
                                    [{"token": refresh_token, "created_at": now}],
                                ]
                            },
                            "login_attempts": 0,
                            "lock_until": None,
                            "last_login": now,
                            "updated_at": now,
                        }
                    }
                ]
            )

    async def rotate_refresh_token(
        self, user_id: str, old_token: str, new_token: str, now: datetime, retention: timedelta
    ) -> bool:
        """Swaps `old_token` for `new_token` and drops expired tokens in one update.

        Returns:
            bool: False when `old_token` is not stored or has outlived the retention window.
        """
        cutoff = now - retention
        with _store_errors("rotating refresh token"):
            result = await User.find_one(
                {
                    "_id": ObjectId(user_id),
                    "refresh_tokens": {
                        "$elemMatch": {"token": old_token, "created_at": {"$gte": cutoff}}
                    },
                }
            ).update(
                [
                    {
                        "$set": {
                            "refresh_tokens": {
                                "$concatArrays": [
                                    _live_tokens(cutoff, {"$ne": ["$$entry.token", old_token]}),
                                    [{"token": new_token, "created_at": now}],
                                ]
                            },
                            "updated_at": now,
                        }
                    }
                ]
            )
        return bool(result and result.modified_count)

    async def remove_refresh_token(self, user_id: str, token: str) -> None:
        with _store_errors("removing refresh token"):
            await User.find_one({"_id": ObjectId(user_id)}).update(
                {"$pull": {"refresh_tokens": {"token": token}}}
            )

    async def clear_refresh_tokens(self, user_id: str) -> None:
        with _store_errors("clearing refresh tokens"):
            await User.find_one({"_id": ObjectId(user_id)}).update(
                Set({User.refresh_tokens: []})
            )

    async def update_profile(self, user_id: str, changes: dict, now: datetime) -> UserRecord | None:
        oid = ObjectId(user_id)
        with _store_errors("updating profile"):
            await User.find_one({"_id": oid}).update({"$set": {**changes, "updated_at": now}})
            return _to_record(await User.get(oid))

    async def set_password_hash(self, user_id: str, password_hash: str, now: datetime) -> None:
        """Stores a new password hash and revokes every refresh token."""
        with _store_errors("changing password"):
            await User.find_one({"_id": ObjectId(user_id)}).update(
                Set(
                    {
                        User.password_hash: password_hash,
                        User.refresh_tokens: [],
                        User.updated_at: now,
                    }
                )
            )
