"""Persisted local state.

This module provides small key-value storage for state that survives
restarts: the breaking-news slide position, the fresh-launch flag, the
once-a-year birthday banner flag and the signed-in session.
"""

import json
import logging
from datetime import date
from typing import Any, Protocol

from .config import STATE_PK_PREFIX, STATE_SK_PREFIX
from .models import UserProfile

logger = logging.getLogger(__name__)

SLIDE_INDEX_KEY = "breakingNewsIndex"
APP_RESTARTED_KEY = "appRestarted"
USER_KEY = "user"
TOKEN_KEY = "token"


class KeyValueStore(Protocol):
    """Protocol for string key-value storage."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryKeyValueStore:
    """Process-local storage, used when no table is configured."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class DynamoDBKeyValueStore:
    """DynamoDB-backed storage, one item per key under a device partition."""

    def __init__(self, table: Any, device_id: str = "default") -> None:
        """Initialize DynamoDBKeyValueStore.

        Args:
            table: boto3 DynamoDB Table resource
            device_id: Partition for this client's keys
        """
        self._table = table
        self._pk = f"{STATE_PK_PREFIX}{device_id}"

    def get(self, key: str) -> str | None:
        response = self._table.get_item(Key={"PK": self._pk, "SK": f"{STATE_SK_PREFIX}{key}"})
        item = response.get("Item")
        if not item:
            return None
        return item.get("value")

    def set(self, key: str, value: str) -> None:
        self._table.put_item(
            Item={
                "PK": self._pk,
                "SK": f"{STATE_SK_PREFIX}{key}",
                "value": value,
            }
        )

    def remove(self, key: str) -> None:
        self._table.delete_item(Key={"PK": self._pk, "SK": f"{STATE_SK_PREFIX}{key}"})


def birthday_key(user_id: int, year: int) -> str:
    return f"birthdayShown_{user_id}_{year}"


def is_birthday(date_of_birth: str, today: date) -> bool:
    """Check whether today matches the day and month of an ISO birth date."""
    if not date_of_birth:
        return False
    try:
        dob = date.fromisoformat(date_of_birth[:10])
    except ValueError:
        return False
    return (dob.month, dob.day) == (today.month, today.day)


class LocalState:
    """Typed access to persisted client state."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    # Breaking news slider

    def get_slide_index(self) -> int:
        raw = self._store.get(SLIDE_INDEX_KEY)
        try:
            return max(int(raw), 0) if raw is not None else 0
        except ValueError:
            return 0

    def set_slide_index(self, index: int) -> None:
        self._store.set(SLIDE_INDEX_KEY, str(index))

    def clear_slide_index(self) -> None:
        self._store.remove(SLIDE_INDEX_KEY)

    def mark_app_launched(self) -> None:
        self._store.set(APP_RESTARTED_KEY, "true")

    def restore_slide_index(self) -> int:
        """Return the saved slide index, starting over after a fresh launch."""
        if self._store.get(APP_RESTARTED_KEY) == "true":
            self._store.remove(SLIDE_INDEX_KEY)
            self._store.remove(APP_RESTARTED_KEY)
            return 0
        return self.get_slide_index()

    # Birthday banner

    def should_show_birthday_banner(self, user: UserProfile | None, today: date) -> bool:
        """Return True the first time it is asked on the user's birthday each year.

        Also removes last year's flag for the user.
        """
        if user is None:
            return False
        self._store.remove(birthday_key(user.id, today.year - 1))
        if not is_birthday(user.date_of_birth, today):
            return False

        key = birthday_key(user.id, today.year)
        if self._store.get(key):
            return False
        self._store.set(key, "true")
        return True

    # Session

    def save_session(self, user: UserProfile, token: str) -> None:
        self._store.set(USER_KEY, json.dumps(user.to_dict()))
        self._store.set(TOKEN_KEY, token)

    def load_session(self) -> tuple[UserProfile, str] | None:
        raw_user = self._store.get(USER_KEY)
        token = self._store.get(TOKEN_KEY)
        if not raw_user or not token:
            return None
        try:
            return UserProfile.from_dict(json.loads(raw_user)), token
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding unreadable stored session: %s", e)
            return None

    def clear_session(self) -> None:
        self._store.remove(USER_KEY)
        self._store.remove(TOKEN_KEY)
