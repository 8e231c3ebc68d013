from __future__ import annotations

import threading
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from userhub.storage.errors import ConstraintViolation
from userhub.storage.models import User
from userhub.storage.redis_cache import (
    DEFAULT_REFRESH_TTL_SECONDS,
    blacklist_key,
    refresh_key,
)


class MemoryStore:
    """In-memory user store for tests and local development."""

    def __init__(self) -> None:
        self.users: Dict[int, User] = {}
        self._id_seq: int = 0
        # RLock for all data operations; nested acquisitions happen on update
        self._data_lock = threading.RLock()

    def _next_id(self) -> int:
        self._id_seq += 1
        return self._id_seq

    def verify_connection(self) -> None:
        return None

    def create_user(self, name: str, email: str, password_hash: str) -> User:
        with self._data_lock:
            if self._email_taken(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(
                id=self._next_id(),
                name=name,
                email=email,
                password_hash=password_hash,
            )
            self.users[user.id] = user
            return replace(user)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == email), None)
            return replace(user) if user else None

    def _email_taken(self, email: str) -> bool:
        with self._data_lock:
            return any(u.email == email for u in self.users.values())

    def email_exists(self, email: str) -> bool:
        return self._email_taken(email)

    def list_users(self, limit: int = 100) -> List[User]:
        with self._data_lock:
            return [replace(u) for u in sorted(self.users.values(), key=lambda u: u.id)][:limit]

    def update_user(
        self,
        user_id: int,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if email is not None and email != user.email and self._email_taken(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            if name is not None:
                user.name = name
            if email is not None:
                user.email = email
            user.updated_at = datetime.now(timezone.utc)
            return replace(user)

    def delete_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            user = self.users.pop(user_id, None)
            return replace(user) if user is not None else None


class MemoryCache:
    """In-process session cache with the same contract as ``RedisCache``.

    Entries expire lazily on read. ``clock`` returns monotonic seconds and can
    be swapped in tests to simulate time passing.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._clock = clock
        self._lock = threading.RLock()

    async def connect(self) -> "MemoryCache":
        return self

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> "MemoryCache":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def verify_connection(self) -> None:
        return None

    def _set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                self._entries.pop(key, None)
                return None
            return value

    async def store_refresh_token(
        self, user_id: int, token: str, ttl_seconds: int = DEFAULT_REFRESH_TTL_SECONDS
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._set(refresh_key(user_id), token, ttl_seconds)

    async def get_refresh_token(self, user_id: int) -> Optional[str]:
        return self._get(refresh_key(user_id))

    async def remove_refresh_token(self, user_id: int) -> None:
        with self._lock:
            self._entries.pop(refresh_key(user_id), None)

    async def blacklist_token(self, token: str, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            self._set(blacklist_key(token), "1", ttl_seconds)

    async def is_blacklisted(self, token: str) -> bool:
        return self._get(blacklist_key(token)) is not None

    def ttl(self, key: str) -> Optional[float]:
        """Seconds left on ``key`` or None if absent/expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            remaining = entry[1] - self._clock()
            return remaining if remaining > 0 else None
