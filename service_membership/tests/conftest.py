"""
In-memory collaborators for Membership service tests.
"""

import copy
import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional, List, Tuple

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import ConflictError, DependencyError
from service_membership.app.cache.base import ViewCache
from service_membership.app.membership.clock import Clock
from service_membership.app.membership.models import User, UserRole, UserView
from service_membership.app.persistence.base import UserStore


class FixedClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def set(self, now: datetime):
        self.current = now

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


class InMemoryUserStore(UserStore):
    """Dict-backed store that records every write."""

    def __init__(self, clock: Clock, events: List[Tuple[str, int]]):
        self.clock = clock
        self.events = events
        self.users: Dict[int, User] = {}
        self.updates: List[Tuple[int, Dict[str, Any]]] = []
        self._ids = itertools.count(1)

    def seed(self, **fields) -> User:
        user_id = fields.pop("id", None) or next(self._ids)
        fields.setdefault("username", f"user{user_id}")
        fields.setdefault("password", "not-a-hash")
        fields.setdefault("created_at", self.clock.now())
        user = User(id=user_id, **fields)
        self.users[user_id] = user
        return copy.deepcopy(user)

    async def get(self, user_id: int) -> Optional[User]:
        user = self.users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def update(self, user_id: int, fields: Dict[str, Any]) -> User:
        if user_id not in self.users:
            raise ConflictError("User does not exist", details={"user_id": user_id})
        user = self.users[user_id]
        for name, value in fields.items():
            setattr(user, name, value)
        user.updated_at = self.clock.now()
        self.updates.append((user_id, dict(fields)))
        self.events.append(("store.update", user_id))
        return copy.deepcopy(user)

    async def create(self, fields: Dict[str, Any]) -> User:
        user_id = next(self._ids)
        user = User(id=user_id, created_at=self.clock.now(), **fields)
        self.users[user_id] = user
        self.events.append(("store.create", user_id))
        return copy.deepcopy(user)

    async def delete(self, user_id: int) -> bool:
        self.events.append(("store.delete", user_id))
        return self.users.pop(user_id, None) is not None

    async def find_by_username(self, username: str) -> Optional[User]:
        return self._find("username", username)

    async def find_by_email(self, email: str) -> Optional[User]:
        return self._find("email", email)

    async def find_by_phone(self, phone: str) -> Optional[User]:
        return self._find("phone", phone)

    async def count(self) -> int:
        return len(self.users)

    async def count_by_role(self, role: UserRole) -> int:
        return sum(1 for user in self.users.values() if user.user_role == role)

    async def count_created_after(self, moment: datetime) -> int:
        return sum(1 for user in self.users.values() if user.created_at and user.created_at > moment)

    def _find(self, field_name: str, value: str) -> Optional[User]:
        for user in self.users.values():
            if getattr(user, field_name) == value:
                return copy.deepcopy(user)
        return None


class InMemoryViewCache(ViewCache):
    """TTL cache driven by the test clock; also holds revoked token ids."""

    def __init__(self, clock: Clock, events: List[Tuple[str, int]]):
        self.clock = clock
        self.events = events
        self.entries: Dict[int, Tuple[UserView, datetime]] = {}
        self.revoked: Dict[str, datetime] = {}
        self.fail = False

    async def get(self, user_id: int) -> Optional[UserView]:
        if self.fail:
            return None
        entry = self.entries.get(user_id)
        if entry is None:
            return None
        view, expires_at = entry
        if expires_at <= self.clock.now():
            del self.entries[user_id]
            return None
        return view

    async def put(self, user_id: int, view: UserView, ttl_seconds: int) -> bool:
        if self.fail:
            return False
        self.entries[user_id] = (view, self.clock.now() + timedelta(seconds=ttl_seconds))
        self.events.append(("cache.put", user_id))
        return True

    async def invalidate(self, user_id: int) -> bool:
        self.events.append(("cache.invalidate", user_id))
        if self.fail:
            return False
        self.entries.pop(user_id, None)
        return True

    async def revoke_token(self, jti: str, ttl_seconds: int) -> bool:
        self.revoked[jti] = self.clock.now() + timedelta(seconds=ttl_seconds)
        return True

    async def is_token_revoked(self, jti: str) -> bool:
        if self.fail:
            raise DependencyError("redis", "Token revocation list unavailable")
        expires_at = self.revoked.get(jti)
        return expires_at is not None and expires_at > self.clock.now()


@pytest.fixture
def now():
    return datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def clock(now):
    return FixedClock(now)


@pytest.fixture
def events():
    return []


@pytest.fixture
def store(clock, events):
    return InMemoryUserStore(clock, events)


@pytest.fixture
def cache(clock, events):
    return InMemoryViewCache(clock, events)
