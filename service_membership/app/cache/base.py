"""
User view cache interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..membership.models import UserView


USER_INFO_PREFIX = "user-info:"


def user_info_key(user_id: int) -> str:
    """Cache key of a user's view."""
    return f"{USER_INFO_PREFIX}{user_id}"


class ViewCache(ABC):
    """TTL-bounded shadow of user records.

    Implementations never raise: a failed read is a miss and a failed
    write or delete is reported as False.
    """

    @abstractmethod
    async def get(self, user_id: int) -> Optional[UserView]:
        """Return the cached view, or None on miss or expiry."""

    @abstractmethod
    async def put(self, user_id: int, view: UserView, ttl_seconds: int) -> bool:
        """Store ``view``, replacing any entry and resetting its expiry."""

    @abstractmethod
    async def invalidate(self, user_id: int) -> bool:
        """Remove the entry. Removing an absent entry is not an error."""
