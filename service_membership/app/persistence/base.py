"""
User store interface.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Any, Optional

from ..membership.models import User, UserRole


class UserStore(ABC):
    """Durable user records, the sole authority on membership.

    ``update`` commits every supplied field in one write and raises
    ``ConflictError`` when the identity does not exist or a unique
    column would be violated. There is no version check; the last
    writer wins.
    """

    @abstractmethod
    async def get(self, user_id: int) -> Optional[User]:
        """Load a user, or None when absent."""

    @abstractmethod
    async def update(self, user_id: int, fields: Dict[str, Any]) -> User:
        """Atomically apply ``fields`` and return the committed record."""

    @abstractmethod
    async def create(self, fields: Dict[str, Any]) -> User:
        """Insert a new user and return it with its assigned id."""

    @abstractmethod
    async def delete(self, user_id: int) -> bool:
        """Delete a user; False when it did not exist."""

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[User]:
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    async def find_by_phone(self, phone: str) -> Optional[User]:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def count_by_role(self, role: UserRole) -> int:
        pass

    @abstractmethod
    async def count_created_after(self, moment: datetime) -> int:
        pass

    async def health_check(self) -> bool:
        return True
