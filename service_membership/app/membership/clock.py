"""
Time source used for membership decisions.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional


class Clock(ABC):
    """Source of the evaluation instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current instant as an aware datetime."""


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Normalize ``moment`` to an aware UTC datetime.

    Naive values are taken to be UTC already.
    """
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
