"""
Membership manager.

Owns the entitlement state machine: a user is an active member when
their tier is VIP or SVIP and their membership end lies strictly after
the evaluation instant. Renewing an active membership extends it from
its current end and keeps the original start; granting to a lapsed or
NORMAL user restarts the window at the evaluation instant.

Every mutation is an explicit two-step sequence: commit the store
write, then delete the cached user view. The cache is never consulted
for membership decisions.

Mutations for the same user are serialized within this process, so
concurrent renewals handled by one worker add up. Workers in other
processes still race with last-write-wins semantics at the store.
"""

import asyncio
import weakref
from datetime import datetime
from typing import Optional, Union

from shared.logging import get_logger
from shared.errors import NotFoundError, InvalidArgumentError
from shared.metrics import MetricsCollector
from ..cache.base import ViewCache
from ..persistence.base import UserStore
from .calendar import add_months
from .clock import Clock, SystemClock, as_utc
from .models import (
    User, UserRole, PAID_ROLES, MembershipResult, check_entitlement_invariants
)


class MembershipManager:
    """Grants, renews and checks time-bounded paid tiers."""

    def __init__(
        self,
        store: UserStore,
        cache: ViewCache,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.store = store
        self.cache = cache
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.logger = get_logger("membership.manager")
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def check_active(self, user_id: int) -> bool:
        """Whether the user currently holds an unexpired paid tier."""
        user = await self._load(user_id)
        active = user.is_active_member(self.clock.now())
        self._record("check_active", "active" if active else "inactive")
        return active

    async def grant_or_renew(
        self,
        user_id: int,
        tier: Union[UserRole, str],
        months: int
    ) -> MembershipResult:
        """Grant ``tier`` for ``months`` calendar months, or extend it.

        Raises InvalidArgumentError before touching the store when the
        tier is not a paid tier or the duration is not positive, and
        NotFoundError when the user does not exist.
        """
        requested = self._validate_grant(tier, months)

        async with self._lock_for(user_id):
            user = await self._load(user_id)
            now = self.clock.now()

            if user.is_active_member(now):
                start = user.membership_start_time
                end = add_months(user.membership_end_time, months)
                outcome = "renewed"
            else:
                start = now
                end = add_months(now, months)
                outcome = "granted"

            check_entitlement_invariants(requested, start, end)

            await self.store.update(user_id, {
                "user_role": requested,
                "membership_start_time": start,
                "membership_end_time": end,
            })
            await self._invalidate(user_id)

        self.logger.info(
            "Membership updated",
            user_id=user_id,
            outcome=outcome,
            previous_role=user.user_role.value,
            tier=requested.value,
            months=months,
            start=start.isoformat() if start else None,
            end=end.isoformat()
        )
        self._record("grant_or_renew", outcome)
        return MembershipResult(tier=requested, start=start, end=end)

    async def set_role_direct(
        self,
        user_id: int,
        role: Union[UserRole, str],
        membership_end: Optional[datetime]
    ) -> User:
        """Administrative override of tier and membership end.

        No renewal arithmetic is applied and the membership start is
        left as stored.
        """
        role = self._coerce_role(role)
        membership_end = as_utc(membership_end)

        async with self._lock_for(user_id):
            user = await self._load(user_id)
            check_entitlement_invariants(role, user.membership_start_time, membership_end)

            updated = await self.store.update(user_id, {
                "user_role": role,
                "membership_end_time": membership_end,
            })
            await self._invalidate(user_id)

        self.logger.info(
            "Role set directly",
            user_id=user_id,
            previous_role=user.user_role.value,
            role=role.value,
            end=membership_end.isoformat() if membership_end else None
        )
        self._record("set_role_direct", "ok")
        return updated

    async def _load(self, user_id: int) -> User:
        user = await self.store.get(user_id)
        if user is None:
            self._record("load", "not_found")
            raise NotFoundError("User not found", details={"user_id": user_id})
        return user

    async def _invalidate(self, user_id: int):
        # Must run after the store write has committed
        if not await self.cache.invalidate(user_id):
            self.logger.warning("User view not invalidated; stale until TTL", user_id=user_id)

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def _validate_grant(self, tier: Union[UserRole, str], months: int) -> UserRole:
        requested = self._coerce_role(tier)
        if requested not in PAID_ROLES:
            self._record("grant_or_renew", "invalid")
            raise InvalidArgumentError(
                "Membership tier must be VIP or SVIP",
                details={"tier": requested.value}
            )
        if isinstance(months, bool) or not isinstance(months, int) or months <= 0:
            self._record("grant_or_renew", "invalid")
            raise InvalidArgumentError(
                "Membership duration must be a positive number of months",
                details={"months": months}
            )
        return requested

    def _coerce_role(self, role: Union[UserRole, str]) -> UserRole:
        try:
            return UserRole(role)
        except ValueError:
            raise InvalidArgumentError("Unknown role", details={"role": str(role)})

    def _record(self, operation: str, outcome: str):
        if self.metrics:
            self.metrics.record_membership_operation(operation, outcome)
