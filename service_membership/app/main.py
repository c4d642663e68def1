"""
Membership service.
"""

from datetime import datetime
from typing import Optional

from fastapi import Header, Query

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import set_user_context

from .cache.base import ViewCache
from .cache.redis_cache import RedisUserCache
from .membership.clock import Clock
from .membership.manager import MembershipManager
from .membership.models import (
    UserView, MembershipResult, GrantMembershipRequest, SetRoleRequest,
    ActiveMembershipResponse, RegisterRequest, LoginRequest, AuthResponse,
    ProfileUpdateRequest, AvatarUpdateRequest, PasswordChangeRequest,
    AdminUserCreateRequest, AdminUserUpdateRequest, UserStatsResponse
)
from .persistence.base import UserStore
from .persistence.postgres import PostgreSQLUserStore
from .security.passwords import PasswordHasher
from .security.tokens import TokenIssuer
from .users.service import UserService


class MembershipService(BaseService):
    """Membership service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        store: Optional[UserStore] = None,
        cache: Optional[ViewCache] = None,
        revocations=None,
        clock: Optional[Clock] = None
    ):
        super().__init__("membership", 8013, config=config)

        # Injected collaborators are owned by the caller and not started here
        self._owned = []
        if store is None:
            store = PostgreSQLUserStore(self.config.postgres_dsn)
            self._owned.append(store)
        if cache is None:
            cache = RedisUserCache(self.config.redis_url, metrics=self.metrics)
            self._owned.append(cache)
        self.store = store
        self.cache = cache
        revocations = revocations or self.cache

        self.tokens = TokenIssuer(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            expires_seconds=self.config.jwt_expires_seconds
        )
        self.membership = MembershipManager(self.store, self.cache, clock=clock, metrics=self.metrics)
        self.users = UserService(
            self.store,
            self.cache,
            PasswordHasher(self.config.bcrypt_rounds),
            self.tokens,
            revocations,
            view_ttl_seconds=self.config.user_info_ttl_seconds
        )

        self._setup_membership_routes()

    def _require_admin(self, admin_key: Optional[str]):
        # Unset key disables the admin surface
        if not self.config.admin_api_key or admin_key != self.config.admin_api_key:
            raise AuthorizationError("Administrator key required")

    async def _require_owner(self, authorization: Optional[str], user_id: int):
        claims = await self.users.authenticate(self._bearer(authorization))
        if claims["sub"] != str(user_id):
            raise AuthorizationError("Cannot modify another user", details={"user_id": user_id})
        set_user_context(claims["sub"])

    def _bearer(self, authorization: Optional[str]) -> str:
        if not authorization:
            raise AuthenticationError("Missing Authorization header")
        return authorization

    def _setup_membership_routes(self):
        """Set up membership-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "membership",
                "message": "Membership Service",
                "version": "1.0.0",
                "capabilities": ["accounts", "membership", "caching", "persistence"]
            }

        @self.app.post("/users/register", response_model=AuthResponse)
        async def register(request: RegisterRequest):
            return await self.users.register(request)

        @self.app.post("/users/login", response_model=AuthResponse)
        async def login(request: LoginRequest):
            return await self.users.login(request.username, request.password)

        @self.app.post("/users/logout")
        async def logout(authorization: Optional[str] = Header(None)):
            await self.users.logout(self._bearer(authorization))
            return {"success": True}

        @self.app.get("/users/me", response_model=UserView)
        async def get_profile(authorization: Optional[str] = Header(None)):
            return await self.users.get_profile(self._bearer(authorization))

        @self.app.get("/users/{user_id}", response_model=UserView)
        async def get_user(user_id: int):
            return await self.users.find_by_id(user_id)

        @self.app.put("/users/{user_id}/profile", response_model=UserView)
        async def update_profile(
            user_id: int, request: ProfileUpdateRequest, authorization: Optional[str] = Header(None)
        ):
            await self._require_owner(authorization, user_id)
            return await self.users.update_profile(user_id, request)

        @self.app.put("/users/{user_id}/avatar")
        async def update_avatar(
            user_id: int, request: AvatarUpdateRequest, authorization: Optional[str] = Header(None)
        ):
            await self._require_owner(authorization, user_id)
            return {"avatar": await self.users.update_avatar(user_id, request.avatar_url)}

        @self.app.put("/users/{user_id}/password")
        async def change_password(
            user_id: int, request: PasswordChangeRequest, authorization: Optional[str] = Header(None)
        ):
            await self._require_owner(authorization, user_id)
            await self.users.change_password(user_id, request.current_password, request.new_password)
            return {"success": True}

        @self.app.get("/membership/{user_id}/active", response_model=ActiveMembershipResponse)
        async def check_active(user_id: int):
            active = await self.membership.check_active(user_id)
            return ActiveMembershipResponse(
                user_id=user_id,
                active=active,
                checked_at=self.membership.clock.now()
            )

        @self.app.post("/membership/{user_id}/grant", response_model=MembershipResult)
        async def grant_membership(
            user_id: int, request: GrantMembershipRequest, x_admin_key: Optional[str] = Header(None)
        ):
            # Called by the billing backend once payment settles
            self._require_admin(x_admin_key)
            set_user_context(str(user_id))
            return await self.membership.grant_or_renew(user_id, request.tier, request.months)

        @self.app.put("/admin/users/{user_id}/role", response_model=UserView)
        async def set_role(user_id: int, request: SetRoleRequest, x_admin_key: Optional[str] = Header(None)):
            self._require_admin(x_admin_key)
            user = await self.membership.set_role_direct(user_id, request.role, request.membership_end_time)
            return UserView.from_user(user)

        @self.app.post("/admin/users", response_model=UserView)
        async def add_user(request: AdminUserCreateRequest, x_admin_key: Optional[str] = Header(None)):
            self._require_admin(x_admin_key)
            return await self.users.add_user(request)

        @self.app.put("/admin/users/{user_id}", response_model=UserView)
        async def update_user(user_id: int, request: AdminUserUpdateRequest, x_admin_key: Optional[str] = Header(None)):
            self._require_admin(x_admin_key)
            return await self.users.update_user(user_id, request)

        @self.app.delete("/admin/users/{user_id}")
        async def delete_user(user_id: int, x_admin_key: Optional[str] = Header(None)):
            self._require_admin(x_admin_key)
            await self.users.delete_user(user_id)
            return {"success": True}

        @self.app.get("/admin/stats", response_model=UserStatsResponse)
        async def get_stats(
            created_since: Optional[datetime] = Query(None, description="Count users created after this instant"),
            x_admin_key: Optional[str] = Header(None)
        ):
            self._require_admin(x_admin_key)
            return await self.users.stats(created_since)

    async def _check_dependencies(self):
        """Check membership service dependencies."""
        return {
            "redis": "ok" if await self._healthy(self.cache) else "error",
            "postgres": "ok" if await self._healthy(self.store) else "error",
        }

    async def _healthy(self, component) -> bool:
        check = getattr(component, "health_check", None)
        if check is None:
            return True
        try:
            return await check()
        except Exception:
            return False

    async def start(self):
        """Start membership service components."""
        for component in self._owned:
            await component.start()
        self.logger.info("Membership service started")

    async def stop(self):
        """Stop membership service components."""
        for component in reversed(self._owned):
            await component.stop()
        self.logger.info("Membership service stopped")


def create_app():
    """Create membership service application."""
    service = MembershipService()
    return service.app


if __name__ == "__main__":
    service = MembershipService()
    service.run()
