"""
User account service.
"""

from datetime import datetime
from typing import Dict, Any, Optional

from shared.logging import get_logger
from shared.errors import (
    NotFoundError, InvalidArgumentError, ConflictError, AuthenticationError
)
from ..cache.base import ViewCache
from ..persistence.base import UserStore
from ..security.passwords import PasswordHasher
from ..security.tokens import TokenIssuer
from ..membership.clock import as_utc
from ..membership.models import (
    User, UserRole, UserView, AuthResponse, RegisterRequest,
    ProfileUpdateRequest, AdminUserCreateRequest, AdminUserUpdateRequest,
    UserStatsResponse, check_entitlement_invariants
)


# Columns that must stay unique across users, with their store lookups
UNIQUE_FIELDS = {
    "username": "find_by_username",
    "email": "find_by_email",
    "phone": "find_by_phone",
}


class UserService:
    """Registration, authentication and profile mutation.

    Reads go through the view cache; every write commits to the store
    before the cached view is deleted.
    """

    def __init__(
        self,
        store: UserStore,
        cache: ViewCache,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
        revocations,
        view_ttl_seconds: int
    ):
        self.store = store
        self.cache = cache
        self.hasher = hasher
        self.tokens = tokens
        self.revocations = revocations
        self.view_ttl_seconds = view_ttl_seconds
        self.logger = get_logger("membership.users")

    async def register(self, request: RegisterRequest) -> AuthResponse:
        """Create a NORMAL user and issue a token for it."""
        for field_name in UNIQUE_FIELDS:
            await self._ensure_unique(field_name, getattr(request, field_name))

        user = await self.store.create({
            "username": request.username,
            "password": self.hasher.hash(request.password),
            "email": request.email,
            "phone": request.phone,
            "user_role": UserRole.NORMAL,
        })
        self.logger.info("User registered", user_id=user.id, username=user.username)

        return AuthResponse(token=self.tokens.issue(user), user=UserView.from_user(user))

    async def login(self, username: str, password: str) -> AuthResponse:
        """Verify credentials, issue a token and warm the view cache."""
        user = await self.store.find_by_username(username)
        if user is None:
            raise NotFoundError("User not found", details={"username": username})

        if not self.hasher.verify(password, user.password):
            self.logger.info("Login rejected", user_id=user.id)
            raise AuthenticationError("Incorrect password")

        view = UserView.from_user(user)
        await self.cache.put(user.id, view, self.view_ttl_seconds)

        self.logger.info("User logged in", user_id=user.id)
        return AuthResponse(token=self.tokens.issue(user), user=view)

    async def logout(self, token: str):
        """Revoke ``token`` for the rest of its lifetime."""
        claims = self.tokens.parse(token)
        await self.revocations.revoke_token(claims["jti"], self.tokens.remaining_seconds(claims))
        self.logger.info("User logged out", user_id=claims["sub"])

    async def authenticate(self, token: str) -> Dict[str, Any]:
        """Parse ``token`` and reject it if it was revoked."""
        claims = self.tokens.parse(token)
        if await self.revocations.is_token_revoked(claims["jti"]):
            raise AuthenticationError("Token revoked")
        return claims

    async def get_profile(self, token: str) -> UserView:
        """Load the token owner's current record from the store."""
        claims = await self.authenticate(token)
        user = await self._load(int(claims["sub"]))
        return UserView.from_user(user)

    async def find_by_id(self, user_id: int) -> UserView:
        """Read-through lookup of a user's view."""
        view = await self.cache.get(user_id)
        if view is not None:
            return view

        user = await self._load(user_id)
        view = UserView.from_user(user)
        await self.cache.put(user_id, view, self.view_ttl_seconds)
        return view

    async def update_profile(self, user_id: int, request: ProfileUpdateRequest) -> UserView:
        """Apply self-service profile changes; membership fields are untouched."""
        existing = await self._load(user_id)
        changes = request.model_dump(exclude_none=True)

        for field_name in UNIQUE_FIELDS:
            if field_name in changes and changes[field_name] != getattr(existing, field_name):
                await self._ensure_unique(field_name, changes[field_name], exclude_id=user_id)
            else:
                changes.pop(field_name, None)

        user = await self._write(user_id, changes) if changes else existing
        return UserView.from_user(user)

    async def update_avatar(self, user_id: int, avatar_url: Optional[str]) -> str:
        if avatar_url is None or not avatar_url.strip():
            raise InvalidArgumentError("Avatar URL must not be blank")

        await self._load(user_id)
        user = await self._write(user_id, {"avatar": avatar_url.strip()})
        return user.avatar

    async def change_password(self, user_id: int, current_password: str, new_password: str):
        if not new_password:
            raise InvalidArgumentError("New password must not be empty")

        user = await self._load(user_id)
        if not self.hasher.verify(current_password, user.password):
            raise AuthenticationError("Current password is incorrect")

        await self._write(user_id, {"password": self.hasher.hash(new_password)})
        self.logger.info("Password changed", user_id=user_id)

    async def add_user(self, request: AdminUserCreateRequest) -> UserView:
        """Administrative creation with an explicit role and membership end."""
        for field_name in UNIQUE_FIELDS:
            await self._ensure_unique(field_name, getattr(request, field_name))
        check_entitlement_invariants(request.user_role, None, request.membership_end_time)

        user = await self.store.create({
            "username": request.username,
            "password": self.hasher.hash(request.password),
            "email": request.email,
            "phone": request.phone,
            "avatar": request.avatar,
            "user_role": request.user_role,
            "membership_end_time": request.membership_end_time,
        })
        self.logger.info("User added", user_id=user.id, role=user.user_role.value)
        return UserView.from_user(user)

    async def update_user(self, user_id: int, request: AdminUserUpdateRequest) -> UserView:
        """Administrative update; may change role and membership end."""
        existing = await self._load(user_id)
        changes = request.model_dump(exclude_none=True)

        for field_name in UNIQUE_FIELDS:
            if field_name in changes and changes[field_name] != getattr(existing, field_name):
                await self._ensure_unique(field_name, changes[field_name], exclude_id=user_id)

        if "user_role" in changes or "membership_end_time" in changes:
            check_entitlement_invariants(
                changes.get("user_role", existing.user_role),
                existing.membership_start_time,
                changes.get("membership_end_time", existing.membership_end_time)
            )

        user = await self._write(user_id, changes) if changes else existing
        return UserView.from_user(user)

    async def delete_user(self, user_id: int):
        if not await self.store.delete(user_id):
            raise NotFoundError("User not found", details={"user_id": user_id})
        await self.cache.invalidate(user_id)

    async def stats(self, created_since: Optional[datetime] = None) -> UserStatsResponse:
        by_role = {}
        for role in UserRole:
            by_role[role.value] = await self.store.count_by_role(role)

        created = None
        if created_since is not None:
            created = await self.store.count_created_after(as_utc(created_since))

        return UserStatsResponse(total=await self.store.count(), by_role=by_role, created_since=created)

    async def _write(self, user_id: int, changes: Dict[str, Any]) -> User:
        user = await self.store.update(user_id, changes)
        await self.cache.invalidate(user_id)
        self.logger.info("User updated", user_id=user_id, fields=sorted(changes))
        return user

    async def _load(self, user_id: int) -> User:
        user = await self.store.get(user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return user

    async def _ensure_unique(self, field_name: str, value: Optional[str], exclude_id: Optional[int] = None):
        if value is None:
            return
        holder = await getattr(self.store, UNIQUE_FIELDS[field_name])(value)
        if holder is not None and holder.id != exclude_id:
            raise ConflictError(f"{field_name} already in use", details={"field": field_name})
