"""
User and membership data models for the Membership service.
"""

from typing import Dict, Optional
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from shared.errors import InvalidArgumentError
from .clock import as_utc


class UserRole(str, Enum):
    """User tiers."""
    NORMAL = "NORMAL"
    VIP = "VIP"
    SVIP = "SVIP"


PAID_ROLES = frozenset({UserRole.VIP, UserRole.SVIP})


class MembershipEndRequest(BaseModel):
    """Base for requests that carry a membership end.

    Offset-less timestamps are read as UTC so they compare with stored values.
    """

    @field_validator("membership_end_time", check_fields=False)
    @classmethod
    def end_as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


@dataclass
class User:
    """Stored user record."""
    id: int
    username: str
    password: str
    email: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    gender: Optional[str] = None
    bio: Optional[str] = None
    user_role: UserRole = UserRole.NORMAL
    membership_start_time: Optional[datetime] = None
    membership_end_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_active_member(self, now: datetime) -> bool:
        """Whether the user holds an unexpired paid tier at ``now``.

        ``membership_end_time == now`` is not active.
        """
        return (
            self.user_role in PAID_ROLES
            and self.membership_end_time is not None
            and self.membership_end_time > now
        )


class UserView(BaseModel):
    """Read projection of a user, stored in the view cache.

    Carries no derived "active" flag; activity is recomputed from
    ``membership_end_time`` whenever a decision depends on it.
    """
    id: int
    username: str
    email: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    gender: Optional[str] = None
    bio: Optional[str] = None
    user_role: UserRole = UserRole.NORMAL
    membership_start_time: Optional[datetime] = None
    membership_end_time: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserView":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            phone=user.phone,
            avatar=user.avatar,
            gender=user.gender,
            bio=user.bio,
            user_role=user.user_role,
            membership_start_time=user.membership_start_time,
            membership_end_time=user.membership_end_time,
            created_at=user.created_at
        )


class MembershipResult(BaseModel):
    """Outcome of a grant or renewal."""
    tier: UserRole
    start: Optional[datetime] = None
    end: datetime


class GrantMembershipRequest(BaseModel):
    """Request model for granting or renewing a membership."""
    tier: UserRole = Field(..., description="Requested paid tier (VIP or SVIP)")
    months: int = Field(..., description="Duration in calendar months")


class SetRoleRequest(MembershipEndRequest):
    """Request model for the administrative role override."""
    role: UserRole = Field(..., description="Tier to set verbatim")
    membership_end_time: Optional[datetime] = Field(None, description="Membership end to set verbatim")


class ActiveMembershipResponse(BaseModel):
    """Response model for membership status checks."""
    user_id: int
    active: bool
    checked_at: datetime


class RegisterRequest(BaseModel):
    """Request model for registration."""
    username: str = Field(..., min_length=1, description="Login name")
    password: str = Field(..., min_length=1, description="Plain-text password")
    email: Optional[str] = Field(None, description="Email address")
    phone: Optional[str] = Field(None, description="Phone number")


class LoginRequest(BaseModel):
    """Request model for login."""
    username: str
    password: str


class AuthResponse(BaseModel):
    """Token plus the user it was issued for."""
    token: str
    user: UserView


class ProfileUpdateRequest(BaseModel):
    """Self-service profile changes. Membership fields are not accepted."""
    username: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    gender: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None


class AvatarUpdateRequest(BaseModel):
    """Request model for avatar updates."""
    avatar_url: str


class PasswordChangeRequest(BaseModel):
    """Request model for password changes."""
    current_password: str
    new_password: str


class AdminUserCreateRequest(MembershipEndRequest):
    """Request model for administrative user creation."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    user_role: UserRole = UserRole.NORMAL
    membership_end_time: Optional[datetime] = None


class AdminUserUpdateRequest(MembershipEndRequest):
    """Request model for administrative user updates."""
    username: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    user_role: Optional[UserRole] = None
    membership_end_time: Optional[datetime] = None


class UserStatsResponse(BaseModel):
    """Response model for user statistics."""
    total: int
    by_role: Dict[str, int]
    created_since: Optional[int] = None


def check_entitlement_invariants(
    role: UserRole,
    start: Optional[datetime],
    end: Optional[datetime]
) -> None:
    """Reject entitlement field combinations the store must never hold."""
    if role in PAID_ROLES and end is None:
        raise InvalidArgumentError(
            "Paid tiers require a membership end",
            details={"role": role.value}
        )
    if start is not None and end is not None and start > end:
        raise InvalidArgumentError(
            "Membership start must not be after its end",
            details={"start": start.isoformat(), "end": end.isoformat()}
        )
