"""
Unit tests for the UserService.
"""

import pytest
from datetime import datetime, timedelta, timezone

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import (
    NotFoundError, InvalidArgumentError, ConflictError, AuthenticationError,
    DependencyError
)
from service_membership.app.membership.models import (
    UserRole, UserView, RegisterRequest, ProfileUpdateRequest,
    AdminUserCreateRequest, AdminUserUpdateRequest
)
from service_membership.app.security.passwords import PasswordHasher
from service_membership.app.security.tokens import TokenIssuer
from service_membership.app.users.service import UserService


VIEW_TTL = 3600


class TestUserService:
    """Test cases for UserService."""

    @pytest.fixture
    def hasher(self):
        return PasswordHasher(rounds=4)

    @pytest.fixture
    def tokens(self):
        return TokenIssuer("test-secret", expires_seconds=3600)

    @pytest.fixture
    def service(self, store, cache, hasher, tokens):
        return UserService(store, cache, hasher, tokens, cache, view_ttl_seconds=VIEW_TTL)

    @pytest.fixture
    def member(self, store, hasher, now):
        return store.seed(
            username="kobe",
            password=hasher.hash("mamba24"),
            email="kobe@example.com",
            phone="555-0824",
            user_role=UserRole.VIP,
            membership_start_time=now - timedelta(days=10),
            membership_end_time=now + timedelta(days=20)
        )

    @pytest.mark.asyncio
    async def test_register_creates_normal_user(self, service, store, tokens):
        response = await service.register(RegisterRequest(
            username="gigi", password="secret", email="gigi@example.com", phone="555-0002"
        ))

        assert response.user.username == "gigi"
        assert response.user.user_role == UserRole.NORMAL
        stored = store.users[response.user.id]
        assert stored.password != "secret"
        assert tokens.parse(response.token)["sub"] == str(response.user.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field_name,value", [
        ("username", "kobe"),
        ("email", "kobe@example.com"),
        ("phone", "555-0824"),
    ])
    async def test_register_rejects_taken_identifiers(self, service, member, field_name, value):
        fields = {"username": "new", "password": "pw", "email": "new@example.com", "phone": "555-9999"}
        fields[field_name] = value

        with pytest.raises(ConflictError):
            await service.register(RegisterRequest(**fields))

    @pytest.mark.asyncio
    async def test_login_populates_cache(self, service, member, cache, tokens):
        response = await service.login("kobe", "mamba24")

        assert tokens.parse(response.token)["sub"] == str(member.id)
        assert await cache.get(member.id) == response.user

    @pytest.mark.asyncio
    async def test_login_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            await service.login("nobody", "pw")

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, service, member, cache):
        with pytest.raises(AuthenticationError):
            await service.login("kobe", "wrong")

        assert await cache.get(member.id) is None

    @pytest.mark.asyncio
    async def test_logout_revokes_token(self, service, member):
        response = await service.login("kobe", "mamba24")
        assert (await service.get_profile(response.token)).id == member.id

        await service.logout(response.token)

        with pytest.raises(AuthenticationError, match="revoked"):
            await service.get_profile(response.token)

    @pytest.mark.asyncio
    async def test_get_profile_reads_store(self, service, member, cache, tokens, store):
        token = tokens.issue(store.users[member.id])
        await cache.put(member.id, UserView(id=member.id, username="stale"), VIEW_TTL)

        view = await service.get_profile(token)

        assert view.username == "kobe"

    @pytest.mark.asyncio
    async def test_find_by_id_reads_through(self, service, member, cache, events):
        first = await service.find_by_id(member.id)

        assert ("cache.put", member.id) in events
        assert await cache.get(member.id) == first

        events.clear()
        second = await service.find_by_id(member.id)

        assert second == first
        assert events == []

    @pytest.mark.asyncio
    async def test_find_by_id_repopulates_after_ttl(self, service, member, cache, clock, events):
        await service.find_by_id(member.id)
        clock.advance(seconds=VIEW_TTL)
        events.clear()

        await service.find_by_id(member.id)

        assert events == [("cache.put", member.id)]

    @pytest.mark.asyncio
    async def test_find_by_id_with_failing_cache_uses_store(self, service, member, cache):
        cache.fail = True

        view = await service.find_by_id(member.id)

        assert view.username == "kobe"

    @pytest.mark.asyncio
    async def test_find_by_id_unknown(self, service):
        with pytest.raises(NotFoundError):
            await service.find_by_id(12345)

    @pytest.mark.asyncio
    async def test_update_profile_keeps_membership(self, service, member, store, events):
        await service.find_by_id(member.id)
        events.clear()

        view = await service.update_profile(member.id, ProfileUpdateRequest(bio="Mamba mentality", gender="M"))

        assert view.bio == "Mamba mentality"
        assert view.user_role == UserRole.VIP
        assert view.membership_end_time == member.membership_end_time
        assert events == [("store.update", member.id), ("cache.invalidate", member.id)]
        _, fields = store.updates[-1]
        assert set(fields) == {"bio", "gender"}

    @pytest.mark.asyncio
    async def test_update_profile_rejects_taken_email(self, service, member, store):
        other = store.seed(username="gigi", email="gigi@example.com")

        with pytest.raises(ConflictError):
            await service.update_profile(other.id, ProfileUpdateRequest(email="kobe@example.com"))

    @pytest.mark.asyncio
    async def test_update_profile_allows_own_values(self, service, member, store):
        view = await service.update_profile(member.id, ProfileUpdateRequest(email="kobe@example.com", bio="24"))

        assert view.email == "kobe@example.com"
        assert store.updates[-1][1] == {"bio": "24"}

    @pytest.mark.asyncio
    async def test_update_profile_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            await service.update_profile(5, ProfileUpdateRequest(bio="x"))

    @pytest.mark.asyncio
    async def test_update_avatar_trims(self, service, member):
        assert await service.update_avatar(member.id, "  https://cdn/a.png ") == "https://cdn/a.png"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", [None, "", "   "])
    async def test_update_avatar_rejects_blank(self, service, member, store, url):
        with pytest.raises(InvalidArgumentError):
            await service.update_avatar(member.id, url)

        assert store.updates == []

    @pytest.mark.asyncio
    async def test_change_password(self, service, member, hasher, store):
        await service.change_password(member.id, "mamba24", "mamba8")

        assert hasher.verify("mamba8", store.users[member.id].password)

    @pytest.mark.asyncio
    async def test_change_password_wrong_current(self, service, member, store):
        with pytest.raises(AuthenticationError):
            await service.change_password(member.id, "nope", "mamba8")

        assert store.updates == []

    @pytest.mark.asyncio
    async def test_add_user_with_membership(self, service, now):
        view = await service.add_user(AdminUserCreateRequest(
            username="admin-made",
            password="pw",
            user_role=UserRole.SVIP,
            membership_end_time=now + timedelta(days=30)
        ))

        assert view.user_role == UserRole.SVIP
        assert view.membership_start_time is None

    @pytest.mark.asyncio
    async def test_add_paid_user_without_end_is_rejected(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.add_user(AdminUserCreateRequest(username="x", password="pw", user_role=UserRole.VIP))

    @pytest.mark.asyncio
    async def test_update_user_can_change_role(self, service, member, cache, now):
        await service.find_by_id(member.id)
        end = now + timedelta(days=90)

        view = await service.update_user(member.id, AdminUserUpdateRequest(user_role=UserRole.SVIP, membership_end_time=end))

        assert view.user_role == UserRole.SVIP
        assert view.membership_end_time == end
        assert await cache.get(member.id) is None

    @pytest.mark.asyncio
    async def test_update_user_reads_offset_less_end_as_utc(self, service, member):
        request = AdminUserUpdateRequest.model_validate({"user_role": "SVIP", "membership_end_time": "2030-01-01T00:00:00"})

        view = await service.update_user(member.id, request)

        assert view.membership_end_time == datetime(2030, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_add_user_converts_offset_end_to_utc(self, service):
        request = AdminUserCreateRequest.model_validate({
            "username": "offset", "password": "pw", "user_role": "VIP",
            "membership_end_time": "2030-01-01T08:00:00+08:00"
        })

        view = await service.add_user(request)

        assert view.membership_end_time == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert view.membership_end_time.utcoffset() == timedelta(0)

    @pytest.mark.asyncio
    async def test_delete_user(self, service, member, store, cache, events):
        await service.find_by_id(member.id)

        await service.delete_user(member.id)

        assert member.id not in store.users
        assert await cache.get(member.id) is None
        assert events[-2:] == [("store.delete", member.id), ("cache.invalidate", member.id)]

    @pytest.mark.asyncio
    async def test_delete_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            await service.delete_user(77)

    @pytest.mark.asyncio
    async def test_stats(self, service, member, store, now):
        store.seed(username="a")
        store.seed(username="b", user_role=UserRole.SVIP, membership_end_time=now)

        stats = await service.stats(created_since=now - timedelta(days=1))

        assert stats.total == 3
        assert stats.by_role == {"NORMAL": 1, "VIP": 1, "SVIP": 1}
        assert stats.created_since == 3

    @pytest.mark.asyncio
    async def test_stats_with_offset_less_cutoff(self, service, member):
        stats = await service.stats(created_since=datetime(2024, 1, 15, 10, 0))

        assert stats.created_since == 1

    @pytest.mark.asyncio
    async def test_authenticate_fails_closed_without_revocation_list(self, service, member, cache, tokens):
        token = tokens.issue(member)
        cache.fail = True

        with pytest.raises(DependencyError):
            await service.authenticate(token)
