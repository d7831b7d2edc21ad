"""
GroupUp Backend - Group Service Tests
=====================================

Runs GroupService against a real in-memory SQLite database so queries,
constraints and ordering are exercised, with the spatial store mocked.

Test Strategy:
    ✅ Create: defaults, anonymous creators, building association, store outage
    ✅ Nearby: filtering (inactive, expired, far), ordering, canJoin, isMember
    ✅ Join: radius check, expiry, idempotent membership, share codes
    ✅ Extend / archive: creator-only, extension limit
"""

import math
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from groupup.exceptions import (
    GroupExpiredError,
    NotFoundError,
    OutOfRangeError,
    PermissionDeniedError,
    SpatialStoreUnavailableError,
    ValidationError,
)
from groupup.models.actor import ANONYMOUS
from groupup.models.building import Building
from groupup.models.common import as_utc, utcnow
from groupup.models.group import GroupMember
from groupup.schemas.group import CreateGroupRequest
from groupup.services.geo import EARTH_RADIUS_M, share_code
from groupup.services.group_service import group_service
from groupup.services.spatial_store import BuildingMatch

NASHVILLE = (36.1627, -86.7816)
METERS_PER_DEGREE_LAT = EARTH_RADIUS_M * math.pi / 180


def north_of(meters: float):
    return NASHVILLE[0] + meters / METERS_PER_DEGREE_LAT, NASHVILLE[1]


def building_match(is_inside: bool) -> BuildingMatch:
    return BuildingMatch(
        id="bldg_42",
        name="Public Library",
        address="615 Church St",
        geometry={
            "type": "Polygon",
            "coordinates": [[[-86.782, 36.162], [-86.782, 36.163], [-86.781, 36.163], [-86.782, 36.162]]],
        },
        is_inside=is_inside,
        distance=0.0 if is_inside else 12.3,
        centroid=(-86.7816, 36.1627),
    )


async def member_count(db, group_id: str) -> int:
    result = await db.execute(
        select(func.count(GroupMember.id)).where(GroupMember.group_id == group_id)
    )
    return result.scalar_one()


class TestCreateGroup:

    @pytest.mark.asyncio
    async def test_anonymous_create_has_no_creator_or_members(self, db_session, mock_store):
        request = CreateGroupRequest(latitude=NASHVILLE[0], longitude=NASHVILLE[1])

        group = await group_service.create_group(db_session, mock_store, ANONYMOUS, request)

        assert group.creator_id is None
        assert group.name == "Quick Group"
        assert group.radius == 100
        assert group.is_active is True
        assert group.building_id is None
        assert await member_count(db_session, group.id) == 0

    @pytest.mark.asyncio
    async def test_expires_four_hours_after_creation(self, db_session, mock_store):
        request = CreateGroupRequest(latitude=NASHVILLE[0], longitude=NASHVILLE[1])

        group = await group_service.create_group(db_session, mock_store, ANONYMOUS, request)

        lifetime = as_utc(group.expires_at) - as_utc(group.created_at)
        assert lifetime == timedelta(hours=4)

    @pytest.mark.asyncio
    async def test_user_create_adds_creator_membership(self, db_session, mock_store, user_factory):
        user = await user_factory()
        request = CreateGroupRequest(
            name="Lunch", latitude=NASHVILLE[0], longitude=NASHVILLE[1], radius=50
        )

        group = await group_service.create_group(db_session, mock_store, user, request)

        assert group.creator_id == user.user_id
        assert group.name == "Lunch"
        assert group.radius == 50
        result = await db_session.execute(
            select(GroupMember).where(GroupMember.group_id == group.id)
        )
        members = result.scalars().all()
        assert [(m.user_id, m.role) for m in members] == [(user.user_id, "creator")]

    @pytest.mark.asyncio
    async def test_is_anonymous_flag_drops_creator(self, db_session, mock_store, user_factory):
        user = await user_factory()
        request = CreateGroupRequest(
            latitude=NASHVILLE[0], longitude=NASHVILLE[1], is_anonymous=True
        )

        group = await group_service.create_group(db_session, mock_store, user, request)

        assert group.creator_id is None
        assert await member_count(db_session, group.id) == 0

    @pytest.mark.asyncio
    async def test_inside_building_associates_and_mirrors(self, db_session, mock_store):
        mock_store.find_containing.return_value = building_match(is_inside=True)
        request = CreateGroupRequest(latitude=NASHVILLE[0], longitude=NASHVILLE[1])

        group = await group_service.create_group(db_session, mock_store, ANONYMOUS, request)

        assert group.building_id == "bldg_42"
        building = await db_session.get(Building, "bldg_42")
        assert building is not None
        assert building.name == "Public Library"
        mock_store.find_nearest_within.assert_not_called()

    @pytest.mark.asyncio
    async def test_nearby_building_is_not_associated(self, db_session, mock_store):
        mock_store.find_nearest_within.return_value = building_match(is_inside=False)
        request = CreateGroupRequest(latitude=NASHVILLE[0], longitude=NASHVILLE[1])

        group = await group_service.create_group(db_session, mock_store, ANONYMOUS, request)

        assert group.building_id is None
        assert await db_session.get(Building, "bldg_42") is None

    @pytest.mark.asyncio
    async def test_store_outage_still_creates_group(self, db_session, mock_store):
        mock_store.find_containing.side_effect = SpatialStoreUnavailableError(
            context={"error": "spatial extension missing"}
        )
        request = CreateGroupRequest(latitude=NASHVILLE[0], longitude=NASHVILLE[1])

        group = await group_service.create_group(db_session, mock_store, ANONYMOUS, request)

        assert group.building_id is None
        assert group.id


class TestFindNearby:

    @pytest.mark.asyncio
    async def test_filters_inactive_expired_and_far_groups(self, db_session, group_factory):
        near = await group_factory(*north_of(50), name="near")
        await group_factory(*north_of(60), name="archived", is_active=False)
        await group_factory(*north_of(70), name="expired", expires_at=utcnow() - timedelta(minutes=1))
        await group_factory(*north_of(600), name="far")

        results = await group_service.find_nearby(db_session, ANONYMOUS, *NASHVILLE)

        assert [g.id for g in results] == [near.id]
        assert results[0].distance == 50

    @pytest.mark.asyncio
    async def test_sorted_by_distance(self, db_session, group_factory):
        far = await group_factory(*north_of(300))
        close = await group_factory(*north_of(10))
        middle = await group_factory(*north_of(120))

        results = await group_service.find_nearby(db_session, ANONYMOUS, *NASHVILLE)

        assert [g.id for g in results] == [close.id, middle.id, far.id]
        assert [g.distance for g in results] == [10, 120, 300]

    @pytest.mark.asyncio
    async def test_max_distance_override(self, db_session, group_factory):
        await group_factory(*north_of(300))

        assert await group_service.find_nearby(db_session, ANONYMOUS, *NASHVILLE, max_distance=200) == []

    @pytest.mark.asyncio
    async def test_can_join_depends_on_radius(self, db_session, group_factory):
        wide = await group_factory(*north_of(80), radius=100)
        narrow = await group_factory(*north_of(80), radius=50)

        results = {g.id: g for g in await group_service.find_nearby(db_session, ANONYMOUS, *NASHVILLE)}

        assert results[wide.id].can_join is True
        assert results[narrow.id].can_join is False

    @pytest.mark.asyncio
    async def test_just_inside_radius_can_join(self, db_session, group_factory):
        group = await group_factory(*north_of(99.9), radius=100)

        results = await group_service.find_nearby(db_session, ANONYMOUS, *NASHVILLE)

        assert results[0].id == group.id
        assert results[0].distance == 100
        assert results[0].can_join is True

    @pytest.mark.asyncio
    async def test_can_join_uses_unrounded_distance(self, db_session, group_factory):
        # 100.4 m is reported as 100 but lies outside a 100 m radius
        group = await group_factory(*north_of(100.4), radius=100)

        results = await group_service.find_nearby(db_session, ANONYMOUS, *NASHVILLE)

        assert results[0].id == group.id
        assert results[0].distance == 100
        assert results[0].can_join is False

    @pytest.mark.asyncio
    async def test_max_distance_excludes_group_with_wide_radius(self, db_session, group_factory):
        await group_factory(*north_of(600), radius=1000)

        assert await group_service.find_nearby(db_session, ANONYMOUS, *NASHVILLE, max_distance=500) == []
        [wide] = await group_service.find_nearby(db_session, ANONYMOUS, *NASHVILLE, max_distance=700)
        assert wide.can_join is True

    @pytest.mark.asyncio
    async def test_is_member_and_counts(self, db_session, group_factory, user_factory):
        user = await user_factory()
        stranger = await user_factory()
        group = await group_factory(creator_id=user.user_id)
        db_session.add(GroupMember(group_id=group.id, user_id=user.user_id, role="creator"))
        await db_session.flush()

        as_member = await group_service.find_nearby(db_session, user, *NASHVILLE)
        as_stranger = await group_service.find_nearby(db_session, stranger, *NASHVILLE)
        as_anonymous = await group_service.find_nearby(db_session, ANONYMOUS, *NASHVILLE)

        assert as_member[0].is_member is True
        assert as_member[0].member_count == 1
        assert as_member[0].file_count == 0
        assert as_member[0].members[0].user.id == user.user_id
        assert as_stranger[0].is_member is False
        assert as_anonymous[0].is_member is False


class TestListForUser:

    @pytest.mark.asyncio
    async def test_newest_membership_first(self, db_session, group_factory, user_factory):
        user = await user_factory()
        older = await group_factory(name="older")
        newer = await group_factory(name="newer")
        now = utcnow()
        db_session.add_all([
            GroupMember(group_id=older.id, user_id=user.user_id, role="member",
                        joined_at=now - timedelta(hours=2)),
            GroupMember(group_id=newer.id, user_id=user.user_id, role="creator",
                        joined_at=now - timedelta(minutes=5)),
        ])
        await db_session.flush()

        results = await group_service.list_for_user(db_session, user)

        assert [(g.name, g.role) for g in results] == [("newer", "creator"), ("older", "member")]
        assert results[0].member_count == 1


class TestGetGroup:

    @pytest.mark.asyncio
    async def test_detail_includes_code_and_expiry(self, db_session, group_factory):
        group = await group_factory()

        detail = await group_service.get_group(db_session, group.id)

        assert detail.code == share_code(group.id)
        assert detail.is_expired is False
        assert detail.members == []
        assert detail.files == []

    @pytest.mark.asyncio
    async def test_unknown_group(self, db_session):
        with pytest.raises(NotFoundError):
            await group_service.get_group(db_session, "does-not-exist")


class TestJoinGroup:

    @pytest.mark.asyncio
    async def test_join_within_radius(self, db_session, group_factory, user_factory):
        user = await user_factory()
        group = await group_factory()

        response = await group_service.join_group(db_session, user, group.id, *north_of(40))

        assert response.success is True
        assert response.role == "member"
        result = await db_session.execute(
            select(GroupMember).where(GroupMember.group_id == group.id)
        )
        member = result.scalar_one()
        assert member.user_id == user.user_id
        assert member.joined_latitude == pytest.approx(north_of(40)[0])

    @pytest.mark.asyncio
    async def test_join_is_idempotent(self, db_session, group_factory, user_factory):
        user = await user_factory()
        group = await group_factory()

        await group_service.join_group(db_session, user, group.id, *NASHVILLE)
        await group_service.join_group(db_session, user, group.id, *NASHVILLE)

        assert await member_count(db_session, group.id) == 1

    @pytest.mark.asyncio
    async def test_anonymous_join_records_nothing(self, db_session, group_factory):
        group = await group_factory()

        response = await group_service.join_group(db_session, ANONYMOUS, group.id, *NASHVILLE)

        assert response.success is True
        assert response.role is None
        assert await member_count(db_session, group.id) == 0

    @pytest.mark.asyncio
    async def test_out_of_range_reports_distance(self, db_session, group_factory, user_factory):
        user = await user_factory()
        group = await group_factory(radius=100)

        with pytest.raises(OutOfRangeError) as exc_info:
            await group_service.join_group(db_session, user, group.id, *north_of(250))

        assert exc_info.value.context["distance"] == 250
        assert "100m" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_join_refused_just_past_radius(self, db_session, group_factory, user_factory):
        user = await user_factory()
        group = await group_factory(radius=100)

        with pytest.raises(OutOfRangeError) as exc_info:
            await group_service.join_group(db_session, user, group.id, *north_of(100.4))

        assert exc_info.value.context["distance"] == 100
        assert await member_count(db_session, group.id) == 0

    @pytest.mark.asyncio
    async def test_expired_group(self, db_session, group_factory, user_factory):
        user = await user_factory()
        group = await group_factory(expires_at=utcnow() - timedelta(seconds=1))

        with pytest.raises(GroupExpiredError):
            await group_service.join_group(db_session, user, group.id, *NASHVILLE)

    @pytest.mark.asyncio
    async def test_archived_group_not_found(self, db_session, group_factory, user_factory):
        user = await user_factory()
        group = await group_factory(is_active=False)

        with pytest.raises(NotFoundError):
            await group_service.join_group(db_session, user, group.id, *NASHVILLE)

    @pytest.mark.asyncio
    async def test_join_by_code(self, db_session, group_factory, user_factory):
        user = await user_factory()
        group = await group_factory()

        detail = await group_service.join_by_code(
            db_session, user, share_code(group.id).lower(), *NASHVILLE
        )

        assert detail.id == group.id
        assert [m.user_id for m in detail.members] == [user.user_id]

    @pytest.mark.asyncio
    async def test_join_by_unknown_code(self, db_session, user_factory):
        user = await user_factory()

        with pytest.raises(NotFoundError):
            await group_service.join_by_code(db_session, user, "ZZZZZZ", *NASHVILLE)


class TestCreatorActions:

    async def _owned_group(self, db_session, group_factory, user, **overrides):
        group = await group_factory(creator_id=user.user_id, **overrides)
        db_session.add(GroupMember(group_id=group.id, user_id=user.user_id, role="creator"))
        await db_session.flush()
        return group

    @pytest.mark.asyncio
    async def test_extend_adds_four_hours(self, db_session, group_factory, user_factory):
        user = await user_factory()
        group = await self._owned_group(db_session, group_factory, user)
        before = as_utc(group.expires_at)

        extended = await group_service.extend_group(db_session, user, group.id)

        assert extended.extended_count == 1
        assert as_utc(extended.expires_at) - before == timedelta(hours=4)

    @pytest.mark.asyncio
    async def test_extend_limit(self, db_session, group_factory, user_factory):
        user = await user_factory()
        group = await self._owned_group(db_session, group_factory, user, extended_count=3)

        with pytest.raises(ValidationError, match="Maximum extensions"):
            await group_service.extend_group(db_session, user, group.id)

    @pytest.mark.asyncio
    async def test_extend_by_non_creator(self, db_session, group_factory, user_factory):
        owner = await user_factory()
        other = await user_factory()
        group = await self._owned_group(db_session, group_factory, owner)

        with pytest.raises(PermissionDeniedError):
            await group_service.extend_group(db_session, other, group.id)
        with pytest.raises(PermissionDeniedError):
            await group_service.extend_group(db_session, ANONYMOUS, group.id)

    @pytest.mark.asyncio
    async def test_archive_hides_group(self, db_session, group_factory, user_factory):
        user = await user_factory()
        group = await self._owned_group(db_session, group_factory, user)

        await group_service.archive_group(db_session, user, group.id)

        assert group.is_active is False
        assert group.is_archived is True
        assert await group_service.find_nearby(db_session, ANONYMOUS, *NASHVILLE) == []

    @pytest.mark.asyncio
    async def test_archive_by_non_creator(self, db_session, group_factory, user_factory):
        owner = await user_factory()
        other = await user_factory()
        group = await self._owned_group(db_session, group_factory, owner)

        with pytest.raises(PermissionDeniedError):
            await group_service.archive_group(db_session, other, group.id)
