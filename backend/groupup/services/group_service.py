"""
GroupUp Backend - Group Service (Business Logic Orchestrator)
=============================================================

What:  Creation, discovery, membership and lifetime management of groups.
How:   Composes BuildingService (for the spatial lookup on creation) with
       SQLAlchemy queries. Every method receives the request's session and
       only flushes; get_db_session commits once after the route returns.

Create flow (POST /api/groups):
    ┌─────────────┐    ┌──────────────────┐    ┌──────────┐    ┌────────────┐
    │  Nearest    │───▶│ Building mirror  │───▶│  Group   │───▶│  Creator   │
    │  building   │    │ (only if inside) │    │  row     │    │  member    │
    └─────────────┘    └──────────────────┘    └──────────┘    └────────────┘
         DuckDB                 └──────────── one transaction ────────┘

Distances:
    Haversine in meters. The reported distance and the maxDistance filter
    use the value rounded half-up; canJoin and the join check compare the
    unrounded distance with the radius, so both agree on who may join.
"""

import logging
import uuid
from datetime import timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from groupup.config import settings
from groupup.database import commit_session
from groupup.exceptions import (
    DatabaseError,
    GroupExpiredError,
    NotFoundError,
    OutOfRangeError,
    PermissionDeniedError,
    ValidationError,
)
from groupup.models.actor import ANONYMOUS, Actor, UserActor
from groupup.models.common import as_utc, utcnow
from groupup.models.group import Group, GroupFile, GroupMember
from groupup.schemas.group import (
    CreateGroupRequest,
    GroupDetailResponse,
    GroupFileResponse,
    GroupResponse,
    JoinGroupResponse,
    MemberResponse,
    MyGroupResponse,
    NearbyGroupResponse,
    OrganizationSummary,
)
from groupup.services.building_service import building_service
from groupup.services.geo import haversine_distance, round_meters, share_code
from groupup.services.spatial_store import SpatialStore

logger = logging.getLogger(__name__)

ROLE_CREATOR = "creator"
ROLE_MEMBER = "member"


def is_expired(group: Group) -> bool:
    return as_utc(group.expires_at) <= utcnow()


def _group_fields(group: Group) -> dict:
    return GroupResponse.model_validate(group).model_dump()


def _organization(group: Group) -> Optional[OrganizationSummary]:
    if group.organization is None:
        return None
    return OrganizationSummary.model_validate(group.organization)


class GroupService:
    """
    Business logic layer for group operations.

    Error Handling Strategy:
        Domain failures raise GroupUpError subclasses that the global
        handlers map to 4xx. SQLAlchemy failures are logged and wrapped in
        DatabaseError (500) without leaking SQL to the client.
    """

    # ── Create ────────────────────────────────────────────────────────────

    async def create_group(
        self,
        db: AsyncSession,
        store: SpatialStore,
        actor: Actor,
        request: CreateGroupRequest,
    ) -> GroupResponse:
        """
        Creates a group at the caller's location.

        The group is tied to a building only when the point lies inside its
        footprint. An anonymous caller (or `isAnonymous: true`) produces a
        group without creator and without membership rows.
        """
        if request.is_anonymous:
            actor = ANONYMOUS

        nearest = await building_service.find_nearest(
            store, request.latitude, request.longitude, settings.default_buffer_meters
        )

        try:
            building_id: Optional[str] = None
            if nearest is not None and nearest.is_inside:
                await building_service.ensure_relational_building(db, nearest)
                building_id = nearest.id

            now = utcnow()
            group = Group(
                name=request.name or settings.default_group_name,
                description=request.description,
                organization_id=request.organization_id,
                creator_id=actor.user_id,
                latitude=request.latitude,
                longitude=request.longitude,
                radius=request.radius or settings.default_group_radius,
                building_id=building_id,
                expires_at=now + timedelta(hours=settings.group_lifetime_hours),
                extended_count=0,
                max_extensions=settings.group_max_extensions,
                storage_folder=str(uuid.uuid4()),
                is_active=True,
                is_archived=False,
                created_at=now,
                updated_at=now,
            )
            db.add(group)
            await db.flush()

            if isinstance(actor, UserActor):
                db.add(
                    GroupMember(
                        group_id=group.id,
                        user_id=actor.user_id,
                        role=ROLE_CREATOR,
                        joined_latitude=request.latitude,
                        joined_longitude=request.longitude,
                        joined_at=now,
                        last_active_at=now,
                    )
                )
                await db.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to create group: %s", e, exc_info=True)
            raise DatabaseError(
                message="Failed to create group",
                context={"error": str(e)},
            ) from e
        await commit_session(db, "Failed to create group")

        logger.info(
            "Group %s created at (%f, %f) by %s%s",
            group.id,
            group.latitude,
            group.longitude,
            actor.user_id or "anonymous",
            f" inside building {building_id}" if building_id else "",
        )
        return GroupResponse.model_validate(group)

    # ── Discovery ─────────────────────────────────────────────────────────

    async def find_nearby(
        self,
        db: AsyncSession,
        actor: Actor,
        latitude: float,
        longitude: float,
        max_distance: Optional[float] = None,
    ) -> List[NearbyGroupResponse]:
        """
        Active, unexpired groups within max_distance meters, closest first.

        Every active group is scored in Python; the active set is small
        because groups live for hours.
        """
        max_distance = max_distance or settings.default_max_distance

        try:
            result = await db.execute(
                select(Group)
                .where(Group.is_active.is_(True), Group.expires_at > utcnow())
                .options(
                    selectinload(Group.members).selectinload(GroupMember.user),
                    selectinload(Group.organization),
                )
            )
            groups = result.scalars().all()
            file_counts = await self._file_counts(db, (g.id for g in groups))
        except SQLAlchemyError as e:
            logger.error("Nearby query failed: %s", e, exc_info=True)
            raise DatabaseError(message="Failed to fetch nearby groups", context={"error": str(e)}) from e

        nearby: List[NearbyGroupResponse] = []
        for group in groups:
            raw = haversine_distance(latitude, longitude, group.latitude, group.longitude)
            distance = round_meters(raw)
            if distance > max_distance:
                continue
            nearby.append(
                NearbyGroupResponse(
                    **_group_fields(group),
                    distance=distance,
                    can_join=raw <= group.radius,
                    is_member=self._is_member(group, actor),
                    member_count=len(group.members),
                    file_count=file_counts.get(group.id, 0),
                    organization=_organization(group),
                    members=[MemberResponse.model_validate(mb) for mb in group.members],
                )
            )

        nearby.sort(key=lambda g: g.distance)
        logger.debug(
            "%d nearby groups within %.0fm of (%f, %f)", len(nearby), max_distance, latitude, longitude
        )
        return nearby

    @staticmethod
    def _is_member(group: Group, actor: Actor) -> bool:
        if not isinstance(actor, UserActor):
            return False
        return any(m.user_id == actor.user_id for m in group.members)

    @staticmethod
    async def _file_counts(db: AsyncSession, group_ids: Iterable[str]) -> Dict[str, int]:
        ids = list(group_ids)
        if not ids:
            return {}
        rows = await db.execute(
            select(GroupFile.group_id, func.count(GroupFile.id))
            .where(GroupFile.group_id.in_(ids))
            .group_by(GroupFile.group_id)
        )
        return {group_id: count for group_id, count in rows.all()}

    # ── Membership listing ────────────────────────────────────────────────

    async def list_for_user(self, db: AsyncSession, user: UserActor) -> List[MyGroupResponse]:
        """The caller's memberships, most recently joined first."""
        try:
            result = await db.execute(
                select(GroupMember)
                .where(GroupMember.user_id == user.user_id)
                .options(
                    selectinload(GroupMember.group).selectinload(Group.members),
                    selectinload(GroupMember.group).selectinload(Group.organization),
                )
                .order_by(GroupMember.joined_at.desc())
            )
            memberships = result.scalars().all()
            file_counts = await self._file_counts(db, (m.group_id for m in memberships))
        except SQLAlchemyError as e:
            logger.error("Listing groups for %s failed: %s", user.user_id, e, exc_info=True)
            raise DatabaseError(message="Failed to fetch groups", context={"error": str(e)}) from e

        return [
            MyGroupResponse(
                **_group_fields(m.group),
                role=m.role,
                joined_at=m.joined_at,
                member_count=len(m.group.members),
                file_count=file_counts.get(m.group_id, 0),
                organization=_organization(m.group),
            )
            for m in memberships
        ]

    # ── Single group ──────────────────────────────────────────────────────

    async def _load_group(self, db: AsyncSession, group_id: str) -> Optional[Group]:
        result = await db.execute(
            select(Group)
            .where(Group.id == group_id)
            .options(
                selectinload(Group.members).selectinload(GroupMember.user),
                selectinload(Group.files).selectinload(GroupFile.uploader),
                selectinload(Group.organization),
            )
        )
        return result.scalar_one_or_none()

    def _detail(self, group: Group) -> GroupDetailResponse:
        return GroupDetailResponse(
            **_group_fields(group),
            is_expired=is_expired(group),
            code=share_code(group.id),
            organization=_organization(group),
            members=[MemberResponse.model_validate(mb) for mb in group.members],
            files=[GroupFileResponse.model_validate(f) for f in group.files],
        )

    async def get_group(self, db: AsyncSession, group_id: str) -> GroupDetailResponse:
        group = await self._load_group(db, group_id)
        if group is None:
            raise NotFoundError(resource="group", resource_id=group_id, message="Group not found")
        return self._detail(group)

    # ── Join ──────────────────────────────────────────────────────────────

    def _check_joinable(self, group: Group, latitude: float, longitude: float) -> int:
        if is_expired(group):
            raise GroupExpiredError(group.id)
        raw = haversine_distance(latitude, longitude, group.latitude, group.longitude)
        if raw > group.radius:
            raise OutOfRangeError(radius=group.radius, distance=round_meters(raw))
        return round_meters(raw)

    async def _add_member(
        self, db: AsyncSession, group: Group, actor: Actor, latitude: float, longitude: float
    ) -> Optional[str]:
        """Inserts the membership if missing; returns the caller's role."""
        if not isinstance(actor, UserActor):
            return None

        result = await db.execute(
            select(GroupMember).where(
                GroupMember.group_id == group.id,
                GroupMember.user_id == actor.user_id,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            existing.last_active_at = utcnow()
            return existing.role

        db.add(
            GroupMember(
                group_id=group.id,
                user_id=actor.user_id,
                role=ROLE_MEMBER,
                joined_latitude=latitude,
                joined_longitude=longitude,
            )
        )
        await db.flush()
        logger.info("User %s joined group %s", actor.user_id, group.id)
        return ROLE_MEMBER

    async def join_group(
        self,
        db: AsyncSession,
        actor: Actor,
        group_id: str,
        latitude: float,
        longitude: float,
    ) -> JoinGroupResponse:
        """
        Joins a group from the caller's current position.

        Raises:
            NotFoundError:   unknown or archived group
            GroupExpiredError: past expires_at
            OutOfRangeError: farther than the group's radius (403, with distance)
        """
        result = await db.execute(
            select(Group).where(Group.id == group_id, Group.is_active.is_(True))
        )
        group = result.scalar_one_or_none()
        if group is None:
            raise NotFoundError(
                resource="group", resource_id=group_id, message="Group not found or inactive"
            )

        self._check_joinable(group, latitude, longitude)
        role = await self._add_member(db, group, actor, latitude, longitude)
        await commit_session(db, "Failed to join group")
        return JoinGroupResponse(success=True, group_id=group.id, role=role)

    async def join_by_code(
        self,
        db: AsyncSession,
        actor: Actor,
        code: str,
        latitude: float,
        longitude: float,
    ) -> GroupDetailResponse:
        """Same checks as join_group, addressing the group by its share code."""
        code = code.strip().upper()
        if len(code) != 6:
            raise ValidationError(message="Invalid group code", field="code")

        result = await db.execute(
            select(Group)
            .where(
                Group.is_active.is_(True),
                Group.expires_at > utcnow(),
                func.upper(func.substr(Group.id, 1, 6)) == code,
            )
            .order_by(Group.created_at.desc())
            .limit(1)
        )
        group = result.scalar_one_or_none()
        if group is None:
            raise NotFoundError(resource="group", message="Invalid or expired group code")

        self._check_joinable(group, latitude, longitude)
        await self._add_member(db, group, actor, latitude, longitude)
        await commit_session(db, "Failed to join group")
        return await self.get_group(db, group.id)

    # ── Creator actions ───────────────────────────────────────────────────

    async def _require_creator(self, db: AsyncSession, actor: Actor, group_id: str, action: str) -> None:
        if not isinstance(actor, UserActor):
            raise PermissionDeniedError(message=f"Only the creator can {action} the group")
        result = await db.execute(
            select(GroupMember.id).where(
                GroupMember.group_id == group_id,
                GroupMember.user_id == actor.user_id,
                GroupMember.role == ROLE_CREATOR,
            )
        )
        if result.scalar_one_or_none() is None:
            raise PermissionDeniedError(message=f"Only the creator can {action} the group")

    async def extend_group(self, db: AsyncSession, actor: Actor, group_id: str) -> GroupResponse:
        """Adds another lifetime period to expires_at, up to max_extensions times."""
        await self._require_creator(db, actor, group_id, "extend")

        group = await db.get(Group, group_id)
        if group is None:
            raise NotFoundError(resource="group", resource_id=group_id, message="Group not found")
        if group.extended_count >= group.max_extensions:
            raise ValidationError(
                message="Maximum extensions reached",
                context={"max_extensions": group.max_extensions},
            )

        group.expires_at = as_utc(group.expires_at) + timedelta(hours=settings.group_lifetime_hours)
        group.extended_count += 1
        await commit_session(db, "Failed to extend group")
        logger.info(
            "Group %s extended (%d/%d), now expires %s",
            group.id,
            group.extended_count,
            group.max_extensions,
            group.expires_at.isoformat(),
        )
        return GroupResponse.model_validate(group)

    async def archive_group(self, db: AsyncSession, actor: Actor, group_id: str) -> None:
        """Hides the group from discovery and joins; rows are kept."""
        await self._require_creator(db, actor, group_id, "delete")

        group = await db.get(Group, group_id)
        if group is None:
            raise NotFoundError(resource="group", resource_id=group_id, message="Group not found")
        group.is_active = False
        group.is_archived = True
        await commit_session(db, "Failed to archive group")
        logger.info("Group %s archived by %s", group.id, actor.user_id)


# ── Singleton Instance ────────────────────────────────────────────────────
group_service = GroupService()
