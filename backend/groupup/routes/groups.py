"""
GroupUp Backend - Group Route Handlers
======================================

What:  /api/groups/* - create, discover, list, inspect, join, extend, archive.
How:   Each handler resolves the caller (Actor) and, where needed, the
       spatial store through dependencies, then calls one GroupService
       method. Errors are raised, never returned, and formatted by the
       global handlers in main.py.

Authentication:
    - create, nearby, join, join-by-code: anonymous callers allowed
    - list mine:                          401 without a session
    - extend:                             creator only (403 otherwise)
    - archive:                            401 without a session, then creator only
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from groupup.database import get_db_session
from groupup.dependencies import get_current_actor, get_spatial_store, require_user
from groupup.exceptions import ValidationError
from groupup.models.actor import Actor, UserActor
from groupup.schemas.common import ErrorResponse
from groupup.schemas.group import (
    CreateGroupRequest,
    GroupDetailResponse,
    GroupResponse,
    JoinByCodeRequest,
    JoinGroupRequest,
    JoinGroupResponse,
    MyGroupResponse,
    NearbyGroupResponse,
    NearbyGroupsRequest,
    UpdateGroupRequest,
)
from groupup.services.group_service import group_service
from groupup.services.spatial_store import SpatialStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/groups", tags=["Groups"])


@router.post(
    "",
    status_code=201,
    response_model=GroupResponse,
    responses={
        400: {"description": "Missing or invalid location", "model": ErrorResponse},
        500: {"description": "Group could not be stored", "model": ErrorResponse},
    },
    summary="Create a group at the caller's location",
)
async def create_group(
    body: CreateGroupRequest,
    actor: Actor = Depends(get_current_actor),
    store: SpatialStore = Depends(get_spatial_store),
    db: AsyncSession = Depends(get_db_session),
) -> GroupResponse:
    """
    Creates a group that expires after the configured lifetime. If the point
    lies inside a known building the group is associated with it.
    """
    return await group_service.create_group(db, store, actor, body)


@router.get(
    "",
    response_model=List[MyGroupResponse],
    responses={401: {"description": "No session", "model": ErrorResponse}},
    summary="Groups the caller belongs to",
)
async def list_my_groups(
    user: UserActor = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[MyGroupResponse]:
    return await group_service.list_for_user(db, user)


@router.post(
    "/nearby",
    response_model=List[NearbyGroupResponse],
    responses={400: {"description": "Missing location", "model": ErrorResponse}},
    summary="Active groups near a point, closest first",
)
async def nearby_groups(
    body: NearbyGroupsRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> List[NearbyGroupResponse]:
    return await group_service.find_nearby(
        db, actor, body.latitude, body.longitude, body.max_distance
    )


@router.post(
    "/join",
    response_model=GroupDetailResponse,
    responses={
        403: {"description": "Expired or out of range", "model": ErrorResponse},
        404: {"description": "Unknown code", "model": ErrorResponse},
    },
    summary="Join a group by its six-character share code",
)
async def join_by_code(
    body: JoinByCodeRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> GroupDetailResponse:
    return await group_service.join_by_code(db, actor, body.code, body.latitude, body.longitude)


@router.get(
    "/{group_id}",
    response_model=GroupDetailResponse,
    responses={404: {"description": "Unknown group", "model": ErrorResponse}},
    summary="Group detail with members and files",
)
async def get_group(
    group_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> GroupDetailResponse:
    return await group_service.get_group(db, group_id)


@router.patch(
    "/{group_id}",
    response_model=GroupResponse,
    responses={
        400: {"description": "Unknown action or extension limit reached", "model": ErrorResponse},
        403: {"description": "Caller is not the creator", "model": ErrorResponse},
    },
    summary="Extend a group's lifetime",
)
async def update_group(
    group_id: str,
    body: UpdateGroupRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> GroupResponse:
    if body.action != "extend":
        raise ValidationError(message="Invalid action", field="action")
    return await group_service.extend_group(db, actor, group_id)


@router.delete(
    "/{group_id}",
    status_code=204,
    responses={
        401: {"description": "No session", "model": ErrorResponse},
        403: {"description": "Caller is not the creator", "model": ErrorResponse},
    },
    summary="Archive a group",
)
async def archive_group(
    group_id: str,
    user: UserActor = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await group_service.archive_group(db, user, group_id)
    return Response(status_code=204)


@router.post(
    "/{group_id}/join",
    response_model=JoinGroupResponse,
    responses={
        403: {"description": "Expired or out of range", "model": ErrorResponse},
        404: {"description": "Unknown or archived group", "model": ErrorResponse},
    },
    summary="Join a group from the caller's position",
)
async def join_group(
    group_id: str,
    body: JoinGroupRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> JoinGroupResponse:
    return await group_service.join_group(db, actor, group_id, body.latitude, body.longitude)
