"""
GroupUp Backend - Group API Schemas
===================================

What:  Request bodies and response records for /api/groups/*.
How:   Response models read straight from ORM objects (`from_attributes`);
       the derived fields (distance, canJoin, isMember, role, code ...) are
       filled in by GroupService.

Response family:
    GroupResponse               plain group record (create, extend)
    ├── NearbyGroupResponse     + distance, canJoin, isMember, members, counts
    ├── MyGroupResponse         + role, joinedAt (the caller's membership)
    └── GroupDetailResponse     + members, files, isExpired, share code
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from groupup.schemas.common import CamelModel


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class CreateGroupRequest(CamelModel):
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius: Optional[int] = Field(default=None, gt=0, le=50_000, description="Join radius (m)")
    organization_id: Optional[str] = None
    is_anonymous: bool = Field(
        default=False,
        description="Create without linking the group to the caller's account",
    )


class NearbyGroupsRequest(CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    max_distance: Optional[float] = Field(default=None, gt=0, description="Search radius (m)")


class JoinGroupRequest(CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class JoinByCodeRequest(JoinGroupRequest):
    code: str = Field(min_length=1, max_length=32)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class UpdateGroupRequest(CamelModel):
    action: str


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UserSummary(CamelModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    image: Optional[str] = None


class OrganizationSummary(CamelModel):
    id: str
    name: str
    slug: str
    logo_url: Optional[str] = None


class MemberResponse(CamelModel):
    id: str
    user_id: str
    role: str
    joined_at: datetime
    user: Optional[UserSummary] = None


class GroupFileResponse(CamelModel):
    id: str
    filename: str
    original_name: str
    mimetype: str
    size: int
    path: str
    uploader_id: Optional[str] = None
    group_id: str
    is_from_creator: bool
    created_at: datetime
    uploader: Optional[UserSummary] = None


class GroupResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    organization_id: Optional[str] = None
    creator_id: Optional[str] = None
    latitude: float
    longitude: float
    radius: int
    building_id: Optional[str] = None
    expires_at: datetime
    extended_count: int
    max_extensions: int
    storage_folder: str
    is_active: bool
    is_archived: bool
    created_at: datetime
    updated_at: datetime


class NearbyGroupResponse(GroupResponse):
    distance: int = Field(description="Meters from the query point, rounded")
    can_join: bool = Field(description="distance <= radius")
    is_member: bool
    member_count: int
    file_count: int
    organization: Optional[OrganizationSummary] = None
    members: List[MemberResponse] = Field(default_factory=list)


class MyGroupResponse(GroupResponse):
    role: str
    joined_at: datetime
    member_count: int
    file_count: int
    organization: Optional[OrganizationSummary] = None


class GroupDetailResponse(GroupResponse):
    is_expired: bool
    code: str = Field(description="Six-character share code")
    organization: Optional[OrganizationSummary] = None
    members: List[MemberResponse] = Field(default_factory=list)
    files: List[GroupFileResponse] = Field(default_factory=list)


class JoinGroupResponse(CamelModel):
    success: bool = True
    group_id: str
    role: Optional[str] = Field(
        default=None, description="Caller's role after joining; null for anonymous callers"
    )
