"""
GroupUp Backend - Group, GroupMember and GroupFile Models
=========================================================

What:  The ephemeral, location-anchored group and the rows that hang off it.

Group lifecycle:
    1. Created at (latitude, longitude) with a join radius (default 100 m);
       expires_at = created_at + 4h
    2. Discoverable through /api/groups/nearby while is_active and unexpired
    3. The creator may extend it by another 4h, up to max_extensions times
    4. The creator may archive it (is_active = False, is_archived = True);
       rows are never deleted by the API

Anonymous actors:
    creator_id and GroupFile.uploader_id are nullable. Services read the
    creator through `Group.created_by`, which returns an explicit Actor
    (see models/actor.py).

Derived, never stored:
    distance, canJoin, isMember (computed per request by GroupService).
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from groupup.database import Base
from groupup.models.actor import Actor, actor_from_user_id
from groupup.models.building import Building
from groupup.models.common import TimestampMixin, id_column, utcnow
from groupup.models.organization import Organization
from groupup.models.user import User


class Group(TimestampMixin, Base):
    __tablename__ = "groups"

    id: Mapped[str] = id_column()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    organization_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    creator_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # ── Location ──────────────────────────────────────────────────────────
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    # Join radius in meters
    radius: Mapped[int] = mapped_column(
        Integer, nullable=False, default=100, server_default=text("100")
    )
    building_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("buildings.id", ondelete="SET NULL"),
        nullable=True,
    )

    # ── Lifetime ──────────────────────────────────────────────────────────
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    extended_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    max_extensions: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, server_default=text("3")
    )

    # Folder name under STORAGE_ROOT for this group's uploads
    storage_folder: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true"), index=True
    )
    is_archived: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    # Relationships are never lazy-loaded (async sessions cannot); queries
    # that need them ask for selectinload() explicitly.
    members: Mapped[List["GroupMember"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="GroupMember.joined_at",
    )
    files: Mapped[List["GroupFile"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="GroupFile.created_at.desc()",
    )
    organization: Mapped[Optional[Organization]] = relationship()
    building: Mapped[Optional[Building]] = relationship()

    @property
    def created_by(self) -> Actor:
        return actor_from_user_id(self.creator_id)

    def __repr__(self) -> str:
        return (
            f"<Group(id={self.id}, name={self.name!r}, "
            f"active={self.is_active}, expires_at='{self.expires_at}')>"
        )


class GroupMember(Base):
    """
    Membership of a user in a group.

    Roles: "creator" (inserted with the group) and "member" (joined later).
    (group_id, user_id) is unique, so a user holds exactly one role per group.
    """

    __tablename__ = "group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
    )

    id: Mapped[str] = id_column()
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(
        String(32), nullable=False, default="member", server_default=text("'member'"), index=True
    )
    joined_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    joined_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.current_timestamp(),
    )
    last_active_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.current_timestamp(),
    )

    group: Mapped[Group] = relationship(back_populates="members")
    user: Mapped[User] = relationship()


class GroupFile(TimestampMixin, Base):
    """A file shared inside exactly one group; deleted with the group."""

    __tablename__ = "group_files"

    id: Mapped[str] = id_column()
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mimetype: Mapped[str] = mapped_column(String(127), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    # Public path: /uploads/<storage_folder>/<filename>
    path: Mapped[str] = mapped_column(Text, nullable=False)
    uploader_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_from_creator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    thumbnail_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    group: Mapped[Group] = relationship(back_populates="files")
    uploader: Mapped[Optional[User]] = relationship()
