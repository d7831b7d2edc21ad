"""
GroupUp Backend - Group File Service
====================================

What:  Upload and listing of files inside a group.
How:   FileService writes the bytes; this service checks the group and the
       caller, then records and commits the GroupFile row.

Upload rules:
    - unknown group                        -> 404
    - archived or expired group            -> 403
    - signed-in caller who is not a member -> 403
    - anonymous callers may upload to any live group; uploader stays NULL
    - is_from_creator is true when the uploader created the group

If the row cannot be flushed or committed, the stored file is removed again.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from groupup.database import commit_session
from groupup.exceptions import (
    DatabaseError,
    GroupExpiredError,
    NotFoundError,
    PermissionDeniedError,
)
from groupup.models.actor import Actor, UserActor
from groupup.models.group import Group, GroupFile, GroupMember
from groupup.schemas.group import GroupFileResponse
from groupup.services.file_service import file_service
from groupup.services.group_service import is_expired

logger = logging.getLogger(__name__)


class GroupFileService:

    async def upload(
        self,
        db: AsyncSession,
        actor: Actor,
        group_id: str,
        filename: Optional[str],
        content: bytes,
        content_type: Optional[str] = None,
        content_length: Optional[int] = None,
    ) -> GroupFileResponse:
        group = await db.get(Group, group_id)
        if group is None:
            raise NotFoundError(resource="group", resource_id=group_id, message="Group not found")
        if not group.is_active or is_expired(group):
            raise GroupExpiredError(group.id, message="Group is expired or inactive")

        if isinstance(actor, UserActor):
            member = await db.execute(
                select(GroupMember.id).where(
                    GroupMember.group_id == group.id,
                    GroupMember.user_id == actor.user_id,
                )
            )
            if member.scalar_one_or_none() is None:
                raise PermissionDeniedError(message="You must join the group to upload files")

        file_service.validate_size(content_length, len(content))
        original_name = filename or "file"
        absolute_path, stored_name, public_path = await file_service.store_group_file(
            group.storage_folder, original_name, content
        )

        try:
            row = GroupFile(
                filename=stored_name,
                original_name=original_name,
                mimetype=file_service.guess_mimetype(original_name, content_type),
                size=len(content),
                path=public_path,
                uploader_id=actor.user_id,
                group_id=group.id,
                is_from_creator=(
                    isinstance(actor, UserActor) and group.created_by.user_id == actor.user_id
                ),
            )
            db.add(row)
            await db.flush()
            # Async sessions cannot lazy-load; the response needs the uploader
            await db.refresh(row, attribute_names=["uploader"])
        except SQLAlchemyError as e:
            await file_service.cleanup_file(absolute_path)
            logger.error("Failed to record upload for group %s: %s", group.id, e, exc_info=True)
            raise DatabaseError(message="Failed to upload file", context={"error": str(e)}) from e

        try:
            await commit_session(db, "Failed to upload file")
        except DatabaseError:
            await file_service.cleanup_file(absolute_path)
            raise

        logger.info(
            "File %s uploaded to group %s by %s", stored_name, group.id, actor.user_id or "anonymous"
        )
        return GroupFileResponse.model_validate(row)

    async def list_files(self, db: AsyncSession, group_id: str) -> List[GroupFileResponse]:
        """Files of a group, newest first, with uploader summaries."""
        group = await db.get(Group, group_id)
        if group is None:
            raise NotFoundError(resource="group", resource_id=group_id, message="Group not found")

        result = await db.execute(
            select(GroupFile)
            .where(GroupFile.group_id == group_id)
            .options(selectinload(GroupFile.uploader))
            .order_by(GroupFile.created_at.desc())
        )
        return [GroupFileResponse.model_validate(f) for f in result.scalars().all()]


# ── Singleton Instance ────────────────────────────────────────────────────
group_file_service = GroupFileService()
