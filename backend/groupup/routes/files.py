"""
GroupUp Backend - Group File Routes
===================================

    POST /api/groups/{id}/files   multipart upload (field "file")
    GET  /api/groups/{id}/files   newest first
    GET  /uploads/{folder}/{name} serve a stored file
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from groupup.database import get_db_session
from groupup.dependencies import get_current_actor
from groupup.models.actor import Actor
from groupup.schemas.common import ErrorResponse
from groupup.schemas.group import GroupFileResponse
from groupup.services.file_service import PUBLIC_PREFIX, file_service
from groupup.services.group_file_service import group_file_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Files"])


@router.post(
    "/api/groups/{group_id}/files",
    status_code=201,
    response_model=GroupFileResponse,
    responses={
        400: {"description": "Empty or oversized file", "model": ErrorResponse},
        403: {"description": "Group expired, or caller is not a member", "model": ErrorResponse},
        404: {"description": "Unknown group", "model": ErrorResponse},
    },
    summary="Upload a file to a group",
)
async def upload_file(
    group_id: str,
    file: UploadFile = File(..., description="File to share with the group"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> GroupFileResponse:
    try:
        content = await file.read()
        logger.info(
            "Upload to group %s: filename=%s, size=%d bytes",
            group_id,
            file.filename or "unknown",
            len(content),
        )
        return await group_file_service.upload(
            db,
            actor,
            group_id,
            filename=file.filename,
            content=content,
            content_type=file.content_type,
            content_length=file.size,
        )
    finally:
        await file.close()


@router.get(
    "/api/groups/{group_id}/files",
    response_model=List[GroupFileResponse],
    responses={404: {"description": "Unknown group", "model": ErrorResponse}},
    summary="List a group's files",
)
async def list_files(
    group_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> List[GroupFileResponse]:
    return await group_file_service.list_files(db, group_id)


@router.get(
    PUBLIC_PREFIX + "/{file_path:path}",
    summary="Serve a stored group file",
    responses={404: {"description": "File not found", "model": ErrorResponse}},
)
async def serve_file(file_path: str) -> FileResponse:
    target = file_service.resolve_public_path(file_path)
    return FileResponse(path=str(target), filename=target.name.split("-", 1)[-1])
