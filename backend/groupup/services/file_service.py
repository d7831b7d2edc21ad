"""
GroupUp Backend - File Storage Service
======================================

What:  Validation, storage and cleanup of files shared inside groups.
How:   Each group owns one folder under STORAGE_ROOT, named after
       Group.storage_folder. Files are written there with aiofiles as
       `<unix-ms>-<sanitised original name>`.
Who:   Called by GroupFileService during uploads and by the /uploads route
       that serves files back.

Directory Structure:
    storage/
    └── 3f2a9c1e-.../                 (Group.storage_folder)
        ├── 1718040000000-menu.pdf
        └── 1718040012345-photo.jpg

Security Model:
    1. Size check:        Rejects empty files and anything above MAX_FILE_SIZE
    2. Name sanitising:   Only the basename survives; path separators, control
                          characters and leading dots are stripped
    3. Folder names:      Server-generated UUIDs, never user input
    4. Serving:           resolve_public_path() refuses paths that escape the
                          storage root
"""

import logging
import mimetypes
import os
import re
import time
from pathlib import Path
from typing import Optional, Tuple

import aiofiles

from groupup.config import settings
from groupup.exceptions import FileStorageError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads"
DEFAULT_MIMETYPE = "application/octet-stream"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._ -]+")
_MAX_NAME_LENGTH = 120


class FileService:
    """
    Manages the on-disk side of group files.

    Lifecycle of an upload:
        1. validate_size()      empty or oversized files are rejected
        2. store_group_file()   written to <root>/<folder>/<ms>-<name>
        3. public path returned and recorded on the GroupFile row
        4. on a later failure cleanup_file() removes the write
    """

    def __init__(self, storage_root: Optional[str] = None):
        """
        Args:
            storage_root: Override the default storage path (used in tests).
                          If None, uses settings.storage_root.
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """
        Checks the Content-Length header first, then the bytes actually read.

        Raises:
            ValidationError with a human-readable size limit message
        """
        max_mb = settings.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(message="Uploaded file is empty", field="file")

        if content_length and content_length > settings.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > settings.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    @staticmethod
    def sanitize_filename(filename: Optional[str]) -> str:
        # Browsers on Windows may send the full client path
        name = (filename or "").replace("\\", "/").split("/")[-1]
        name = _UNSAFE_CHARS.sub("_", name).strip(" .")
        if not name:
            return "file"
        stem, ext = os.path.splitext(name)
        return stem[: _MAX_NAME_LENGTH - len(ext)] + ext

    @staticmethod
    def guess_mimetype(filename: str, declared: Optional[str]) -> str:
        if declared and declared != DEFAULT_MIMETYPE:
            return declared
        guessed, _ = mimetypes.guess_type(filename)
        return guessed or declared or DEFAULT_MIMETYPE

    async def store_group_file(
        self, storage_folder: str, original_name: str, content: bytes
    ) -> Tuple[str, str, str]:
        """
        Writes the upload into the group's folder.

        Returns:
            (absolute_path, stored_filename, public_path)

        Raises:
            FileStorageError if the directory or file cannot be written
        """
        stored_name = f"{int(time.time() * 1000)}-{self.sanitize_filename(original_name)}"
        folder = self.storage_root / storage_folder
        absolute_path = folder / stored_name

        try:
            folder.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, e)
            raise FileStorageError(
                message="Failed to save uploaded file. Please try again.",
                context={"path": str(absolute_path), "error": str(e)},
            ) from e

        logger.info("File stored: %s/%s (%d bytes)", storage_folder, stored_name, len(content))
        return str(absolute_path), stored_name, f"{PUBLIC_PREFIX}/{storage_folder}/{stored_name}"

    def resolve_public_path(self, relative_path: str) -> Path:
        """
        Maps `<folder>/<file>` (the part after /uploads/) to a file on disk.

        Raises:
            ValidationError: the path escapes the storage root
            NotFoundError:   nothing stored there
        """
        target = (self.storage_root / relative_path).resolve()
        if not str(target).startswith(str(self.storage_root) + os.sep):
            logger.warning("Path traversal attempt blocked: %s", relative_path)
            raise ValidationError(message="Invalid file path", field="path")
        if not target.is_file():
            raise NotFoundError(resource="file", resource_id=relative_path)
        return target

    async def cleanup_file(self, file_path: str) -> None:
        """
        Best-effort removal of a stored file after a failed upload.

        A missing file is fine; other OS errors are logged, not raised, so the
        original failure reaches the client.
        """
        path = Path(file_path)
        try:
            path.unlink()
            logger.info("Cleaned up file: %s", path.name)
        except FileNotFoundError:
            logger.debug("Cleanup: file already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", file_path, e)


# ── Singleton Instance ────────────────────────────────────────────────────
file_service = FileService()
