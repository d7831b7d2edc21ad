"""
GroupUp Backend - File Service Unit Tests
=========================================

What:  FileService size checks, filename sanitising, storage and serving.
How:   Each test gets its own storage root under tmp_path.

Test Strategy:
    - size limits (empty, declared Content-Length, bytes actually read)
    - filenames from hostile clients (paths, control characters, dots)
    - files land in the group's folder with a timestamp prefix
    - /uploads paths cannot escape the storage root
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from groupup.config import settings
from groupup.exceptions import NotFoundError, ValidationError
from groupup.services.file_service import FileService


class TestSizeValidation:

    def setup_method(self):
        self.service = FileService()

    def test_valid_size_passes(self):
        self.service.validate_size(content_length=1024, actual_size=1024)

    def test_empty_file_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            self.service.validate_size(content_length=0, actual_size=0)

    def test_declared_size_over_limit(self):
        with patch.object(settings, "max_file_size", 100):
            with pytest.raises(ValidationError, match="exceeds maximum"):
                self.service.validate_size(content_length=101, actual_size=10)

    def test_actual_size_over_limit(self):
        """A client can lie about Content-Length; the bytes read still count."""
        with patch.object(settings, "max_file_size", 100):
            with pytest.raises(ValidationError) as exc_info:
                self.service.validate_size(content_length=None, actual_size=101)

        assert exc_info.value.context["actual_size"] == 101

    def test_exactly_at_limit_passes(self):
        with patch.object(settings, "max_file_size", 100):
            self.service.validate_size(content_length=100, actual_size=100)


class TestFilenames:

    def test_windows_path_stripped(self):
        assert FileService.sanitize_filename("C:\\Users\\me\\menu.pdf") == "menu.pdf"

    def test_unix_path_stripped(self):
        assert FileService.sanitize_filename("../../etc/passwd") == "passwd"

    def test_unsafe_characters_replaced(self):
        assert FileService.sanitize_filename("a<b>:c?.txt") == "a_b_c_.txt"

    def test_leading_dots_removed(self):
        assert FileService.sanitize_filename(".env") == "env"

    @pytest.mark.parametrize("name", [None, "", "...", "/"])
    def test_empty_becomes_file(self, name):
        assert FileService.sanitize_filename(name) == "file"

    def test_long_name_keeps_extension(self):
        name = FileService.sanitize_filename("x" * 500 + ".jpeg")

        assert len(name) == 120
        assert name.endswith(".jpeg")

    def test_mimetype_guessed_when_generic(self):
        assert FileService.guess_mimetype("photo.png", "application/octet-stream") == "image/png"

    def test_declared_mimetype_kept(self):
        assert FileService.guess_mimetype("notes", "text/plain") == "text/plain"

    def test_unknown_mimetype(self):
        assert FileService.guess_mimetype("blob", None) == "application/octet-stream"


class TestStorage:

    @pytest.mark.asyncio
    async def test_store_in_group_folder(self, temp_storage):
        service = FileService(storage_root=temp_storage)

        absolute, stored_name, public_path = await service.store_group_file(
            "folder-1", "menu.pdf", b"%PDF-1.4"
        )

        assert Path(absolute).read_bytes() == b"%PDF-1.4"
        assert stored_name.endswith("-menu.pdf")
        assert stored_name.split("-", 1)[0].isdigit()
        assert public_path == f"/uploads/folder-1/{stored_name}"

    @pytest.mark.asyncio
    async def test_resolve_stored_file(self, temp_storage):
        service = FileService(storage_root=temp_storage)
        absolute, stored_name, _ = await service.store_group_file("folder-1", "a.txt", b"hi")

        assert service.resolve_public_path(f"folder-1/{stored_name}") == Path(absolute).resolve()

    def test_traversal_rejected(self, temp_storage):
        service = FileService(storage_root=temp_storage)

        with pytest.raises(ValidationError, match="Invalid file path"):
            service.resolve_public_path("../outside.txt")

    def test_missing_file(self, temp_storage):
        service = FileService(storage_root=temp_storage)

        with pytest.raises(NotFoundError):
            service.resolve_public_path("folder-1/nothing.txt")

    @pytest.mark.asyncio
    async def test_cleanup_removes_file(self, temp_storage):
        service = FileService(storage_root=temp_storage)
        absolute, _, _ = await service.store_group_file("folder-1", "a.txt", b"hi")

        await service.cleanup_file(absolute)

        assert not os.path.exists(absolute)

    @pytest.mark.asyncio
    async def test_cleanup_missing_file_is_quiet(self, temp_storage):
        service = FileService(storage_root=temp_storage)

        await service.cleanup_file(os.path.join(temp_storage, "never-written.txt"))
