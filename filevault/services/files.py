import logging
import mimetypes
from typing import Sequence
from urllib.parse import unquote, urlsplit

from fastapi import UploadFile
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from filevault.core.errors import BadRequest, Forbidden, Internal, NotFound
from filevault.models.file import File
from filevault.models.user import User
from filevault.storage.blobs import BlobStore, BlobWriteError, FileTooLarge, StoredBlob
from filevault.stores.files import FileStore

logger = logging.getLogger(__name__)


def sniff_mime(filename: str, declared: str | None) -> str:
    guess, _ = mimetypes.guess_type(filename)
    return declared or guess or "application/octet-stream"


def size_label(limit: int) -> str:
    for unit, factor in (("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024)):
        if limit >= factor and limit % factor == 0:
            return f"{limit // factor}{unit}"
    return f"{limit} bytes"


def url_path_candidates(url: str) -> list[str]:
    """Paths a delete-by-URL request may refer to, most literal first."""
    url = url.strip()
    parts = urlsplit(url)
    path = parts.path if (parts.scheme or parts.netloc) else url
    candidates = [path]
    decoded = unquote(path)
    if decoded != path:
        candidates.append(decoded)
    return candidates


class FileService:
    """Upload, listing and deletion of a user's files."""

    def __init__(self, files: FileStore, blobs: BlobStore):
        self.files = files
        self.blobs = blobs

    async def upload(self, owner: User, parts: Sequence[UploadFile]) -> list[File]:
        """Store every part and record it, or store nothing at all.

        Any failure after the first blob hits the disk removes the blobs
        written by this call, so a failed request leaves neither blobs nor rows.
        """
        if not parts:
            raise BadRequest("No files uploaded")

        too_large = f"File size too large. Maximum size is {size_label(self.blobs.max_file_size)}"
        if any(p.size is not None and p.size > self.blobs.max_file_size for p in parts):
            raise BadRequest(too_large)

        written: list[tuple[UploadFile, StoredBlob]] = []
        try:
            for part in parts:
                blob = await self.blobs.write(part.filename, part, taken=self._name_recorded)
                written.append((part, blob))

            records = [
                File(
                    name=blob.name,
                    path=self.blobs.url_for(blob.name),
                    size=blob.size,
                    mime_type=sniff_mime(blob.name, part.content_type),
                    user_id=owner.id,
                    is_public=True,
                )
                for part, blob in written
            ]
            stored = await run_in_threadpool(self.files.add_many, records)
        except FileTooLarge as e:
            self.blobs.discard([blob for _, blob in written])
            raise BadRequest(too_large) from e
        except BlobWriteError as e:
            logger.error("Blob write failed: %s", e)
            self.blobs.discard([blob for _, blob in written])
            raise Internal("Failed to store file") from e
        except SQLAlchemyError as e:
            logger.error("Saving file metadata failed: %s", e)
            self.blobs.discard([blob for _, blob in written])
            raise Internal("Failed to save file metadata") from e

        logger.info("User %s uploaded %d file(s)", owner.id, len(stored))
        return stored

    def _name_recorded(self, name: str) -> bool:
        # a row can outlive its blob, and its path stays reserved
        return self.files.get_by_path(self.blobs.url_for(name)) is not None

    def list_files(self, owner: User) -> list[File]:
        try:
            return self.files.list_for_owner(owner.id)
        except SQLAlchemyError as e:
            logger.error("Listing files failed: %s", e)
            raise Internal("Failed to fetch files") from e

    def delete_by_id(self, owner: User, file_id: str) -> None:
        try:
            record = self.files.get(file_id)
        except SQLAlchemyError as e:
            logger.error("File lookup failed: %s", e)
            raise Internal("Failed to delete file") from e
        self._delete(owner, record)

    def delete_by_url(self, owner: User, url: str | None) -> None:
        if not url or not url.strip():
            raise BadRequest("File URL is required")

        record = None
        try:
            for path in url_path_candidates(url):
                record = self.files.get_by_path(path)
                if record is not None:
                    break
        except SQLAlchemyError as e:
            logger.error("File lookup failed: %s", e)
            raise Internal("Failed to delete file") from e
        self._delete(owner, record)

    def _delete(self, owner: User, record: File | None) -> None:
        if record is None:
            raise NotFound("File not found")
        if record.user_id != owner.id:
            raise Forbidden("Not authorized to delete this file")

        try:
            name = self.blobs.name_from_url(record.path)
            if name is None or not self.blobs.delete(name):
                # disk and metadata already diverged; converge on "absent"
                logger.warning("Blob for file %s was already missing", record.id)
            self.files.delete(record)
        except (OSError, SQLAlchemyError) as e:
            logger.error("File deletion error: %s", e)
            raise Internal("Failed to delete file") from e

        logger.info("User %s deleted file %s", owner.id, record.id)
