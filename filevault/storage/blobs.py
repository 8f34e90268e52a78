"""Disk-backed blob storage.

Blobs live in one flat directory keyed by their final filename. A desired name
that is already taken gets a `` copyN`` suffix before its extension; the name
is claimed with an exclusive create so two concurrent uploads of the same name
can never write into the same file.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, Protocol

import aiofiles
from starlette.concurrency import run_in_threadpool
from werkzeug.security import safe_join

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MiB
MAX_NAME_PROBES = 10_000
FALLBACK_NAME = "upload.bin"


class ByteSource(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


class BlobError(Exception):
    pass


class FileTooLarge(BlobError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"blob exceeds {limit} bytes")


class BlobWriteError(BlobError):
    pass


@dataclass(frozen=True)
class StoredBlob:
    name: str
    size: int
    path: Path


def clean_name(name: str | None) -> str:
    """Reduce a client supplied filename to a bare basename."""
    name = (name or "").replace("\x00", "").replace("\\", "/")
    name = PurePosixPath(name).name.strip()
    if name in ("", ".", ".."):
        return FALLBACK_NAME
    return name


def candidate_names(name: str) -> Iterator[str]:
    """``report.pdf``, ``report copy1.pdf``, ``report copy2.pdf``, ..."""
    yield name
    ext = os.path.splitext(name)[1]
    stem = name[: -len(ext)] if ext else name
    counter = 1
    while True:
        yield f"{stem} copy{counter}{ext}"
        counter += 1


class BlobStore:
    def __init__(self, directory: Path, max_file_size: int, url_prefix: str = "/uploads"):
        self.directory = Path(directory)
        self.max_file_size = max_file_size
        self.url_prefix = url_prefix.rstrip("/")

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path | None:
        joined = safe_join(str(self.directory), name)
        return Path(joined) if joined is not None else None

    def url_for(self, name: str) -> str:
        return f"{self.url_prefix}/{name}"

    def name_from_url(self, url_path: str) -> str | None:
        prefix = self.url_prefix + "/"
        if not url_path.startswith(prefix):
            return None
        return url_path[len(prefix):] or None

    async def write(
        self,
        desired_name: str | None,
        source: ByteSource,
        taken: Callable[[str], bool] | None = None,
    ) -> StoredBlob:
        """Stream ``source`` into a fresh blob and return where it landed.

        ``taken`` lets the caller reserve names the directory does not know
        about, such as metadata rows whose blob has gone missing from disk.
        """
        self.ensure_directory()
        base = clean_name(desired_name)

        for attempt, candidate in enumerate(candidate_names(base)):
            if attempt >= MAX_NAME_PROBES:
                raise BlobWriteError(f"no free name for {base!r}")
            target = self.path_for(candidate)
            if target is None:
                raise BlobWriteError(f"unsafe name {candidate!r}")
            if taken is not None and await run_in_threadpool(taken, candidate):
                continue
            try:
                out = await aiofiles.open(target, "xb")
            except FileExistsError:
                continue
            except OSError as e:
                raise BlobWriteError(str(e)) from e

            try:
                size = await self._copy(source, out)
            except BaseException as e:
                target.unlink(missing_ok=True)
                if isinstance(e, OSError):
                    raise BlobWriteError(str(e)) from e
                raise
            if candidate != base:
                logger.debug("Name %r taken, stored as %r", base, candidate)
            return StoredBlob(name=candidate, size=size, path=target)

        raise BlobWriteError(f"no free name for {base!r}")  # pragma: no cover

    async def _copy(self, source: ByteSource, out) -> int:
        size = 0
        try:
            while chunk := await source.read(CHUNK_SIZE):
                size += len(chunk)
                if size > self.max_file_size:
                    raise FileTooLarge(self.max_file_size)
                await out.write(chunk)
        finally:
            await out.close()
        return size

    def delete(self, name: str) -> bool:
        """Remove a blob. Returns False when there was nothing to remove."""
        target = self.path_for(name)
        if target is None:
            return False
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True

    def discard(self, blobs: list[StoredBlob]) -> None:
        for blob in blobs:
            try:
                blob.path.unlink(missing_ok=True)
            except OSError:
                logger.exception("Failed to remove blob %s", blob.name)
