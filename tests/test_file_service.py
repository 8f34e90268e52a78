"""FileService against in-memory fakes of the metadata store."""

import io
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError
from starlette.datastructures import Headers, UploadFile

from filevault.core.errors import BadRequest, Forbidden, Internal, NotFound
from filevault.services.files import FileService, size_label, sniff_mime, url_path_candidates
from filevault.storage.blobs import BlobStore


class FakeFileStore:
    def __init__(self, fail_on_add: bool = False):
        self.rows = {}
        self.fail_on_add = fail_on_add

    def add_many(self, records):
        if self.fail_on_add:
            raise OperationalError("INSERT", {}, Exception("database is locked"))
        for i, record in enumerate(records):
            record.id = f"id-{len(self.rows) + i}"
        self.rows.update({r.id: r for r in records})
        return list(records)

    def get(self, file_id):
        return self.rows.get(file_id)

    def get_by_path(self, path):
        return next((r for r in self.rows.values() if r.path == path), None)

    def delete(self, record):
        del self.rows[record.id]


def part(name: str, data: bytes, content_type: str | None = None) -> UploadFile:
    headers = Headers({"content-type": content_type}) if content_type else None
    return UploadFile(file=io.BytesIO(data), filename=name, size=len(data), headers=headers)


@pytest.fixture
def blobs(tmp_path):
    return BlobStore(tmp_path / "uploads", max_file_size=1024)


@pytest.fixture
def owner():
    return SimpleNamespace(id="owner-1")


@pytest.mark.asyncio
async def test_upload_records_blob_metadata(blobs, owner):
    store = FakeFileStore()
    service = FileService(store, blobs)

    [record] = await service.upload(owner, [part("photo.png", b"png-bytes")])

    assert record.name == "photo.png"
    assert record.path == "/uploads/photo.png"
    assert record.size == 9
    assert record.mime_type == "image/png"
    assert record.user_id == "owner-1"
    assert record.is_public is True


@pytest.mark.asyncio
async def test_recorded_path_is_not_reused(blobs, owner):
    service = FileService(FakeFileStore(), blobs)
    await service.upload(owner, [part("a.txt", b"1")])
    (blobs.directory / "a.txt").unlink()

    [record] = await service.upload(owner, [part("a.txt", b"2")])

    assert record.name == "a copy1.txt"
    assert record.path == "/uploads/a copy1.txt"


@pytest.mark.asyncio
async def test_metadata_failure_removes_written_blobs(blobs, owner):
    service = FileService(FakeFileStore(fail_on_add=True), blobs)

    with pytest.raises(Internal) as exc:
        await service.upload(owner, [part("a.txt", b"a"), part("b.txt", b"b")])

    assert exc.value.message == "Failed to save file metadata"
    assert list(blobs.directory.iterdir()) == []


@pytest.mark.asyncio
async def test_declared_oversize_rejected_before_writing(blobs, owner):
    service = FileService(FakeFileStore(), blobs)

    with pytest.raises(BadRequest):
        await service.upload(owner, [part("big.bin", b"x" * 2048)])

    assert not blobs.directory.exists() or list(blobs.directory.iterdir()) == []


@pytest.mark.asyncio
async def test_empty_upload(blobs, owner):
    with pytest.raises(BadRequest) as exc:
        await FileService(FakeFileStore(), blobs).upload(owner, [])
    assert exc.value.message == "No files uploaded"


@pytest.mark.asyncio
async def test_delete_rules(blobs, owner):
    store = FakeFileStore()
    service = FileService(store, blobs)
    [record] = await service.upload(owner, [part("a.txt", b"a")])

    with pytest.raises(Forbidden):
        service.delete_by_id(SimpleNamespace(id="someone-else"), record.id)
    assert (blobs.directory / "a.txt").exists()

    service.delete_by_url(owner, "/uploads/a.txt")
    assert store.rows == {}
    assert not (blobs.directory / "a.txt").exists()

    with pytest.raises(NotFound):
        service.delete_by_id(owner, record.id)


def test_delete_by_url_requires_url(blobs, owner):
    service = FileService(FakeFileStore(), blobs)
    for url in (None, "", "   "):
        with pytest.raises(BadRequest):
            service.delete_by_url(owner, url)


def test_sniff_mime():
    assert sniff_mime("a.txt", "application/custom") == "application/custom"
    assert sniff_mime("a.pdf", None) == "application/pdf"
    assert sniff_mime("blob", None) == "application/octet-stream"


def test_size_label():
    assert size_label(1024 ** 3) == "1GB"
    assert size_label(25 * 1024 ** 2) == "25MB"
    assert size_label(1000) == "1000 bytes"


def test_url_path_candidates():
    assert url_path_candidates("/uploads/a.txt") == ["/uploads/a.txt"]
    assert url_path_candidates("https://files.example.com/uploads/a%20copy1.txt") == [
        "/uploads/a%20copy1.txt",
        "/uploads/a copy1.txt",
    ]
