from fastapi import APIRouter, Body, Depends, Request, UploadFile
from sqlalchemy.orm import Session
from starlette.datastructures import FormData
from starlette.datastructures import UploadFile as StarletteUploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from filevault.core.config import Settings
from filevault.core.errors import BadRequest, ServiceError
from filevault.core.security import require_permission
from filevault.models.database import get_db
from filevault.models.user import ApiKey, Permission
from filevault.schemas.file import (
    DeleteByUrlIn,
    FileListOut,
    FileRecord,
    MessageOut,
    UploadOut,
)
from filevault.services.files import FileService
from filevault.stores.files import FileStore

router = APIRouter(prefix="/api", tags=["Files"])

SINGLE_FIELD = "file"
MULTI_FIELD = "files"


# --- store / service dependencies ---
def get_file_store(db: Session = Depends(get_db)) -> FileStore:
    return FileStore(db)


def get_file_service(request: Request, files: FileStore = Depends(get_file_store)) -> FileService:
    return FileService(files, request.app.state.blob_store)


# --- multipart parsing happens after authentication ---
async def _read_form(request: Request) -> FormData:
    try:
        return await request.form()
    except ServiceError:
        raise
    except (StarletteHTTPException, MultiPartException) as e:
        raise BadRequest("Malformed multipart body") from e


def _collect_parts(form: FormData, settings: Settings) -> list[UploadFile]:
    single, multi = [], []
    for field, value in form.multi_items():
        if not isinstance(value, StarletteUploadFile):
            continue
        if field == SINGLE_FIELD:
            single.append(value)
        elif field == MULTI_FIELD:
            multi.append(value)
        else:
            raise BadRequest("Unexpected field")

    if len(single) > settings.max_single_files:
        raise BadRequest(
            f"Too many files. Maximum is {settings.max_single_files} file in the '{SINGLE_FIELD}' field"
        )
    if len(multi) > settings.max_multi_files:
        raise BadRequest(f"Too many files. Maximum is {settings.max_multi_files} files per upload")
    return single + multi


# --- upload one or more files ---
@router.post("/upload", response_model=UploadOut)
async def upload_files(
    request: Request,
    api_key: ApiKey = Depends(require_permission(Permission.WRITE)),
    service: FileService = Depends(get_file_service),
):
    form = await _read_form(request)
    try:
        parts = _collect_parts(form, request.app.state.settings)
        stored = await service.upload(api_key.user, parts)
    finally:
        await form.close()

    return UploadOut(files=[FileRecord.model_validate(f) for f in stored])


# --- list the caller's files, newest first ---
@router.get("/files", response_model=FileListOut)
def list_files(
    api_key: ApiKey = Depends(require_permission(Permission.READ)),
    service: FileService = Depends(get_file_service),
):
    files = service.list_files(api_key.user)
    return FileListOut(files=[FileRecord.model_validate(f) for f in files])


# --- delete a file by id ---
@router.delete("/files/{file_id}", response_model=MessageOut)
def delete_file(
    file_id: str,
    api_key: ApiKey = Depends(require_permission(Permission.DELETE)),
    service: FileService = Depends(get_file_service),
):
    service.delete_by_id(api_key.user, file_id)
    return MessageOut(message="File deleted successfully")


# --- delete a file by its public URL ---
@router.delete("/files", response_model=MessageOut)
def delete_file_by_url(
    payload: DeleteByUrlIn | None = Body(default=None),
    api_key: ApiKey = Depends(require_permission(Permission.DELETE)),
    service: FileService = Depends(get_file_service),
):
    service.delete_by_url(api_key.user, payload.url if payload else None)
    return MessageOut(message="File deleted successfully")
