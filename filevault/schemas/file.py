from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class FileRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    path: str
    size: int
    mime_type: str
    user_id: str
    is_public: bool
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive timestamps; they are always stored in UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class UploadOut(BaseModel):
    status: bool = True
    files: list[FileRecord]
    message: str = "Files uploaded successfully"


class FileListOut(BaseModel):
    status: bool = True
    files: list[FileRecord]


class MessageOut(BaseModel):
    status: bool = True
    message: str


class DeleteByUrlIn(BaseModel):
    url: str | None = None
