import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from filevault.models.database import Base, utcnow


def _id32() -> str:
    return uuid.uuid4().hex


class Permission(str, enum.Enum):
    READ = "READ"
    WRITE = "WRITE"
    DELETE = "DELETE"
    FULL_ACCESS = "FULL_ACCESS"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_id32)
    name: Mapped[str] = mapped_column(String(120))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    role: Mapped[str] = mapped_column(String(32), default="user")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # One user → many keys / files
    api_keys: Mapped[list["ApiKey"]] = relationship(back_populates="user")
    files: Mapped[list["File"]] = relationship(back_populates="owner")  # noqa: F821


class ApiKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_id32)
    name: Mapped[str] = mapped_column(String(120), default="default")
    key: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    permission: Mapped[Permission] = mapped_column(
        Enum(Permission, native_enum=False, length=16), default=Permission.FULL_ACCESS
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    user: Mapped[User] = relationship(back_populates="api_keys")

    def allows(self, needed: Permission) -> bool:
        return self.permission in (needed, Permission.FULL_ACCESS)
