# filevault/models/file.py
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from filevault.models.database import Base, utcnow
from filevault.models.user import User, _id32


class File(Base):
    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_id32)
    name: Mapped[str] = mapped_column(String(255))                    # Final (possibly " copyN") name
    path: Mapped[str] = mapped_column(String(512), unique=True)       # Public URL path, /uploads/<name>
    size: Mapped[int] = mapped_column(BigInteger)                      # Size in bytes
    mime_type: Mapped[str] = mapped_column(String(127))
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)

    # Many files → one owner (User)
    owner: Mapped[User] = relationship(back_populates="files")
