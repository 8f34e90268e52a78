from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from filevault.models.file import File


class FileStore:
    def __init__(self, db: Session):
        self.db = db

    def add_many(self, records: Iterable[File]) -> list[File]:
        """Insert every row in one transaction; nothing is kept if the commit fails."""
        records = list(records)
        try:
            self.db.add_all(records)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        for record in records:
            self.db.refresh(record)
        return records

    def list_for_owner(self, user_id: str) -> list[File]:
        stmt = (
            select(File)
            .where(File.user_id == user_id)
            .order_by(File.created_at.desc(), File.id.desc())
        )
        return list(self.db.execute(stmt).scalars())

    def get(self, file_id: str) -> File | None:
        return self.db.get(File, file_id)

    def get_by_path(self, path: str) -> File | None:
        return self.db.execute(select(File).where(File.path == path)).scalars().first()

    def delete(self, record: File) -> None:
        try:
            self.db.delete(record)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
