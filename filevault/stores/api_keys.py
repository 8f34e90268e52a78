from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from filevault.models.user import ApiKey


class ApiKeyStore:
    """Read-only view over issued API keys."""

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, key: str) -> ApiKey | None:
        """Return the key row (with its owner loaded) for an exact match, or None."""
        stmt = select(ApiKey).options(joinedload(ApiKey.user)).where(ApiKey.key == key)
        return self.db.execute(stmt).scalar_one_or_none()
