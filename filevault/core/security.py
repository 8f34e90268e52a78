import logging

from fastapi import Depends
from fastapi.security import APIKeyHeader
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filevault.core.errors import Forbidden, Internal, Unauthorized
from filevault.models.database import get_db
from filevault.models.user import ApiKey, Permission
from filevault.stores.api_keys import ApiKeyStore

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="x-api-key", auto_error=False, scheme_name="apiKey")


def get_api_key_store(db: Session = Depends(get_db)) -> ApiKeyStore:
    return ApiKeyStore(db)


def get_api_key(
    presented: str | None = Depends(api_key_header),
    store: ApiKeyStore = Depends(get_api_key_store),
) -> ApiKey:
    if not presented:
        raise Unauthorized("API key is required")

    try:
        api_key = store.resolve(presented)
    except SQLAlchemyError as e:
        logger.error("API key validation error: %s", e)
        raise Internal("Error validating API key") from e

    if api_key is None:
        raise Unauthorized("Invalid API key")
    return api_key


def require_permission(needed: Permission):
    """Dependency factory: the resolved key must grant ``needed`` (or FULL_ACCESS)."""

    def _dep(api_key: ApiKey = Depends(get_api_key)) -> ApiKey:
        if not api_key.allows(needed):
            raise Forbidden("API key does not permit this operation")
        return api_key

    return _dep
