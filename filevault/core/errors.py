"""Error taxonomy and the ``{status: false, message}`` envelope.

Handlers raise one of the exceptions below with a static, human-readable
message. The registered exception handlers render every failure, including
framework-level 404/405 and validation errors, with the same envelope.
"""
import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ServiceError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(status_code=self.status_code, detail=self.message)


class BadRequest(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class BodyTooLarge(BadRequest):
    default_message = "Request body too large"


class Unauthorized(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "API key is required"


class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "File not found"


class Internal(ServiceError):
    pass


def envelope(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": False, "message": message},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        if isinstance(exc, ServiceError):
            logger.error("%s %s -> %d %s", request.method, request.url.path, exc.status_code, message)
        return envelope(exc.status_code, message, getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        if any(error.get("type") == "json_invalid" for error in exc.errors()):
            message = "Invalid JSON payload"
        else:
            message = "Invalid request"
        logger.error("%s %s -> 400 %s", request.method, request.url.path, message)
        return envelope(status.HTTP_400_BAD_REQUEST, message)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
