import logging
import time

from fastapi import FastAPI, Request, status
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from filevault.core.config import Settings
from filevault.core.errors import BodyTooLarge, envelope

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
    "Cross-Origin-Resource-Policy": "cross-origin",
    "Cross-Origin-Opener-Policy": "same-origin",
}

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later"


# slowapi calls this synchronously from its middleware
def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    logger.error("Rate limit exceeded for %s (%s)", get_remote_address(request), exc.detail)
    return envelope(status.HTTP_429_TOO_MANY_REQUESTS, RATE_LIMIT_MESSAGE)


def body_limit_for(headers: Headers, settings: Settings) -> int:
    content_type = headers.get("content-type", "")
    if content_type.startswith("multipart/"):
        return settings.max_request_size
    return settings.max_file_size


class BodyLimitMiddleware:
    """Stop reading a request body as soon as it passes the ceiling.

    The Content-Length check in the edge middleware cannot see chunked bodies,
    so the byte count is kept on the raw ``receive`` stream instead.
    """

    def __init__(self, app: ASGIApp, settings: Settings):
        self.app = app
        self.settings = settings

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        limit = body_limit_for(Headers(scope=scope), self.settings)
        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    logger.error("Request body passed %d bytes while streaming", limit)
                    raise BodyTooLarge()
            return message

        await self.app(scope, limited_receive, send)


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure the HTTP edge. The last middleware added runs first."""
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.middleware("http")
    async def edge(request: Request, call_next):
        started = time.perf_counter()

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > body_limit_for(request.headers, settings):
            logger.error("Request body too large: %s bytes", content_length)
            response = envelope(status.HTTP_400_BAD_REQUEST, BodyTooLarge.default_message)
        else:
            response = await call_next(request)

        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        if request.url.path.startswith("/uploads"):
            response.headers["Access-Control-Allow-Origin"] = "*"

        logger.info(
            '%s "%s %s" %d %.1fms',
            request.client.host if request.client else "-",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    app.add_middleware(BodyLimitMiddleware, settings=settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
        max_age=settings.cors_max_age,
    )
