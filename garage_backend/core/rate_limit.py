"""
Request rate limits (slowapi, in-process storage).

Staff routes share the default limit. The customer approval routes are
anonymous and the token in the URL is their only credential, so they get a
tighter one through get_public_limit().
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from garage_backend.core.config import settings

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 60


def get_client_ip(request: Request) -> str:
    # Behind the proxy the left-most X-Forwarded-For entry is the caller
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    caller = forwarded_for.split(",")[0].strip()
    return caller or get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    enabled=settings.RATE_LIMIT_ENABLED,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit %s hit by %s on %s", exc.detail, get_client_ip(request), request.url.path)
    return JSONResponse(
        status_code=429,
        content={
            "msg": "Too many requests, slow down and try again shortly.",
            "code": "RATE_LIMITED",
            "details": {"limit": str(exc.detail), "retry_after": RETRY_AFTER_SECONDS},
        },
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


def get_public_limit():
    return limiter.limit(settings.RATE_LIMIT_PUBLIC)
