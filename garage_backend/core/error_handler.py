"""
Turning exceptions into API responses.

Every error body has the same shape, {msg, code, details}. Domain errors keep
their message unless they are server errors; anything unexpected is logged
with its traceback and answered with a generic 500.
"""
import logging
import uuid
from typing import Union

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from garage_backend.core.config import settings
from garage_backend.core.exceptions import GarageError

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "An internal error occurred. Please try again later."
MAX_MESSAGE_LENGTH = 200

# Fragments that point at credentials, drivers or stack frames
_LEAKY_FRAGMENTS = (
    "password", "secret", "token", "key", "credential",
    "sqlalchemy", "asyncpg", "psycopg", "postgresql", "sqlite",
    "traceback", "file \"", "line ",
)


def is_sensitive_error(message: str) -> bool:
    lowered = message.lower()
    return any(fragment in lowered for fragment in _LEAKY_FRAGMENTS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """Message safe to show a client. DEBUG returns it untouched."""
    text = str(error)
    if settings.DEBUG:
        return text
    if is_sensitive_error(text):
        return GENERIC_MESSAGE
    if len(text) > MAX_MESSAGE_LENGTH:
        return text[:MAX_MESSAGE_LENGTH] + "..."
    return text


def error_body(msg: str, code: str, details: dict | None = None) -> dict:
    return {"msg": msg, "code": code, "details": details or {}}


async def garage_error_handler(request: Request, exc: GarageError) -> JSONResponse:
    server_side = exc.status_code >= 500
    logger.log(
        logging.ERROR if server_side else logging.WARNING,
        "%s on %s %s: %s",
        type(exc).__name__, request.method, request.url.path, exc.message,
        extra={"error_data": exc.to_dict()},
    )
    msg = sanitize_error_message(exc.message) if server_side else exc.message
    return JSONResponse(status_code=exc.status_code, content=error_body(msg, exc.code, exc.details))


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """Last line for exceptions no handler claimed."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as exc:
            error_id = uuid.uuid4().hex[:12]
            logger.exception(
                "Unhandled %s [%s] on %s %s",
                type(exc).__name__, error_id, request.method, request.url.path,
            )
            if settings.DEBUG:
                details = {"error_id": error_id, "type": type(exc).__name__}
                return JSONResponse(status_code=500, content=error_body(str(exc), "INTERNAL_ERROR", details))
            return JSONResponse(
                status_code=500,
                content=error_body(GENERIC_MESSAGE, "INTERNAL_ERROR", {"error_id": error_id}),
            )
