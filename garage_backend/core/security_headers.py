"""
Response headers for browsers.

The customer approval pages put the approval token in the URL, so those
responses must never be cached or leak through a Referer header.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from garage_backend.core.config import settings

PUBLIC_APPROVAL_PATHS = (
    "/api/service-orders/budget/approval-details/",
    "/api/service-orders/budget/approve-external",
    "/api/service-orders/budget/reject-external",
)

DOCS_PATHS = {"/docs", "/redoc", "/openapi.json"}

API_CSP = (
    "default-src 'self'; object-src 'none'; base-uri 'self'; "
    "frame-ancestors 'none'; img-src 'self' data: https:"
)
# Swagger UI loads its bundle from jsdelivr
DOCS_CSP = (
    "default-src 'self'; object-src 'none'; base-uri 'self'; "
    "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
    "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; img-src 'self' data: https:"
)

HSTS = "max-age=31536000; includeSubDomains"


def is_public_approval_path(path: str) -> bool:
    return path.startswith(PUBLIC_APPROVAL_PATHS)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        path = request.url.path
        headers = response.headers

        headers["Content-Security-Policy"] = DOCS_CSP if path in DOCS_PATHS else API_CSP
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Frame-Options"] = "DENY"

        if is_public_approval_path(path):
            headers["Referrer-Policy"] = "no-referrer"
            headers["Cache-Control"] = "no-store"
        else:
            headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        if settings.ENVIRONMENT == "production" and not settings.DEBUG:
            headers["Strict-Transport-Security"] = HSTS
        return response
