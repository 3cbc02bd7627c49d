"""
FastAPI application for garage service orders and parts inventory.

Middleware order matters: CORS is outermost, then security headers, then the
catch-all error sanitizer, then the body size guard closest to the routes.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from garage_backend import __version__
from garage_backend.api.routes import service_orders, inventory_entries, parts
from garage_backend.core.config import settings
from garage_backend.core.database import AsyncSessionLocal, engine
from garage_backend.core.error_handler import ErrorSanitizationMiddleware, error_body, garage_error_handler
from garage_backend.core.exceptions import GarageError
from garage_backend.core.rate_limit import limiter, rate_limit_exceeded_handler
from garage_backend.core.security_headers import SecurityHeadersMiddleware
from garage_backend.core.utils import utcnow

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Service order and inventory payloads are small JSON documents
MAX_BODY_BYTES = 1024 * 1024

API_DESCRIPTION = """
Service orders for auto-repair shops, from reception to delivery, with a
parts inventory that follows the order status.

Staff endpoints take a Bearer token with `sub` and `garage_id` claims.
The budget approval endpoints under `/api/service-orders/budget/` that end in
`-external` (and `approval-details`) are public and take the link token.
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "%s %s up (environment=%s, rate limiting %s)",
        settings.APP_NAME, __version__, settings.ENVIRONMENT,
        "enabled" if settings.RATE_LIMIT_ENABLED else "disabled",
    )
    yield
    await engine.dispose()
    logger.info("Database engine disposed")


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > MAX_BODY_BYTES:
            logger.warning("Rejected %s byte body on %s", declared, request.url.path)
            return JSONResponse(
                status_code=413,
                content=error_body("Request body too large", "REQUEST_TOO_LARGE", {"max_bytes": MAX_BODY_BYTES}),
            )
        return await call_next(request)


app = FastAPI(
    title="Garage Service Orders API",
    description=API_DESCRIPTION,
    version=__version__,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Health", "description": "Liveness and database ping"},
        {"name": "Service Orders", "description": "Order lifecycle and budget approval"},
        {"name": "Inventory", "description": "Stock entries and manual exits"},
        {"name": "Parts", "description": "Part catalog and stock levels"},
    ],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(GarageError, garage_error_handler)

# add_middleware wraps, so the last one added runs first
app.add_middleware(RequestSizeLimitMiddleware)
app.add_middleware(ErrorSanitizationMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router, tag in (
    (service_orders.router, "Service Orders"),
    (inventory_entries.router, "Inventory"),
    (parts.router, "Parts"),
):
    app.include_router(router, prefix="/api", tags=[tag])


@app.get("/", tags=["Health"])
async def root():
    return {"message": settings.APP_NAME, "version": __version__, "status": "operational"}


@app.get("/health", tags=["Health"])
async def health_check():
    """Pings the database; 503 when it cannot be reached."""
    report = {"status": "healthy", "database": "connected", "timestamp": utcnow().isoformat()}
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("Health check could not reach the database: %s", type(exc).__name__)
        report.update(status="unhealthy", database=f"error: {type(exc).__name__}")
        return JSONResponse(status_code=503, content=report)
    return report
