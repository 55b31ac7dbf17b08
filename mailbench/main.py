"""Mailbench - connected Gmail accounts and deliverability tooling backend."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mailbench import __version__
from mailbench.config import get_config
from mailbench.db import init_db
from mailbench.exceptions import MailbenchError
from mailbench.utils.encryption import get_encryption_service
from mailbench.utils.security import sanitize_log_message

config = get_config()

# Configure logging
logging.basicConfig(
    level=config.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Filter to exclude health check endpoints from access logs
class EndpointFilter(logging.Filter):
    """Filter to exclude specific endpoints from Granian access logs."""

    def __init__(self, excluded_paths: list[str]) -> None:
        super().__init__()
        self.excluded_paths = excluded_paths

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return not any(path in message for path in self.excluded_paths)


logging.getLogger("granian.access").addFilter(EndpointFilter(["/health"]))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("Starting Mailbench (environment=%s)...", config.environment)

    # Fail fast when the envelope secret is missing in production
    get_encryption_service()

    if not config.google_client_id or not config.google_client_secret:
        logger.warning("GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET not set - Gmail connect is unavailable")

    await init_db()

    yield

    logger.info("Shutting down Mailbench...")


# Create FastAPI app
app = FastAPI(
    title="Mailbench",
    description="Connected Gmail accounts, sharing and deliverability search",
    version=__version__,
    lifespan=lifespan,
)

logger.info("CORS origins: %d configured", len(config.cors_origins))

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    # Cannot use allow_credentials=True with allow_origins=["*"]
    allow_credentials=config.cors_origins != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


# Security Headers Middleware
@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    """Add security headers to all responses.

    Headers added:
    - X-Content-Type-Options: nosniff (prevents MIME sniffing)
    - X-Frame-Options: DENY (prevents clickjacking)
    - Strict-Transport-Security: HSTS (production only)
    - Cache-Control: no-store on API responses
    """
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    if config.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    # API responses may carry account data
    if request.url.path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-store"

    return response


@app.exception_handler(MailbenchError)
async def mailbench_exception_handler(request: Request, exc: MailbenchError):
    """Render application errors as ``{"detail": message}`` with their status code."""
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            sanitize_log_message(exc.message),
        )
    else:
        logger.info(
            "%s on %s %s (%d)", type(exc).__name__, request.method, request.url.path, exc.status_code
        )

    content = {"detail": exc.message}
    content.update(exc.details)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Generic exception handler to prevent stack trace exposure.

    In DEBUG mode (MAILBENCH_DEBUG=true), detailed errors are shown for development.
    Otherwise a generic message is returned. Full details are always logged.
    """
    logger.error(
        "Unhandled exception: %s: %s",
        type(exc).__name__,
        sanitize_log_message(str(exc)),
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
            "client": request.client.host if request.client else "unknown",
        },
    )

    if config.debug:
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__, "debug": True},
        )

    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please contact support if this persists."},
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "mailbench", "version": __version__}


# API routes
from mailbench.api import api_router  # noqa: E402

app.include_router(api_router)


if __name__ == "__main__":
    from granian import Granian
    from granian.constants import Interfaces

    Granian(
        "mailbench.main:app",
        address="0.0.0.0",  # nosec B104 - containerized service
        port=int(os.getenv("PORT", "8000")),
        interface=Interfaces.ASGI,
    ).serve()
