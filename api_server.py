"""
FastAPI Server for the PiMaze game backend
Serves the coin economy API to the game client and the admin panel
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config.config import (
    validate_config,
    ADMIN_SECRET,
    API_HOST,
    API_PORT,
    API_RATE_LIMIT,
    CORS_ORIGINS,
    ENVIRONMENT,
    MONTH_CLOSE_ENABLED,
    PI_API_BASE,
    PI_API_KEY,
    PI_VERIFY_TIMEOUT_SECONDS,
)
from config.economy_config import RateBands, RewardPolicy, DEFAULT_RATE_BANDS
from config.logging import setup_logging
from config.sentry import init_sentry
from pimaze.api.admin import router as admin_router
from pimaze.api.router import router as api_router
from pimaze.core.exceptions import CooldownError, EconomyError
from pimaze.database.engine import Database, create_database
from pimaze.database.models import utcnow
from pimaze.services.pi_auth import PiAuthClient
from pimaze.tasks.month_close import schedule_month_close

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()


def create_app(
    database: Optional[Database] = None,
    auth_client: Optional[PiAuthClient] = None,
    *,
    policy: Optional[RewardPolicy] = None,
    bands: RateBands = DEFAULT_RATE_BANDS,
    clock: Callable[[], datetime] = utcnow,
    admin_secret: Optional[str] = None,
    rate_limit: Optional[str] = None,
    start_scheduler: bool = MONTH_CLOSE_ENABLED,
) -> FastAPI:
    """
    Build the FastAPI application

    Args:
        database: Store (defaults to DATABASE_URL)
        auth_client: Pi identity client (defaults to PI_API_BASE/PI_API_KEY)
        policy: Reward policy (defaults to RewardPolicy.from_env())
        bands: Monthly rate bands
        clock: UTC clock used by every service
        admin_secret: X-Admin-Secret value (defaults to ADMIN_SECRET)
        rate_limit: Per-IP limit, e.g. "300/minute"
        start_scheduler: Register the month close cron job
    """
    database = database or create_database()
    auth_client = auth_client or PiAuthClient(
        api_base=PI_API_BASE,
        api_key=PI_API_KEY or None,
        timeout_seconds=PI_VERIFY_TIMEOUT_SECONDS,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan context manager for startup/shutdown events
        """
        # Startup
        logger.info("Starting PiMaze API Server...")
        init_sentry()

        # NOTE: Database tables managed by Alembic migrations
        # Run: alembic upgrade head
        await database.init()

        scheduler = None
        if start_scheduler:
            scheduler = AsyncIOScheduler(timezone="UTC")
            schedule_month_close(scheduler, database, bands=bands, clock=clock)
            scheduler.start()
            logger.info("Month close scheduler started")

        yield

        # Shutdown
        logger.info("Shutting down PiMaze API Server...")

        if scheduler is not None:
            scheduler.shutdown(wait=False)
            logger.info("Month close scheduler stopped")

        await database.close()
        logger.info("Database connections closed")

    # Per-IP rate limiter: many players can share one IP behind a NAT
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[rate_limit or API_RATE_LIMIT],  # Global limit on all endpoints
        storage_uri="memory://",
    )

    app = FastAPI(
        title="PiMaze API",
        description="Coin economy backend for the PiMaze game",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Collaborators used by the dependencies in pimaze/api/dependencies.py
    app.state.database = database
    app.state.auth_client = auth_client
    app.state.reward_policy = policy or RewardPolicy.from_env()
    app.state.rate_bands = bands
    app.state.clock = clock
    app.state.admin_secret = ADMIN_SECRET if admin_secret is None else admin_secret

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        """
        Security headers on every response
        """
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        if ENVIRONMENT == "production" and request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response

    # Game API under /api, admin panel under /admin
    app.include_router(api_router, prefix="/api")
    app.include_router(admin_router)

    @app.get("/")
    async def root():
        """
        Root endpoint
        """
        return {
            "service": "PiMaze API",
            "version": "1.0.0",
            "status": "running",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health():
        """
        Health check endpoint
        """
        return {"status": "healthy"}

    # Typed economy failures: machine-readable reason, no internals
    @app.exception_handler(EconomyError)
    async def economy_exception_handler(request: Request, exc: EconomyError):
        content = {"ok": False, "error": exc.reason, "detail": exc.message}
        headers = None

        if isinstance(exc, CooldownError):
            content["retry_after"] = exc.retry_after
            headers = {"Retry-After": str(exc.retry_after)}

        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} -> {exc.reason}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.reason}: {exc.message}")

        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """
        Malformed bodies and query parameters are client errors (400)
        """
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "invalid_request", "detail": "Malformed request"},
        )

    # Error handler for HTTPException (must be before generic Exception handler)
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """
        Handle HTTPException properly - return correct status code and detail
        """
        # Log 4xx as warning, 5xx as error
        if exc.status_code >= 500:
            logger.error(f"HTTP {exc.status_code}: {exc.detail}")
        elif exc.status_code >= 400:
            logger.warning(f"HTTP {exc.status_code}: {exc.detail}")

        error = "unauthorized" if exc.status_code == 401 else "error"
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": error, "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # Error handler for unexpected exceptions
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Global exception handler for unexpected errors
        """
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "ok": False,
                "error": "internal_error",
                "detail": "An error occurred",
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # Validate configuration
    try:
        validate_config()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        exit(1)

    logger.info("Configuration validated successfully")

    uvicorn.run(
        "api_server:app",
        host=API_HOST,
        port=API_PORT,
        reload=ENVIRONMENT == "development",
        log_level="info",
    )
