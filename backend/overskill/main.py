"""Main FastAPI application."""

import logging
import re
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database import engine, Base, get_db, DATABASE_URL
from .api import (
    apps_router,
    files_router,
    versions_router,
    deployments_router,
    outcome_router,
    storage_router,
    jobs_router,
)
from .core.config import settings, ConfigurationError, Environment
from .core.logging_config import setup_logging
from .core.migrator import run_migrations, MigrationError
from .exceptions import OverskillException
from .middleware.exception_handler import overskill_exception_handler, database_exception_handler
from .middleware.request_context import RequestContextMiddleware

setup_logging(log_level=settings.log_level, log_format=settings.log_format)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def _mask_url(url: str) -> str:
    """Mask the password in a database URL for logging."""
    return re.sub(r'://([^:]+):([^@]+)@', r'://\1:***@', url)


def _validate_database_connection() -> None:
    """Exit with an actionable message when the database is unreachable."""
    masked = _mask_url(DATABASE_URL)
    logger.info(f"Connecting to database: {masked}")

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection verified")
    except SQLAlchemyError as e:
        error_str = str(e)
        if DATABASE_URL.startswith("postgresql"):
            if "authentication failed" in error_str or "password" in error_str.lower():
                hint = "Check username and password in DATABASE_URL"
            elif "does not exist" in error_str:
                hint = "Create the database: createdb <database_name>"
            else:
                hint = "Verify PostgreSQL is running and DATABASE_URL is correct"
        elif DATABASE_URL.startswith("sqlite"):
            hint = "Check that the directory exists and is writable"
        else:
            hint = "Check DATABASE_URL"
        logger.critical(
            "Database connection failed.\n"
            f"  DATABASE_URL: {masked}\n"
            f"  {hint}\n"
            f"  Error: {error_str}"
        )
        raise SystemExit(1) from e


def _run_migrations() -> None:
    try:
        result = run_migrations(engine, Base)
    except MigrationError as e:
        logger.critical(f"Database migration failed: {e}")
        raise SystemExit(1) from e
    if result.applied > 0:
        logger.info(f"Applied {result.applied} database migration(s)")
    elif result.baselined > 0:
        logger.info(f"Fresh install: baselined {result.baselined} migrations")
    else:
        logger.debug("No pending migrations")


_validate_database_connection()
_run_migrations()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup validation for the OverSkill storage API."""
    logger.info(f"Environment: {settings.environment.value}")
    try:
        settings.validate_production_config()
    except ConfigurationError as e:
        logger.critical(f"STARTUP BLOCKED: {e}")
        raise SystemExit(1) from e

    if settings.environment == Environment.DEVELOPMENT:
        if settings.r2_storage_enabled and not settings.object_store_configured:
            logger.warning(
                "R2_STORAGE_ENABLED is true but R2 credentials are incomplete; "
                "all content will stay inline."
            )
        origins = settings.get_cors_origins()
        localhost_origins = [o for o in origins if "localhost" in o or "127.0.0.1" in o]
        if localhost_origins:
            logger.warning(
                "CORS allows localhost origins: %s. Remove these for production.",
                localhost_origins,
            )
        if not settings.deploy_command:
            logger.warning("DEPLOY_COMMAND is empty; deployment jobs will be marked failed.")

    yield


app = FastAPI(
    title="OverSkill Storage API",
    description=(
        "Tiered file storage, version snapshots and deployment state for "
        "AI-generated apps. File content lives inline in the database, in "
        "Cloudflare R2, or in both; versions capture the full app state; "
        "deployments track what is live in preview, staging and production."
    ),
    version=VERSION,
    license_info={"name": "MIT", "url": "https://opensource.org/licenses/MIT"},
    lifespan=lifespan,
)

# CORS wraps request context.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "X-Request-ID"],
)
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(OverskillException, overskill_exception_handler)
app.add_exception_handler(SQLAlchemyError, database_exception_handler)

db_type = "PostgreSQL" if DATABASE_URL.startswith("postgresql") else "SQLite"
logger.info(
    "OverSkill storage API started | env=%s | db=%s | tiering=%s | cors=%s",
    settings.environment.value,
    db_type,
    "enabled" if settings.r2_storage_enabled and settings.object_store_configured else "disabled",
    ",".join(settings.get_cors_origins()),
)

app.include_router(apps_router)
app.include_router(files_router)
app.include_router(versions_router)
app.include_router(deployments_router)
app.include_router(outcome_router)
app.include_router(storage_router)
app.include_router(jobs_router)


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "name": "OverSkill Storage API",
        "version": VERSION,
        "status": "running"
    }


_startup_time = time.monotonic()


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Database status, uptime and app count.

    Never raises: a database failure reports ``degraded`` so load balancers
    can still probe without receiving 5xx.
    """
    db_status = "ok"
    app_count = 0
    try:
        app_count = db.execute(text("SELECT COUNT(*) FROM apps")).scalar() or 0
    except SQLAlchemyError:
        db_status = "error"

    return {
        "status": "healthy" if db_status == "ok" else "degraded",
        "db": db_status,
        "uptime_seconds": round(time.monotonic() - _startup_time),
        "version": VERSION,
        "app_count": app_count,
        "object_store": "configured" if settings.object_store_configured else "not_configured",
    }
