"""Exception handlers turning service errors into structured JSON responses."""

import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import DatabaseError, OverskillException

logger = logging.getLogger(__name__)


async def overskill_exception_handler(request: Request, exc: OverskillException) -> JSONResponse:
    """
    Render an OverskillException as ``{"error", "message", "details"}``.

    Client errors are logged at warning level, server-side and external
    dependency failures at error level.

    Args:
        request: FastAPI request object
        exc: OverskillException instance

    Returns:
        JSONResponse with the exception's status code
    """
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"OverskillException: {exc.error_code.value}",
        extra={
            "error_code": exc.error_code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
            "status_code": exc.status_code
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Unexpected persistence failures surface as DATABASE_ERROR (500)."""
    logger.exception(
        "Unhandled database error",
        extra={"path": request.url.path, "method": request.method},
    )
    error = DatabaseError("Database operation failed")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())
