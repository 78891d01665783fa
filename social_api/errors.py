"""
Application error kinds and their HTTP rendering.

Services raise these; the handlers registered by ``install_error_handlers``
turn them into the standard response envelope with a fixed English message.
The optional ``detail`` is logged but never sent to the client.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 422
    message = "Invalid request"


class Unauthorized(AppError):
    status_code = 401
    message = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    message = "Forbidden"


class NotFound(AppError):
    status_code = 404
    message = "Not found"


class Conflict(AppError):
    status_code = 409
    message = "Conflict"


class InternalError(AppError):
    status_code = 500
    message = "Internal server error"


def _envelope(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "status_code": status_code,
            "data": None,
            "message": message,
            "success": False,
        },
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.detail)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    response = _envelope(exc.status_code, exc.message)
    if isinstance(exc, Unauthorized):
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return _envelope(InternalError.status_code, InternalError.message)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
