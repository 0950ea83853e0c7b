"""
Operational errors and the central error handler

Domain code raises one of the AppError subclasses below; the handlers
registered by register_error_handlers() translate every exception that
escapes a route into the same JSON envelope:

    {"success": false, "status": "fail" | "error", "message": "..."}
"""
import logging
import traceback

from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import settings

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Something went wrong. Please try again later."


class AppError(Exception):
    """Base class for errors whose message is safe to show the caller"""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.is_operational = True

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"


class ValidationFailed(AppError):
    status_code = 400


class Unauthenticated(AppError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated. Please log in."):
        super().__init__(message)


class InvalidCredentials(Unauthenticated):
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class Forbidden(AppError):
    status_code = 403

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


class NotFound(AppError):
    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class Conflict(AppError):
    status_code = 409


def error_body(status_code: int, message: str, status: str = None) -> dict:
    if status is None:
        status = "fail" if 400 <= status_code < 500 else "error"
    return {"success": False, "status": status, "message": message}


def _log_request_error(request: Request, status_code: int, message: str) -> None:
    if settings.is_production():
        logger.error(
            "request failed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "error": message,
                "user_agent": request.headers.get("user-agent"),
                "ip": request.client.host if request.client else None,
            },
        )


async def app_error_handler(request: Request, exc: AppError):
    _log_request_error(request, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.status_code, exc.message, exc.status))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
        messages.append(f"{field}: {err.get('msg')}" if field else err.get("msg"))
    message = "Invalid input data. " + ". ".join(messages)
    _log_request_error(request, 400, message)
    return JSONResponse(status_code=400, content=error_body(400, message))


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    key_value = (exc.details or {}).get("keyValue") or {}
    if key_value:
        field, value = next(iter(key_value.items()))
        message = f'Duplicate field value: {field} = "{value}". Please use another value.'
    else:
        message = "Duplicate field value. Please use another value."
    _log_request_error(request, 409, message)
    return JSONResponse(status_code=409, content=error_body(409, message))


async def invalid_id_handler(request: Request, exc: InvalidId):
    _log_request_error(request, 404, "Resource not found")
    return JSONResponse(status_code=404, content=error_body(404, "Resource not found"))


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        message = f"Cannot find {request.url.path} on this server"
    else:
        message = str(exc.detail) if exc.detail else GENERIC_MESSAGE
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, message),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    if settings.is_development():
        body = error_body(500, str(exc) or exc.__class__.__name__)
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=500, content=body)
    return JSONResponse(status_code=500, content=error_body(500, GENERIC_MESSAGE))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(InvalidId, invalid_id_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
