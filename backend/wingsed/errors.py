"""Domain errors and the global exception handlers.

Services raise the small error classes below; `register_exception_handlers`
turns them, FastAPI's `HTTPException` and request validation failures into
one JSON envelope:

    {"statusCode": 404, "message": "...", "error": "Not Found",
     "timestamp": "...", "path": "/api/..."}

Anything else is logged with its traceback and reported as a bare 500 so
no internals reach the client.
"""

import logging
from datetime import datetime, timezone
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("wingsed.errors")


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class ForbiddenError(ServiceError):
    status_code = 403


def error_response(request: Request, status_code: int, message, error: str = None) -> JSONResponse:
    try:
        phrase = HTTPStatus(status_code).phrase
    except ValueError:
        phrase = "Error"
    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "message": message,
            "error": error or phrase,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
        },
    )


def _format_validation_error(err: dict) -> str:
    loc = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
    msg = err.get("msg", "invalid value")
    return f"{loc}: {msg}" if loc else msg


async def service_error_handler(request: Request, exc: ServiceError):
    return error_response(request, exc.status_code, exc.message)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    response = error_response(request, exc.status_code, exc.detail)
    for key, value in (getattr(exc, "headers", None) or {}).items():
        response.headers[key] = value
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = [_format_validation_error(e) for e in exc.errors()]
    return error_response(request, 400, messages, "Bad Request")


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return error_response(request, 500, "Internal server error", "Internal Server Error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
