"""
Error handling - ApiError and the central exception handlers.

Every error leaves the API in the same envelope as successful responses:

    {"statusCode": 404, "data": null, "message": "Job not found", "success": false}

Known low-level failures (duplicate keys, malformed ObjectIds, bad tokens,
request validation) are mapped to client errors here so route code can let
them propagate.
"""

import logging
from typing import Any, Optional

from bson.errors import InvalidId
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

HIDDEN_MESSAGE = "Something went wrong"


class ApiError(Exception):
    """
    Application error carrying an HTTP status.

    Args:
        message: Human readable message
        status_code: HTTP status to respond with
        expose: When False the client sees a generic message; the real one is logged
        meta: Optional extra data (validation errors etc.)
    """

    def __init__(self, message: str, status_code: int = 500, expose: bool = True, meta: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.expose = expose
        self.meta = meta


def envelope(status_code: int, data: Any = None, message: str = "success", **extra) -> dict:
    """Build the uniform response body."""
    body = {
        "statusCode": status_code,
        "data": data,
        "message": message,
        "success": status_code < 400,
    }
    body.update(extra)
    return body


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(envelope(status_code, None, message, **extra)),
    )


def _duplicate_key_fields(exc: DuplicateKeyError) -> str:
    details = exc.details or {}
    key_value = details.get("keyValue") or details.get("keyPattern") or {}
    return ", ".join(key_value.keys()) or "unknown"


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    else:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)

    message = exc.message if exc.expose else HIDDEN_MESSAGE
    extra = {"errors": exc.meta} if exc.meta and exc.expose else {}
    return error_response(exc.status_code, message, **extra)


async def validation_error_handler(request: Request, exc) -> JSONResponse:
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        errors.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    logger.warning("Validation error: %s %s - %s", request.method, request.url.path, errors)
    return error_response(status.HTTP_400_BAD_REQUEST, "Validation error", errors=errors)


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError) -> JSONResponse:
    fields = _duplicate_key_fields(exc)
    logger.warning("Duplicate key on %s %s: %s", request.method, request.url.path, fields)
    return error_response(status.HTTP_409_CONFLICT, f"Duplicate field: {fields}")


async def invalid_id_handler(request: Request, exc: InvalidId) -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, "Invalid ID format")


async def jwt_error_handler(request: Request, exc: JWTError) -> JSONResponse:
    if isinstance(exc, ExpiredSignatureError):
        return error_response(status.HTTP_401_UNAUTHORIZED, "Token expired")
    return error_response(status.HTTP_401_UNAUTHORIZED, "Invalid token")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == status.HTTP_404_NOT_FOUND and message == "Not Found":
        message = "Not found"
    return error_response(exc.status_code, message)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(InvalidId, invalid_id_handler)
    app.add_exception_handler(JWTError, jwt_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


def not_found(what: str) -> ApiError:
    return ApiError(f"{what} not found", status.HTTP_404_NOT_FOUND)


def forbidden(message: Optional[str] = None) -> ApiError:
    return ApiError(message or "Forbidden", status.HTTP_403_FORBIDDEN)
