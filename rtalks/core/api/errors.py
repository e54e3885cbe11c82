"""
Error responses for the RTalks API.

Every failure leaves the API as ``{"error": <message>}`` with the status
carried by the exception. Handlers are installed on the app by
``register_exception_handlers``.
"""

from __future__ import annotations

import traceback
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rtalks.core.errors import RateLimitError, RTalksError
from rtalks.logging.setup import get_logger

logger = get_logger(__name__)

GENERIC_SERVER_ERROR = "Internal server error"


def error_response(message: str, **extra: Any) -> dict[str, Any]:
    """
    Build the error body.

    Examples:
        >>> error_response("Speaker not found")
        {'error': 'Speaker not found'}

        >>> error_response("Too many requests", retry_after=30)
        {'error': 'Too many requests', 'retry_after': 30}
    """
    body: dict[str, Any] = {"error": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings and settings.is_production)


def _track(request: Request, category: str) -> None:
    metrics = getattr(request.app.state, "metrics", None)
    if metrics is not None:
        metrics.track_error(category)


def _server_error(request: Request, status_code: int, message: str,
                  exc: BaseException) -> JSONResponse:
    if _is_production(request):
        return JSONResponse(status_code=status_code,
                            content=error_response(GENERIC_SERVER_ERROR))
    detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code,
                        content=error_response(message, detail=detail))


async def rtalks_error_handler(request: Request, exc: RTalksError) -> JSONResponse:
    _track(request, exc.category)

    if exc.status_code >= 500:
        logger.error(
            f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}",
            exc_info=exc.__cause__ or exc,
        )
        return _server_error(request, exc.status_code, exc.message, exc)

    logger.info(
        f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")

    headers = None
    extra: dict[str, Any] = {}
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
        extra["retry_after"] = exc.retry_after

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.message, **extra),
        headers=headers,
    )


async def http_exception_handler(
        request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code >= 500:
        _track(request, "other")
        return _server_error(request, exc.status_code, message, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(message),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
        request: Request, exc: RequestValidationError) -> JSONResponse:
    _track(request, "other")
    errors = exc.errors()
    for error in errors:
        logger.info(f"Validation error: {error}, request: {request.url.path}")

    message = "Invalid input received. Please check your request and try again."
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ())[1:])
        if location:
            message = f"{location}: {first.get('msg', 'invalid value')}"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_response(message),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    _track(request, "other")
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )
    return _server_error(request, status.HTTP_500_INTERNAL_SERVER_ERROR,
                         str(exc) or GENERIC_SERVER_ERROR, exc)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RTalksError, rtalks_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
