"""Global exception handlers for the Contract Studio API.

Every error leaves the API in one shape:
{
    "success": false,
    "error": "VALIDATION_ERROR",
    "message": "Missing required fields: contractName",
    "details": {...},
    "request_id": "req_abc123"
}

Unmatched routes additionally echo "path" and "method". Internal details
(tracebacks, driver messages) are only exposed in dev/test/local.
"""
from __future__ import annotations

import logging
import traceback
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import Settings, load_settings
from ..exceptions import ContractStudioError
from ..serialization import SafeJSONResponse

logger = logging.getLogger(__name__)

STATUS_TO_CODE = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "REQUEST_ENTITY_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "SERVICE_UNAVAILABLE",
    503: "SERVICE_UNAVAILABLE",
    504: "SERVICE_UNAVAILABLE",
}


def get_request_id(request: Request) -> str:
    """Extract request ID from request state or headers."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("X-Request-ID", "unknown")


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    request_id: str,
    details: Optional[Dict[str, Any]] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """
    Create the uniform error response.

    Args:
        error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
        message: Human-readable error message
        status_code: HTTP status code
        request_id: Request correlation ID
        details: Optional structured context
        extra: Top-level keys merged into the body (e.g. path/method)
    """
    content: Dict[str, Any] = {
        "success": False,
        "error": error_code,
        "message": message,
    }
    if details:
        content["details"] = details
    if extra:
        content.update(extra)
    content["request_id"] = request_id

    return SafeJSONResponse(
        status_code=status_code,
        content=content,
        headers={"X-Request-ID": request_id},
    )


def _field_path(loc: tuple) -> str:
    # Drop the "body"/"query"/"path" prefix FastAPI puts first
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


def register_exception_handlers(app: FastAPI, settings: Optional[Settings] = None) -> None:
    """Register all exception handlers with the FastAPI application.

    Verbosity follows `settings.is_verbose_errors`; outside dev/test/local
    5xx bodies carry only what each error marks as public.
    """
    verbose = (settings or load_settings()).is_verbose_errors

    app.add_middleware(ExceptionHandlerMiddleware, verbose_errors=verbose)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed bodies are client errors naming every bad field."""
        request_id = get_request_id(request)

        errors = [
            {
                "field": _field_path(tuple(error["loc"])),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        fields = sorted({e["field"] for e in errors if e["field"]})

        logger.warning(
            f"Validation error: {len(errors)} field(s) failed",
            extra={"path": request.url.path},
        )

        return create_error_response(
            error_code="VALIDATION_ERROR",
            message=f"Invalid request fields: {', '.join(fields)}" if fields else "Invalid request body",
            status_code=400,
            request_id=request_id,
            details={"fields": fields, "errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Unmatched routes echo back the path and method."""
        request_id = get_request_id(request)
        error_code = STATUS_TO_CODE.get(exc.status_code, "INTERNAL_ERROR")

        if exc.status_code >= 500:
            logger.error(f"HTTP error {exc.status_code}: {exc.detail}", extra={"path": request.url.path})
        else:
            logger.warning(f"HTTP error {exc.status_code}: {exc.detail}", extra={"path": request.url.path})

        extra = None
        message = str(exc.detail) if exc.detail else "An error occurred"
        if exc.status_code in (404, 405):
            extra = {"path": request.url.path, "method": request.method}
            if exc.status_code == 404 and exc.detail == "Not Found":
                message = "Route not found"

        return create_error_response(
            error_code=error_code,
            message=message,
            status_code=exc.status_code,
            request_id=request_id,
            extra=extra,
        )

    @app.exception_handler(ContractStudioError)
    async def contract_studio_exception_handler(
        request: Request, exc: ContractStudioError
    ) -> JSONResponse:
        """Handle every service exception through its own status and code."""
        request_id = get_request_id(request)

        if exc.http_status >= 500:
            logger.error(
                f"Server error: {exc.error_code} - {exc.message}",
                extra={"error_code": exc.error_code, "path": request.url.path},
            )
        else:
            logger.warning(
                f"Client error: {exc.error_code} - {exc.message}",
                extra={"error_code": exc.error_code, "path": request.url.path},
            )

        body = exc.to_dict()
        body.pop("success")
        error_code = body.pop("error")
        message = body.pop("message")
        details = body.pop("details", None)
        if exc.http_status >= 500 and not verbose:
            details = exc.redacted_details()
            message = exc.public_message or message

        return create_error_response(
            error_code=error_code,
            message=message,
            status_code=exc.http_status,
            request_id=request_id,
            details=details,
            extra=body or None,
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(
        request: Request, exc: ValueError
    ) -> JSONResponse:
        """Handle ValueError as a validation error."""
        request_id = get_request_id(request)
        logger.warning(f"Validation error: {exc}", extra={"path": request.url.path})

        return create_error_response(
            error_code="VALIDATION_ERROR",
            message=str(exc),
            status_code=400,
            request_id=request_id,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """
        Catch-all handler for unhandled exceptions.

        In production, returns a generic error without details.
        In development, includes exception type and a traceback tail.
        """
        request_id = get_request_id(request)

        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            extra={
                "error_type": type(exc).__name__,
                "path": request.url.path,
                "method": request.method,
            },
            exc_info=True,
        )

        if not verbose:
            message = "An internal error occurred"
            details = None
        else:
            message = f"{type(exc).__name__}: {exc}"
            details = {
                "exception_type": type(exc).__name__,
                "traceback": traceback.format_exc().split("\n")[-10:],
            }

        return create_error_response(
            error_code="INTERNAL_ERROR",
            message=message,
            status_code=500,
            request_id=request_id,
            details=details,
        )


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """
    Catches errors raised outside route handlers (e.g., in other middleware)
    and converts them to the uniform error body.
    """

    def __init__(self, app, verbose_errors: bool = False) -> None:
        super().__init__(app)
        self.verbose_errors = verbose_errors

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> JSONResponse:
        try:
            return await call_next(request)
        except ContractStudioError:
            raise
        except Exception as exc:
            request_id = get_request_id(request)

            logger.error(
                f"Middleware exception: {type(exc).__name__}: {exc}",
                extra={"path": request.url.path},
                exc_info=True,
            )

            message = (
                "An internal error occurred"
                if not self.verbose_errors
                else f"{type(exc).__name__}: {exc}"
            )

            return create_error_response(
                error_code="INTERNAL_ERROR",
                message=message,
                status_code=500,
                request_id=request_id,
            )
