"""API middleware components."""

from .exceptions import (
    ExceptionHandlerMiddleware,
    create_error_response,
    get_request_id,
    register_exception_handlers,
)
from .logging import (
    CorrelationIdFilter,
    JSONFormatter,
    LoggingConfig,
    StructuredLoggingMiddleware,
    get_correlation_id,
    setup_logging,
)

__all__ = [
    # Exceptions
    "ExceptionHandlerMiddleware",
    "create_error_response",
    "get_request_id",
    "register_exception_handlers",
    # Logging
    "CorrelationIdFilter",
    "JSONFormatter",
    "LoggingConfig",
    "StructuredLoggingMiddleware",
    "get_correlation_id",
    "setup_logging",
]
