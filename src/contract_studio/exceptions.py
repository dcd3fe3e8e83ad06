"""Unified exception hierarchy for Contract Studio.

All service exceptions inherit from ContractStudioError, enabling:
- Consistent error handling across the pipeline, chain and database layers
- HTTP status code mapping in the API layer
- Structured error responses with error codes

Usage:
    from contract_studio.exceptions import (
        ContractStudioError,
        ValidationError,
        NotFoundError,
    )

    if not wallet_address:
        raise ValidationError("walletAddress is required", field="walletAddress")

All exceptions have:
- error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
- http_status: HTTP status code for API responses
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Sequence

if TYPE_CHECKING:
    from .pipeline.diagnostics import Diagnostic


class ContractStudioError(Exception):
    """Base exception for all Contract Studio errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "INTERNAL_ERROR"
    http_status: int = 500
    # Whether 5xx details survive in production responses
    public_details: bool = False
    # Replaces the message of a 5xx in production when set
    public_message: Optional[str] = None

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result: dict[str, Any] = {
            "success": False,
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def redacted_details(self) -> Optional[dict[str, Any]]:
        """Details that may leave the service when errors are not verbose."""
        if self.public_details:
            return self.details or None
        return None


# =============================================================================
# Client Errors (4xx)
# =============================================================================

class ValidationError(ContractStudioError):
    """Missing or malformed input."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        if fields:
            details["fields"] = list(fields)
        super().__init__(message, details=details)


class NotFoundError(ContractStudioError):
    """Requested resource, or a referenced parent, does not exist."""

    error_code = "NOT_FOUND"
    http_status = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        message = f"{resource_type} with id {resource_id} does not exist"
        details = details or {}
        details["resource_type"] = resource_type
        details["resource_id"] = resource_id
        details["not_found"] = True
        super().__init__(message, details=details)


# =============================================================================
# Pipeline Errors
# =============================================================================

class PipelineError(ContractStudioError):
    """Base class for compile/deploy pipeline failures.

    `compilation` is set when a deploy fails after a successful compile so the
    caller can tell which phase failed.
    """

    error_code = "PIPELINE_ERROR"
    http_status = 500
    compilation: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.compilation is not None:
            result["compilation"] = self.compilation
        return result


class CompilationError(PipelineError):
    """The external compiler rejected the source."""

    error_code = "COMPILATION_ERROR"
    public_details = True

    def __init__(
        self,
        diagnostic: "Diagnostic",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.diagnostic = diagnostic
        details = {**diagnostic.to_dict(), **(details or {})}
        super().__init__(diagnostic.message, details=details)


class ArtifactError(PipelineError):
    """The compiler exited cleanly but produced no usable artifact."""

    error_code = "ARTIFACT_ERROR"

    def __init__(
        self,
        contract_name: str,
        artifact_path: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["contract_name"] = contract_name
        if artifact_path:
            details["artifact_path"] = artifact_path
        super().__init__(
            f"Contract {contract_name} not found in compilation output",
            details=details,
        )

    def redacted_details(self) -> Optional[dict[str, Any]]:
        return {"contract_name": self.details["contract_name"]}


class DeploymentError(PipelineError):
    """The deploy command or transaction failed."""

    error_code = "DEPLOYMENT_ERROR"

    def __init__(
        self,
        message: str,
        output: Optional[str] = None,
        exit_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if output:
            details["output"] = output
        if exit_code is not None:
            details["exit_code"] = exit_code
        super().__init__(message, details=details)

    def redacted_details(self) -> Optional[dict[str, Any]]:
        """Keep the first output line; the rest is a tool stack trace."""
        redacted: dict[str, Any] = {}
        lines = (self.details.get("output") or "").strip().splitlines()
        if lines:
            redacted["output"] = lines[0]
        if "exit_code" in self.details:
            redacted["exit_code"] = self.details["exit_code"]
        return redacted or None


class PipelineTimeoutError(PipelineError):
    """An external compiler or deploy process exceeded its time budget."""

    error_code = "PIPELINE_TIMEOUT"
    public_details = True

    def __init__(self, stage: str, timeout_seconds: float) -> None:
        self.stage = stage
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{stage} did not finish within {timeout_seconds:g} seconds",
            details={"stage": stage, "timeout_seconds": timeout_seconds},
        )


class PipelineSystemError(PipelineError):
    """Unexpected failure while staging files or spawning a process."""

    error_code = "SYSTEM_ERROR"
    public_message = "The compile/deploy toolchain failed unexpectedly"

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if stage:
            details["stage"] = stage
        super().__init__(message, details=details)


class IllegalTransitionError(PipelineError):
    """A pipeline run was driven into a state it cannot reach."""

    error_code = "ILLEGAL_TRANSITION"


# =============================================================================
# Infrastructure Errors
# =============================================================================

class ChainError(ContractStudioError):
    """Blockchain read, write or event query failed."""

    error_code = "CHAIN_ERROR"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details)


class DatabaseError(ContractStudioError):
    """Database operation failed."""

    error_code = "DATABASE_ERROR"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details)


__all__ = [
    "ContractStudioError",
    "ValidationError",
    "NotFoundError",
    "PipelineError",
    "CompilationError",
    "ArtifactError",
    "DeploymentError",
    "PipelineTimeoutError",
    "PipelineSystemError",
    "IllegalTransitionError",
    "ChainError",
    "DatabaseError",
]
