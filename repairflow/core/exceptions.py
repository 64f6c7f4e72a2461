"""Application-level exceptions and FastAPI exception handlers."""

from __future__ import annotations

from typing import Any, NamedTuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

class FieldViolation(NamedTuple):
    """One failed field check: dotted field path plus a human-readable message."""

    field: str
    message: str

class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500, code: str = "INTERNAL_ERROR"):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        """Extra machine-readable fields merged into the error body."""
        return {}

class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: str | None = None):
        msg = f"{entity} not found" if not entity_id else f"{entity} '{entity_id}' not found"
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(msg, status_code=404, code="NOT_FOUND")

class UnauthorizedError(AppException):
    """Caller lacks the tier or the ownership required for an operation."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(message, status_code=403, code="UNAUTHORIZED")

class ConflictError(AppException):
    def __init__(self, message: str, estimate_id: str | None = None):
        self.estimate_id = estimate_id
        super().__init__(message, status_code=409, code="CONFLICT")

    def details(self) -> dict[str, Any]:
        return {"estimateId": self.estimate_id} if self.estimate_id else {}

class ValidationError(AppException):
    def __init__(self, violations: list[FieldViolation], message: str | None = None):
        self.violations = list(violations)
        if message is None:
            fields = ", ".join(v.field for v in self.violations) or "request"
            message = f"Invalid input: {fields}"
        super().__init__(message, status_code=422, code="VALIDATION_ERROR")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldViolation(field, message)])

    @property
    def fields(self) -> list[str]:
        return [v.field for v in self.violations]

    def details(self) -> dict[str, Any]:
        return {
            "violations": [{"field": v.field, "message": v.message} for v in self.violations]
        }

class DependencyError(AppException):
    """Raised when an external collaborator (storage, notifier, AI) fails."""

    def __init__(self, dependency: str, message: str, status_code: int = 502, code: str = "DEPENDENCY_ERROR"):
        self.dependency = dependency
        super().__init__(message, status_code=status_code, code=code)

class DependencyTimeoutError(DependencyError):
    """Raised when a collaborator does not answer within its time budget."""

    def __init__(self, dependency: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            dependency,
            f"{dependency} did not respond within {timeout:g}s",
            status_code=504,
            code="DEPENDENCY_TIMEOUT",
        )

# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def _error_body(code: str, message: str, **extra: Any) -> dict:
    return {"error": {"code": code, "message": message, **extra}}

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.code, exc.message, **exc.details()),
        )

    @app.exception_handler(404)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content=_error_body("NOT_FOUND", "Resource not found"),
        )

    @app.exception_handler(500)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=500,
            content=_error_body("INTERNAL_ERROR", "An unexpected error occurred"),
        )
