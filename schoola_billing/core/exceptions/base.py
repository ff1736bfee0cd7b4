from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id={identifier} not found"
        super().__init__(message=message, status_code=404)


class ValidationError(AppException):
    """Validation error."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=422, details=details)


class DuplicateError(AppException):
    """Duplicate resource."""

    def __init__(self, resource: str, field: str, value: Any):
        message = f"{resource} with {field}={value} already exists"
        super().__init__(message=message, status_code=409, details={"field": field, "value": value})


class DiscountNotApplicableError(AppException):
    """Discount code exists but cannot be applied or redeemed."""

    def __init__(self, code: str, reason: str):
        super().__init__(
            message=f"Discount '{code}' cannot be applied: {reason}",
            status_code=422,
            details={"field": "code", "code": code, "reason": reason},
        )
        self.reason = reason


class InvariantViolationError(AppException):
    """Record state is inconsistent; the operation was aborted without changes."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=500, details=details)


class ConcurrencyConflictError(AppException):
    """Lost a race against a concurrent writer. Safe to re-validate and retry."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} {identifier} was modified concurrently, retry the operation",
            status_code=409,
            details={"resource": resource, "identifier": identifier, "retryable": True},
        )
        self.retryable = True
