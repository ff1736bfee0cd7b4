from schoola_billing.core.exceptions.base import (
    AppException,
    ConcurrencyConflictError,
    DiscountNotApplicableError,
    DuplicateError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "AppException",
    "ConcurrencyConflictError",
    "DiscountNotApplicableError",
    "DuplicateError",
    "InvariantViolationError",
    "NotFoundError",
    "ValidationError",
]
