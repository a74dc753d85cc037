"""Domain-specific exceptions. Pure domain layer, no infrastructure."""


class DomainError(Exception):
    """Base for all domain-layer errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DomainValidationError(DomainError):
    """Raised when domain validation rules are violated."""


class InvalidImageError(DomainValidationError):
    """Raised when before/after images do not match the operation (e.g. DELETE with an after image)."""


class UnknownOperationError(DomainValidationError):
    """Raised when an operation is not one of INSERT, UPDATE, DELETE."""
