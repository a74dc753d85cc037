"""Domain validators. Pure validation functions."""

from audit_stream.domain.validators.change_validator import (
    validate_image_json_serializable,
    validate_images,
    validate_operation,
)

__all__ = [
    "validate_image_json_serializable",
    "validate_images",
    "validate_operation",
]
