"""Validators for change-capture domain rules. Pure functions, no infrastructure or DB access."""

import json
from typing import Any, Dict, Optional

from audit_stream.domain.exceptions import InvalidImageError, UnknownOperationError
from audit_stream.domain.models.audit import Operation


def validate_operation(operation: str) -> Operation:
    """Normalise operation name (case-insensitive). Raises UnknownOperationError if unsupported."""
    try:
        return Operation(str(operation).upper())
    except ValueError as e:
        raise UnknownOperationError(f"Unsupported operation: {operation!r}") from e


def validate_images(
    operation: Operation,
    before_image: Optional[Dict[str, Any]],
    after_image: Optional[Dict[str, Any]],
) -> None:
    """
    Enforce image presence per operation:
    INSERT -> after only, DELETE -> before only, UPDATE -> both.
    """
    if operation == Operation.INSERT:
        if before_image is not None or after_image is None:
            raise InvalidImageError("INSERT requires an after image and no before image")
    elif operation == Operation.DELETE:
        if before_image is None or after_image is not None:
            raise InvalidImageError("DELETE requires a before image and no after image")
    elif operation == Operation.UPDATE:
        if before_image is None or after_image is None:
            raise InvalidImageError("UPDATE requires both before and after images")


def validate_image_json_serializable(image: Optional[Dict[str, Any]]) -> None:
    """Ensure a row image can travel over the notification channel."""
    if image is None:
        return
    try:
        json.dumps(image, default=str)
    except (TypeError, ValueError) as e:
        raise InvalidImageError("row image must be JSON-serializable") from e
