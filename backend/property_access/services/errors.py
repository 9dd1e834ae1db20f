"""Error kinds raised by the property store and the access engine."""
from typing import Any


class PropertyAccessError(Exception):
    """Base error. Carries an HTTP-ish status code for the API layer."""

    status_code = 500

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(PropertyAccessError):
    status_code = 404


class PermissionDeniedError(PropertyAccessError):
    status_code = 403


class InvalidInputError(PropertyAccessError):
    status_code = 400
