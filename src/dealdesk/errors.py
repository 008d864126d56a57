from __future__ import annotations


class DealDeskError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthorized(DealDeskError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class InvalidInput(DealDeskError, ValueError):
    status_code = 400


class ValidationFailed(InvalidInput):
    """Form validation failure carrying per-field errors."""

    def __init__(self, errors: list[dict[str, str]], message: str = "Validation failed") -> None:
        super().__init__(message)
        self.errors = errors


class NotFound(DealDeskError, LookupError):
    status_code = 404


class Conflict(DealDeskError):
    status_code = 409

    def __init__(self, message: str, **extra: object) -> None:
        super().__init__(message)
        self.extra = extra
