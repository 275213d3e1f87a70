"""
Typed, user-displayable errors raised by subscription CRUD operations.
Routes translate them to HTTP responses via their status_code.
"""
from typing import Optional


class AppError(Exception):
    """Base error carrying a user-displayable message and an HTTP status code."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Unauthenticated caller, missing required field, malformed amount/date."""

    status_code = 400


class NotFoundError(AppError):
    """Subscription id does not exist or is not owned by the caller."""

    status_code = 404


class PersistenceError(AppError):
    """Store write failure."""

    status_code = 500
