from __future__ import annotations


class AppError(Exception):
    """Base for failures reported to API callers as ``{success: false, message}``."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(AppError):
    status_code = 404


class InvalidInput(AppError):
    status_code = 400


class InvalidState(AppError):
    status_code = 400


class Conflict(AppError):
    status_code = 400


class Unauthorized(AppError):
    status_code = 401


class Forbidden(AppError):
    status_code = 403
