"""
Application error hierarchy.

Every domain failure is raised as an AppError carrying a message, a
machine-readable error code and the HTTP status it maps to. main.py
registers one handler that renders all of them as {message, errorCode}.
"""

from typing import Any, Optional

from fastapi import status


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: Any = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Internal server error", error_code: Optional[Any] = None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code

    def __repr__(self):
        return f"<{type(self).__name__}({self.status_code}, {self.error_code!r}, {self.message!r})>"


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "BAD_REQUEST"


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "UNAUTHORIZED"


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "DUPLICATE"


class StorageError(AppError):
    """Object storage or local file system failure."""
    error_code = "STORAGE_ERROR"


class UpstreamError(AppError):
    """Generative model, mailbox or SMS gateway failure."""
    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "UPSTREAM_ERROR"


def ok(message: str, data: Any = None) -> dict:
    """Success envelope shared by every route."""
    return {"message": message, "data": data}
