"""Error taxonomy of the admin controller.

HTTP-level conditions subclass FastAPI's ``HTTPException`` so the framework
turns them into responses. Configuration defects are plain ``RuntimeError``
subclasses and surface as server errors. Persistence failures are recovered
inside the controller.
"""

from __future__ import annotations

from fastapi import HTTPException, status


class AccessDeniedError(HTTPException):
    def __init__(self, detail: str = "Access Denied.") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class CsrfError(HTTPException):
    def __init__(self, detail: str = "The csrf token is not valid, CSRF attack?") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class RateLimitExceeded(HTTPException):
    def __init__(self, limit: int, window: int) -> None:
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded",
            headers={
                "Retry-After": str(window),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )


class ConfigurationError(RuntimeError):
    """The admin configuration is inconsistent (unknown batch action, missing handler...)."""


class ModelManagerError(Exception):
    """The persistence layer failed; the original error is chained as ``__cause__``."""


class LockError(Exception):
    """The object was modified concurrently since the form was rendered."""

    def __init__(self, message: str, *, expected_version=None, current_version=None) -> None:
        super().__init__(message)
        self.expected_version = expected_version
        self.current_version = current_version
