"""
HTTP exceptions for API layer.

These exceptions are used ONLY in API routers and dependencies to return
proper HTTP responses. Services raise domain errors instead.
"""

from typing import Self

from fastapi import HTTPException, status


class CustomHTTPException(HTTPException):
    """HTTP exception template; ``with_context`` derives a per-request copy."""

    def with_context(self, detail: str) -> Self:
        """
        Copy the exception with a request-specific detail message.

        Args:
            detail: Additional information about the error

        Returns:
            New exception with the same status code and headers
        """
        return type(self)(status_code=self.status_code, detail=detail, headers=self.headers)


# Raised while the optimizer is not running (before startup or after shutdown)
SERVICE_UNAVAILABLE = CustomHTTPException(
    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    detail="Service temporarily unavailable",
    headers={"Retry-After": "1"},
)
