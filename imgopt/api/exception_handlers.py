"""
Exception handlers for converting domain exceptions to HTTP responses.

This module maps domain exceptions to appropriate HTTP status codes
and response formats for the API layer using FastAPI decorators.
"""

from typing import TYPE_CHECKING

from fastapi import Request, status
from fastapi.responses import JSONResponse

from imgopt.utils.logger import logger

if TYPE_CHECKING:
    from fastapi import FastAPI


def setup_exception_handlers(app: "FastAPI") -> None:
    """Setup exception handlers using decorators.

    This function registers exception handlers for domain exceptions,
    converting them to appropriate HTTP responses.

    Args:
        app: FastAPI application instance
    """
    # Import domain exceptions inside function to avoid circular imports
    from imgopt.exceptions.domain import (
        ForbiddenDomainError,
        ImgoptError,
        InvalidRequestError,
        LoaderError,
        OriginTimeoutError,
        OriginUnavailableError,
        PoolSaturatedError,
    )

    @app.exception_handler(ForbiddenDomainError)
    async def handle_forbidden_domain(_: Request, exc: ForbiddenDomainError) -> JSONResponse:
        """Convert ForbiddenDomainError to 403 response."""
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"detail": str(exc) if str(exc) else "Host is not allowed"},
        )

    @app.exception_handler(InvalidRequestError)
    async def handle_invalid_request(_: Request, exc: InvalidRequestError) -> JSONResponse:
        """Convert InvalidRequestError (and NotAnImageError) to 400 response."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc) if str(exc) else "Invalid image request"},
        )

    @app.exception_handler(OriginTimeoutError)
    async def handle_origin_timeout(_: Request, exc: OriginTimeoutError) -> JSONResponse:
        """Convert OriginTimeoutError to 502 response."""
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": str(exc) if str(exc) else "Upstream image timed out"},
        )

    @app.exception_handler(OriginUnavailableError)
    async def handle_origin_unavailable(_: Request, exc: OriginUnavailableError) -> JSONResponse:
        """Convert OriginUnavailableError to 502 response."""
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": str(exc) if str(exc) else "Upstream image unavailable"},
        )

    @app.exception_handler(LoaderError)
    async def handle_loader_error(_: Request, exc: LoaderError) -> JSONResponse:
        """Convert LoaderError to 502 response."""
        logger.warning(f"Loader failed: {exc}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": "Image provider URL could not be resolved"},
        )

    @app.exception_handler(PoolSaturatedError)
    async def handle_pool_saturated(_: Request, exc: PoolSaturatedError) -> JSONResponse:
        """Convert PoolSaturatedError to 503 response."""
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc) if str(exc) else "Server is busy"},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(ImgoptError)
    async def handle_imgopt_error(_: Request, exc: ImgoptError) -> JSONResponse:
        """Convert any other domain error to 500 response."""
        # Don't expose internal errors to clients
        logger.error(f"Unhandled optimizer error: {type(exc).__name__}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Image optimization failed"},
        )
