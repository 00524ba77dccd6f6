"""
Common dependencies for imgopt API endpoints.

This module provides reusable dependency functions for FastAPI endpoints.
"""

from typing import Annotated

from fastapi import Depends, Request

from imgopt.exceptions import SERVICE_UNAVAILABLE
from imgopt.services.optimizer import OptimizationService


async def get_optimization_service(request: Request) -> OptimizationService:
    """
    Get the optimization service created by the application lifespan.

    Args:
        request: FastAPI request object

    Returns:
        The application's OptimizationService

    Raises:
        CustomHTTPException: 503 if the service has not been started
    """
    service = getattr(request.app.state, "optimizer", None)
    if service is None:
        raise SERVICE_UNAVAILABLE.with_context("Image optimizer is not running")
    return service


OptimizationServiceDep = Annotated[OptimizationService, Depends(get_optimization_service)]
