"""Image optimization router.

Serves optimized variants of local or allow-listed remote images, redirects
to the external provider when a provider loader is configured, and exposes
cache and worker pool statistics.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Header, Query, status
from fastapi.responses import RedirectResponse, Response

from imgopt.api.dependencies import OptimizationServiceDep
from imgopt.services.optimizer import SVG, ExternalImage, LayoutHint, OptimizedImage

router = APIRouter()

# Passthrough SVGs are served from our origin and must not run scripts
SVG_CONTENT_SECURITY_POLICY = "script-src 'none'; frame-src 'none'; sandbox;"


def etag_matches(if_none_match: str, etag: str) -> bool:
    """Check an ``If-None-Match`` header against an ETag (weak comparison)."""
    if if_none_match.strip() == "*":
        return True
    candidates = (tag.strip().removeprefix("W/") for tag in if_none_match.split(","))
    return etag.removeprefix("W/") in candidates


def image_headers(image: OptimizedImage) -> dict[str, str]:
    """Response headers for a served variant."""
    headers = {
        "Cache-Control": f"public, max-age={image.max_age}, must-revalidate",
        "X-Cache": image.cache_status.value,
        "ETag": image.etag,
        "Vary": "Accept",
        "X-Content-Type-Options": "nosniff",
    }
    if image.content_type == SVG:
        headers["Content-Security-Policy"] = SVG_CONTENT_SECURITY_POLICY
    return headers


@router.get("/optimize", response_class=Response)
async def optimize_image(
    service: OptimizationServiceDep,
    src: Annotated[str, Query(description="Local path or absolute URL of the source image")],
    w: Annotated[int, Query(description="Requested width in pixels")],
    q: Annotated[int | None, Query(description="Quality 1-100")] = None,
    layout: Annotated[LayoutHint, Query(description="Client layout hint")] = LayoutHint.RESPONSIVE,
    accept: Annotated[str | None, Header()] = None,
    if_none_match: Annotated[str | None, Header()] = None,
) -> Response:
    """Serve an optimized image variant.

    Args:
        service: Optimization service
        src: Source image
        w: Requested width, rounded up to the nearest configured size
        q: Quality, defaults to the configured default quality
        layout: Client layout hint
        accept: Client ``Accept`` header used for format negotiation
        if_none_match: Conditional request validator

    Returns:
        Image bytes, 304 when the client's ETag matches, or a 307 redirect
        to the external provider
    """
    request = service.build_request(src=src, width=w, quality=q, accept=accept, layout=layout)
    result = await service.optimize(request)

    if isinstance(result, ExternalImage):
        return RedirectResponse(result.url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    headers = image_headers(result)
    if if_none_match and etag_matches(if_none_match, result.etag):
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)
    return Response(content=result.data, media_type=result.content_type, headers=headers)


@router.get("/optimize/stats")
async def optimizer_stats(service: OptimizationServiceDep) -> dict[str, Any]:
    """Cache, coalescer and worker pool statistics."""
    return await service.stats()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
