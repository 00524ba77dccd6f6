"""Fixtures for API integration tests: app, ASGI client and a mocked origin."""

from collections.abc import AsyncGenerator
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from imgopt.api.app import create_app
from imgopt.services.optimizer import OptimizationService, OptimizerConfig, OriginFetcher
from imgopt.settings import Settings

ORIGIN_HOST = "cdn.example.com"


class MockOrigin:
    """Origin serving a fixed set of paths, recording every request."""

    def __init__(self, jpeg: bytes) -> None:
        self.jpeg = jpeg
        self.calls: list[str] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url.path)
        match request.url.path:
            case "/a.jpg":
                return httpx.Response(
                    200,
                    content=self.jpeg,
                    headers={"content-type": "image/jpeg", "cache-control": "max-age=30"},
                )
            case "/page.html":
                return httpx.Response(
                    200, content=b"<html><body>hi</body></html>", headers={"content-type": "text/html"}
                )
            case _:
                return httpx.Response(404, content=b"not found")


@pytest.fixture
def origin(jpeg_bytes: bytes) -> MockOrigin:
    return MockOrigin(jpeg_bytes)


@pytest.fixture
def test_settings(tmp_path: Path, static_root: Path) -> Settings:
    """Settings pointing at temporary directories."""
    return Settings(
        domains=[ORIGIN_HOST],
        static_root=str(static_root),
        cache_dir=str(tmp_path / "cache"),
        device_sizes=[640, 1080],
        image_sizes=[],
        formats=["image/webp"],
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def optimizer(
    test_settings: Settings, origin: MockOrigin
) -> AsyncGenerator[OptimizationService, None]:
    """Optimization service whose remote fetches hit the mock origin."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(origin.handle))
    config = OptimizerConfig.from_settings(test_settings)
    fetcher = OriginFetcher(
        domains=config.domains,
        static_root=config.static_root,
        timeout=config.fetch_timeout,
        client=http_client,
    )
    service = OptimizationService(config, fetcher=fetcher)
    yield service
    await service.aclose()
    await http_client.aclose()


@pytest_asyncio.fixture
async def client(
    test_settings: Settings, optimizer: OptimizationService
) -> AsyncGenerator[AsyncClient, None]:
    """ASGI client for an app wired to the test optimizer."""
    app = create_app(test_settings)
    app.state.optimizer = optimizer
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
