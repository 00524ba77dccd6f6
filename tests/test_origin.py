"""Unit tests for OriginFetcher.

Tests cover:
- Domain allow-list patterns and ForbiddenDomainError without network I/O
- Remote fetch: validators, Cache-Control, content type sniffing
- Non-2xx, redirects, transport errors and timeouts
- Local files: static root reads, traversal, missing files
"""

import asyncio
from pathlib import Path

import httpx
import pytest

from imgopt.exceptions import (
    ForbiddenDomainError,
    InvalidRequestError,
    NotAnImageError,
    OriginTimeoutError,
    OriginUnavailableError,
)
from imgopt.services.optimizer.formats import JPEG, PNG, SVG
from imgopt.services.optimizer.origin import OriginFetcher, is_local_source, parse_cache_control


class RecordingTransport(httpx.AsyncBaseTransport):
    """Mock transport that counts requests and delegates to a handler."""

    def __init__(self, handler) -> None:
        self.calls: list[httpx.Request] = []
        self._transport = httpx.MockTransport(handler)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        return await self._transport.handle_async_request(request)


def _fetcher(transport: httpx.AsyncBaseTransport, static_root: Path, **kwargs) -> OriginFetcher:
    client = httpx.AsyncClient(transport=transport, follow_redirects=False)
    return OriginFetcher(
        domains=["cdn.example.com", "*.img.example.org", "**.assets.example.net"],
        static_root=static_root,
        client=client,
        **kwargs,
    )


class TestParseCacheControl:
    """Test Cache-Control parsing."""

    def test_both_directives(self) -> None:
        cc = parse_cache_control("public, s-maxage=120, max-age=60")
        assert cc.s_maxage == 120
        assert cc.max_age == 60

    def test_missing_header(self) -> None:
        cc = parse_cache_control(None)
        assert cc.s_maxage is None
        assert cc.max_age is None

    def test_malformed_and_negative_values_ignored(self) -> None:
        cc = parse_cache_control("max-age=abc, s-maxage=-5")
        assert cc.max_age is None
        assert cc.s_maxage is None

    def test_quoted_and_case_insensitive(self) -> None:
        assert parse_cache_control('Max-Age="30"').max_age == 30

    def test_zero_is_kept(self) -> None:
        assert parse_cache_control("max-age=0").max_age == 0


class TestDomainAllowList:
    """Test host matching and pre-I/O rejection."""

    @pytest.fixture
    def fetcher(self, static_root: Path) -> OriginFetcher:
        return OriginFetcher(
            domains=["cdn.example.com", "*.img.example.org", "**.assets.example.net"],
            static_root=static_root,
        )

    @pytest.mark.parametrize(
        ("host", "allowed"),
        [
            ("cdn.example.com", True),
            ("CDN.Example.com", True),
            ("evil.com", False),
            ("sub.cdn.example.com", False),
            ("a.img.example.org", True),
            ("a.b.img.example.org", False),
            ("img.example.org", False),
            ("a.assets.example.net", True),
            ("a.b.c.assets.example.net", True),
            ("assets.example.net", False),
        ],
    )
    def test_patterns(self, fetcher: OriginFetcher, host: str, allowed: bool) -> None:
        assert fetcher.is_allowed_host(host) is allowed

    @pytest.mark.asyncio
    async def test_forbidden_domain_makes_no_network_call(self, static_root: Path) -> None:
        """An unlisted host is rejected before any request is sent."""
        transport = RecordingTransport(lambda request: httpx.Response(200, content=b""))
        fetcher = _fetcher(transport, static_root)

        with pytest.raises(ForbiddenDomainError) as exc_info:
            await fetcher.fetch("https://evil.com/a.jpg")

        assert exc_info.value.host == "evil.com"
        assert transport.calls == []

    @pytest.mark.parametrize(
        "src", ["ftp://cdn.example.com/a.jpg", "//cdn.example.com/a.jpg", "data:image/png;base64,AA"]
    )
    def test_unsupported_sources_rejected(self, fetcher: OriginFetcher, src: str) -> None:
        with pytest.raises(InvalidRequestError):
            fetcher.check_source(src)

    def test_local_source_detection(self) -> None:
        assert is_local_source("/images/a.png")
        assert not is_local_source("//cdn.example.com/a.png")
        assert not is_local_source("https://cdn.example.com/a.png")


class TestRemoteFetch:
    """Test fetching from allow-listed hosts."""

    @pytest.mark.asyncio
    async def test_fetch_returns_resource(self, static_root: Path, jpeg_bytes: bytes) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content=jpeg_bytes,
                headers={
                    "content-type": "image/jpeg",
                    "etag": '"abc"',
                    "last-modified": "Wed, 21 Oct 2015 07:28:00 GMT",
                    "cache-control": "public, max-age=30",
                },
            )

        transport = RecordingTransport(handler)
        fetcher = _fetcher(transport, static_root)

        resource = await fetcher.fetch("https://cdn.example.com/a.jpg")

        assert resource.data == jpeg_bytes
        assert resource.content_type == JPEG
        assert resource.validators.etag == '"abc"'
        assert resource.validators.token == '"abc"'
        assert resource.cache_control.max_age == 30
        assert resource.cache_control.s_maxage is None
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_sniffed_type_wins_over_header(
        self, static_root: Path, make_image
    ) -> None:
        """A PNG labelled as octet-stream is still recognized."""
        png = make_image("PNG", size=(4, 4))
        transport = RecordingTransport(
            lambda request: httpx.Response(
                200, content=png, headers={"content-type": "application/octet-stream"}
            )
        )
        resource = await _fetcher(transport, static_root).fetch("https://cdn.example.com/x")
        assert resource.content_type == PNG

    @pytest.mark.asyncio
    async def test_non_image_raises(self, static_root: Path) -> None:
        transport = RecordingTransport(
            lambda request: httpx.Response(
                200, content=b"<html></html>", headers={"content-type": "text/html"}
            )
        )
        with pytest.raises(NotAnImageError):
            await _fetcher(transport, static_root).fetch("https://cdn.example.com/page")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [404, 500, 503])
    async def test_non_2xx_is_unavailable(self, static_root: Path, status_code: int) -> None:
        transport = RecordingTransport(lambda request: httpx.Response(status_code))
        with pytest.raises(OriginUnavailableError):
            await _fetcher(transport, static_root).fetch("https://cdn.example.com/a.jpg")

    @pytest.mark.asyncio
    async def test_redirect_not_followed(self, static_root: Path) -> None:
        """A 3xx counts as a non-2xx response."""
        transport = RecordingTransport(
            lambda request: httpx.Response(302, headers={"location": "https://evil.com/a.jpg"})
        )
        with pytest.raises(OriginUnavailableError):
            await _fetcher(transport, static_root).fetch("https://cdn.example.com/a.jpg")
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self, static_root: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(OriginUnavailableError) as exc_info:
            await _fetcher(RecordingTransport(handler), static_root).fetch(
                "https://cdn.example.com/a.jpg"
            )
        assert not isinstance(exc_info.value, OriginTimeoutError)

    @pytest.mark.asyncio
    async def test_httpx_timeout_is_origin_timeout(self, static_root: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(OriginTimeoutError):
            await _fetcher(RecordingTransport(handler), static_root).fetch(
                "https://cdn.example.com/a.jpg"
            )

    @pytest.mark.asyncio
    async def test_deadline_is_enforced(self, static_root: Path, jpeg_bytes: bytes) -> None:
        """A slow origin fails with OriginTimeoutError after the fetch deadline."""

        class SlowTransport(httpx.AsyncBaseTransport):
            async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
                await asyncio.sleep(5)
                return httpx.Response(200, content=jpeg_bytes)

        fetcher = _fetcher(SlowTransport(), static_root, timeout=0.05)
        with pytest.raises(OriginTimeoutError):
            await fetcher.fetch("https://cdn.example.com/a.jpg")

    @pytest.mark.asyncio
    async def test_oversized_body_rejected(self, static_root: Path, jpeg_bytes: bytes) -> None:
        transport = RecordingTransport(lambda request: httpx.Response(200, content=jpeg_bytes))
        fetcher = _fetcher(transport, static_root, max_source_bytes=100)
        with pytest.raises(OriginUnavailableError):
            await fetcher.fetch("https://cdn.example.com/a.jpg")

    @pytest.mark.asyncio
    async def test_remote_source_has_no_pre_fetch_validator(self, static_root: Path) -> None:
        fetcher = OriginFetcher(domains=["cdn.example.com"], static_root=static_root)
        assert await fetcher.peek_validator("https://cdn.example.com/a.jpg") is None
        await fetcher.aclose()


class TestLocalFetch:
    """Test reading from the static root."""

    @pytest.fixture
    def fetcher(self, static_root: Path) -> OriginFetcher:
        return OriginFetcher(domains=[], static_root=static_root)

    @pytest.mark.asyncio
    async def test_reads_local_file(
        self, fetcher: OriginFetcher, static_root: Path, jpeg_bytes: bytes
    ) -> None:
        """Local paths skip the domain check and carry Last-Modified."""
        (static_root / "images").mkdir()
        (static_root / "images" / "a.jpg").write_bytes(jpeg_bytes)

        resource = await fetcher.fetch("/images/a.jpg")

        assert resource.data == jpeg_bytes
        assert resource.content_type == JPEG
        assert resource.validators.last_modified is not None
        assert resource.cache_control.max_age is None

    @pytest.mark.asyncio
    async def test_local_svg(
        self, fetcher: OriginFetcher, static_root: Path, svg_bytes: bytes
    ) -> None:
        (static_root / "logo.svg").write_bytes(svg_bytes)
        resource = await fetcher.fetch("/logo.svg")
        assert resource.content_type == SVG

    @pytest.mark.asyncio
    async def test_missing_file_is_unavailable(self, fetcher: OriginFetcher) -> None:
        with pytest.raises(OriginUnavailableError):
            await fetcher.fetch("/missing.png")

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, fetcher: OriginFetcher) -> None:
        with pytest.raises(InvalidRequestError):
            await fetcher.fetch("/../../etc/passwd")

    @pytest.mark.asyncio
    async def test_encoded_traversal_rejected(self, fetcher: OriginFetcher) -> None:
        with pytest.raises(InvalidRequestError):
            await fetcher.fetch("/%2e%2e/%2e%2e/etc/passwd")

    @pytest.mark.asyncio
    async def test_peek_validator_matches_fetch(
        self, fetcher: OriginFetcher, static_root: Path, jpeg_bytes: bytes
    ) -> None:
        """The pre-fetch validator equals the one recorded by the fetch."""
        (static_root / "a.jpg").write_bytes(jpeg_bytes)

        peeked = await fetcher.peek_validator("/a.jpg")
        resource = await fetcher.fetch("/a.jpg")

        assert peeked is not None
        assert peeked.token == resource.validators.token

    @pytest.mark.asyncio
    async def test_peek_validator_missing_file(self, fetcher: OriginFetcher) -> None:
        assert await fetcher.peek_validator("/missing.png") is None
