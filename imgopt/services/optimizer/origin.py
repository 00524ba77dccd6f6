"""Fetches source images from allow-listed hosts or the static root."""

import asyncio
from collections.abc import Iterable
from email.utils import formatdate
from pathlib import Path
from urllib.parse import unquote, urlparse

import aiofiles
import httpx

from imgopt.exceptions import (
    ForbiddenDomainError,
    InvalidRequestError,
    NotAnImageError,
    OriginTimeoutError,
    OriginUnavailableError,
)
from imgopt.services.optimizer.formats import detect_content_type, normalize_content_type
from imgopt.services.optimizer.models import CacheControl, OriginResource, Validators
from imgopt.utils.logger import logger

USER_AGENT = "imgopt/0.1 (+image optimizer)"


def parse_cache_control(header: str | None) -> CacheControl:
    """Parse the freshness directives of a ``Cache-Control`` header.

    Unknown directives and malformed or negative values are ignored.

    Args:
        header: Raw ``Cache-Control`` header value

    Returns:
        CacheControl with ``s_maxage`` and ``max_age`` when present
    """
    if not header:
        return CacheControl()

    values: dict[str, int] = {}
    for directive in header.split(","):
        name, _, value = directive.strip().partition("=")
        name = name.strip().lower()
        if name not in ("s-maxage", "max-age") or name in values:
            continue
        try:
            seconds = int(value.strip().strip('"'))
        except ValueError:
            continue
        if seconds >= 0:
            values[name] = seconds

    return CacheControl(s_maxage=values.get("s-maxage"), max_age=values.get("max-age"))


def is_local_source(src: str) -> bool:
    """Local sources are root-relative paths; ``//host/x`` is protocol-relative, not local."""
    return src.startswith("/") and not src.startswith("//")


class OriginFetcher:
    """Fetches source images for the optimizer.

    Local sources are read from ``static_root``; absolute URLs must point at a
    host in ``domains``. Domain patterns are exact hosts, ``*.example.com``
    (one subdomain level) or ``**.example.com`` (any depth).

    Args:
        domains: Allow-listed hosts for absolute URLs
        static_root: Directory local paths are resolved against
        timeout: Deadline for a single origin fetch, in seconds
        max_source_bytes: Largest source accepted
        client: Optional preconfigured httpx client (owned by the caller)
    """

    def __init__(
        self,
        domains: Iterable[str],
        static_root: Path,
        timeout: float = 7.0,
        max_source_bytes: int = 50 * 1024 * 1024,
        client: httpx.AsyncClient | None = None,
    ):
        self._domains = tuple(d.strip().lower() for d in domains if d.strip())
        self._static_root = Path(static_root).resolve()
        self._timeout = timeout
        self._max_source_bytes = max_source_bytes
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=False,
            headers={"User-Agent": USER_AGENT, "Accept": "image/*,*/*;q=0.8"},
        )

    def is_allowed_host(self, host: str) -> bool:
        """Check a hostname against the configured domain patterns."""
        host = host.lower().rstrip(".")
        for pattern in self._domains:
            if pattern.startswith("**."):
                suffix = pattern[2:]
                if host.endswith(suffix) and len(host) > len(suffix):
                    return True
            elif pattern.startswith("*."):
                suffix = pattern[1:]
                if host.endswith(suffix):
                    label = host[: -len(suffix)]
                    if label and "." not in label:
                        return True
            elif host == pattern:
                return True
        return False

    def check_source(self, src: str) -> None:
        """Validate a source before any I/O.

        Args:
            src: Local path or absolute URL

        Raises:
            InvalidRequestError: If the source is neither a local path nor an http(s) URL
            ForbiddenDomainError: If the URL host is not allow-listed
        """
        if is_local_source(src):
            self._local_path(src)
            return

        parsed = urlparse(src)
        if parsed.scheme not in ("http", "https"):
            raise InvalidRequestError(f"Unsupported image source '{src}'")
        if not parsed.hostname:
            raise InvalidRequestError(f"Image source '{src}' has no host")
        if not self.is_allowed_host(parsed.hostname):
            raise ForbiddenDomainError(parsed.hostname)

    def _local_path(self, src: str) -> Path:
        """Resolve a local source inside the static root."""
        relative = unquote(urlparse(src).path).lstrip("/")
        path = (self._static_root / relative).resolve()
        if not path.is_relative_to(self._static_root):
            raise InvalidRequestError(f"Image source '{src}' escapes the static root")
        return path

    async def peek_validator(self, src: str) -> Validators | None:
        """Return the validator obtainable without transferring the source.

        Local files expose their modification time; remote URLs have no
        validator until fetched.

        Args:
            src: Checked source

        Returns:
            Validators for local files that exist, otherwise None
        """
        if not is_local_source(src):
            return None

        path = self._local_path(src)
        try:
            stat = await asyncio.to_thread(path.stat)
        except OSError:
            return None
        return Validators(last_modified=formatdate(stat.st_mtime, usegmt=True))

    async def fetch(self, src: str) -> OriginResource:
        """Fetch a source image.

        Args:
            src: Local path or absolute URL

        Returns:
            OriginResource with bytes, content type, validators and freshness

        Raises:
            ForbiddenDomainError: If the URL host is not allow-listed (no I/O performed)
            InvalidRequestError: If the source is malformed
            NotAnImageError: If the payload is not an image
            OriginTimeoutError: If the fetch exceeds its deadline
            OriginUnavailableError: On transport failure, non-2xx status or oversized body
        """
        self.check_source(src)
        if is_local_source(src):
            return await self._fetch_local(src)
        return await self._fetch_remote(src)

    async def _fetch_local(self, src: str) -> OriginResource:
        path = self._local_path(src)
        try:
            stat = await asyncio.to_thread(path.stat)
            if stat.st_size > self._max_source_bytes:
                raise OriginUnavailableError(
                    f"Local image '{src}' is larger than {self._max_source_bytes} bytes"
                )
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise OriginUnavailableError(f"Local image '{src}' not found") from e
        except OSError as e:
            raise OriginUnavailableError(f"Cannot read local image '{src}': {e}") from e

        content_type = self._content_type(src, data, None)
        logger.debug(f"Read local image {src} ({len(data)} bytes, {content_type})")
        return OriginResource(
            data=data,
            content_type=content_type,
            validators=Validators(last_modified=formatdate(stat.st_mtime, usegmt=True)),
        )

    async def _fetch_remote(self, src: str) -> OriginResource:
        logger.info(f"Fetching origin image: {src[:80]}")
        try:
            async with asyncio.timeout(self._timeout):
                async with self._client.stream("GET", src) as response:
                    if not response.is_success:
                        raise OriginUnavailableError(
                            f"Origin responded {response.status_code} for '{src}'"
                        )

                    chunks: list[bytes] = []
                    size = 0
                    async for chunk in response.aiter_bytes():
                        size += len(chunk)
                        if size > self._max_source_bytes:
                            raise OriginUnavailableError(
                                f"Origin image '{src}' is larger than {self._max_source_bytes} bytes"
                            )
                        chunks.append(chunk)
                    headers = response.headers
        except (TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"Origin timeout after {self._timeout}s: {src[:80]}")
            raise OriginTimeoutError(src, self._timeout) from e
        except httpx.HTTPError as e:
            logger.error(f"Origin fetch error for {src[:80]}: {e}")
            raise OriginUnavailableError(f"Cannot fetch '{src}': {e}") from e

        data = b"".join(chunks)
        content_type = self._content_type(src, data, headers.get("content-type"))
        logger.debug(f"Fetched {src[:80]} ({len(data)} bytes, {content_type})")
        return OriginResource(
            data=data,
            content_type=content_type,
            validators=Validators(
                etag=headers.get("etag"),
                last_modified=headers.get("last-modified"),
            ),
            cache_control=parse_cache_control(headers.get("cache-control")),
        )

    @staticmethod
    def _content_type(src: str, data: bytes, header: str | None) -> str:
        """Prefer the sniffed type; fall back to a declared ``image/*`` header."""
        sniffed = detect_content_type(data)
        if sniffed:
            return sniffed

        declared = normalize_content_type(header)
        if declared.startswith("image/"):
            return declared
        raise NotAnImageError(src, declared or None)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this fetcher created it."""
        if self._owns_client:
            await self._client.aclose()
