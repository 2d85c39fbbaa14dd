"""Relay orchestration — one client request through auth, resolve, fetch, rewrite.

Per request the service walks these steps:

1. classify the target URL (indirection domain or not)
2. for ``auth`` mode, attach the signature to indirection-domain requests
3. for ``cdn`` mode, exchange indirection URLs for their CDN URL
4. fetch, retrying once with another identity on a 403 for a segment
5. rewrite playlists, stream anything else through unmodified

Errors surface as ``RelayError`` subclasses; the API layer renders them.
``cdn`` mode never falls back to fetching the indirection URL itself when
auth or resolve fails.
"""

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator

import httpx

from streamrelay import manifest
from streamrelay.config import settings
from streamrelay.errors import InputError, UpstreamError
from streamrelay.upstream.credentials import CredentialProvider
from streamrelay.upstream.fetcher import Identity, UpstreamFetcher, fallback_identity
from streamrelay.upstream.resolver import IndirectionResolver, is_indirection_url

logger = logging.getLogger("relay")

DEFAULT_SEGMENT_TYPE = "video/MP2T"

EXPOSED_HEADERS = "Content-Length, Content-Range, Accept-Ranges"

# Upstream headers copied onto segment responses.
_SEGMENT_FORWARD_HEADERS = ("content-length", "content-range", "accept-ranges")


class RelayMode(str, enum.Enum):
    STANDARD = "standard"
    AUTH = "auth"
    CDN = "cdn"

    @classmethod
    def parse(cls, raw: str | None) -> "RelayMode":
        if not raw:
            return cls.STANDARD
        try:
            return cls(raw.lower())
        except ValueError:
            raise InputError(f"Unknown mode: {raw[:20]}")


@dataclass
class RelayRequest:
    target_url: str
    mode: RelayMode = RelayMode.STANDARD
    range_header: str | None = None


@dataclass
class RelayResult:
    status_code: int
    headers: dict[str, str]
    fetched_url: str
    final_url: str
    body: str | None = None
    stream: AsyncIterator[bytes] | None = None
    upstream: httpx.Response | None = field(default=None, repr=False)

    @property
    def is_playlist(self) -> bool:
        return self.body is not None


@dataclass
class DirectPlaylist:
    text: str
    source_url: str
    cdn_url: str
    resolve_ms: int
    fetch_ms: int


def validate_target(raw: str | None) -> str:
    """Reject missing or non-http(s) target URLs with an InputError."""
    if not raw or not raw.strip():
        raise InputError("URL required")
    url = raw.strip()
    try:
        parts = httpx.URL(url)
    except (httpx.InvalidURL, ValueError):
        raise InputError("Invalid URL")
    if parts.scheme not in ("http", "https") or not parts.host:
        raise InputError("Invalid URL")
    return url


def cors_headers() -> dict[str, str]:
    """CORS headers for relay responses.

    The wildcard origin is only sent when ``CORS_ALLOWED_ORIGINS`` allows
    any origin.  With an explicit list, ``CORSMiddleware`` echoes allowed
    origins and leaves the rest without an allow-origin header.
    """
    headers = {
        "Access-Control-Allow-Methods": "GET, OPTIONS",
        "Access-Control-Allow-Headers": "Range, User-Agent, Content-Type",
    }
    if "*" in settings.cors_origins:
        headers["Access-Control-Allow-Origin"] = "*"
    return headers


def manifest_headers() -> dict[str, str]:
    return {
        "Content-Type": manifest.HLS_MIME,
        **cors_headers(),
        "Cache-Control": f"public, max-age={settings.manifest_max_age_s}",
    }


def segment_headers(upstream: httpx.Response) -> dict[str, str]:
    headers = {
        "Content-Type": upstream.headers.get("content-type") or DEFAULT_SEGMENT_TYPE,
        **cors_headers(),
        "Access-Control-Expose-Headers": EXPOSED_HEADERS,
        "Cache-Control": f"public, max-age={settings.segment_max_age_s}, immutable",
    }
    for key in _SEGMENT_FORWARD_HEADERS:
        if key in upstream.headers:
            headers[key.title()] = upstream.headers[key]
    # httpx decodes gzip/deflate bodies, so the upstream length no longer applies.
    if "content-encoding" in upstream.headers:
        headers.pop("Content-Length", None)
    return headers


async def _iter_upstream(resp: httpx.Response, chunk_size: int) -> AsyncIterator[bytes]:
    try:
        async for chunk in resp.aiter_bytes(chunk_size):
            yield chunk
    finally:
        await resp.aclose()


class RelayService:
    def __init__(
        self,
        credentials: CredentialProvider,
        resolver: IndirectionResolver,
        fetcher: UpstreamFetcher,
    ):
        self.credentials = credentials
        self.resolver = resolver
        self.fetcher = fetcher

    async def _route(self, req: RelayRequest) -> tuple[str, Identity, dict[str, str]]:
        """Pick the URL to fetch, the identity and any extra headers."""
        indirect = is_indirection_url(req.target_url)
        if not indirect:
            return req.target_url, Identity.BROWSER, {}

        if req.mode is RelayMode.AUTH:
            cred = await self.credentials.get_token()
            return req.target_url, Identity.DEVICE, {settings.signature_header: cred.token}

        if req.mode is RelayMode.CDN:
            cred = await self.credentials.get_token()
            cdn_url = await self.resolver.resolve(req.target_url, cred)
            return cdn_url, Identity.BROWSER, {}

        return req.target_url, Identity.DEVICE, {}

    async def _fetch_ok(
        self,
        url: str,
        identity: Identity,
        extra: dict[str, str],
        range_header: str | None,
        expect_playlist: bool,
    ) -> httpx.Response:
        timeout = settings.manifest_timeout_s if expect_playlist else settings.segment_timeout_s
        resp = await self.fetcher.fetch(url, identity, range_header, timeout, extra)

        if resp.status_code == 403 and not expect_playlist:
            await resp.aclose()
            alt = fallback_identity(identity)
            logger.info("403 on segment with %s identity, retrying as %s: %s",
                        identity.value, alt.value, url[:100])
            # Vendor headers only make sense with the device identity.
            resp = await self.fetcher.fetch(url, alt, range_header, timeout,
                                            extra if alt is Identity.DEVICE else None)

        if not 200 <= resp.status_code < 300:
            logger.error("Stream error %s for: %s", resp.status_code, url[:100])
            await resp.aclose()
            raise UpstreamError(resp.status_code)
        return resp

    async def relay(self, req: RelayRequest, proxy_origin: str) -> RelayResult:
        fetch_url, identity, extra = await self._route(req)
        expect_playlist = manifest.looks_like_playlist(None, req.target_url, fetch_url)
        resp = await self._fetch_ok(fetch_url, identity, extra, req.range_header, expect_playlist)

        final_url = str(resp.url)
        content_type = resp.headers.get("content-type", "")
        if manifest.looks_like_playlist(content_type, req.target_url, final_url):
            try:
                await resp.aread()
            finally:
                await resp.aclose()
            body = manifest.rewrite(resp.text, final_url, proxy_origin, req.mode.value)
            return RelayResult(
                status_code=200,
                headers=manifest_headers(),
                fetched_url=fetch_url,
                final_url=final_url,
                body=body,
            )

        return RelayResult(
            status_code=resp.status_code,
            headers=segment_headers(resp),
            fetched_url=fetch_url,
            final_url=final_url,
            stream=_iter_upstream(resp, settings.stream_chunk_bytes),
            upstream=resp,
        )

    async def direct_playlist(self, source_url: str) -> DirectPlaylist:
        """Resolve and fetch a playlist, making its entries absolute CDN URLs.

        The returned playlist does not route through the relay, so players
        fetch segments from the CDN themselves.
        """
        start = time.monotonic()
        cdn_url, _, _ = await self._route(RelayRequest(source_url, RelayMode.CDN))
        resolve_ms = int((time.monotonic() - start) * 1000)

        start = time.monotonic()
        resp = await self._fetch_ok(cdn_url, Identity.BROWSER, {}, None, expect_playlist=True)
        try:
            await resp.aread()
        finally:
            await resp.aclose()
        fetch_ms = int((time.monotonic() - start) * 1000)

        text = manifest.rewrite(resp.text, str(resp.url), None)
        return DirectPlaylist(text, source_url, cdn_url, resolve_ms, fetch_ms)
