"""Upstream fetcher — one GET against a manifest or segment URL.

Redirects are followed by httpx.  Callers read ``response.url`` for the
post-redirect location, which is the base for resolving relative playlist
entries.

Responses are opened in streaming mode; the caller owns them and must call
``aclose()`` (the relay does so when the body has been read or the client
went away).
"""

import enum
import logging

import httpx

from streamrelay.config import settings
from streamrelay.errors import FetchError, FetchTimeout

logger = logging.getLogger("fetcher")


class Identity(str, enum.Enum):
    """Outbound header sets presented to upstream servers."""

    DEVICE = "device"  # the set-top app, for indirection-domain URLs
    BROWSER = "browser"  # plain mobile browser, for CDN URLs
    BROWSER_WIDE = "browser_wide"  # browser plus referer/origin/language


def identity_headers(identity: Identity) -> dict[str, str]:
    if identity is Identity.DEVICE:
        ua = settings.device_user_agent
    else:
        ua = settings.browser_user_agent
    headers = {
        "User-Agent": ua,
        "Accept": "*/*",
        "Connection": "keep-alive",
        "Accept-Encoding": "gzip, deflate",
    }
    if identity is Identity.BROWSER_WIDE:
        site = f"https://{settings.indirection_domain}"
        headers["Referer"] = f"{site}/"
        headers["Origin"] = site
        headers["Accept-Language"] = "en-US,en;q=0.9"
    return headers


def fallback_identity(identity: Identity) -> Identity:
    """The single alternate profile tried after a 403 on a segment."""
    if identity is Identity.DEVICE:
        return Identity.BROWSER
    return Identity.BROWSER_WIDE


class UpstreamFetcher:
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def fetch(
        self,
        url: str,
        identity: Identity,
        range_header: str | None = None,
        timeout_s: float | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        headers = identity_headers(identity)
        if extra_headers:
            headers.update(extra_headers)
        if range_header:
            headers["Range"] = range_header

        timeout = httpx.Timeout(
            timeout_s if timeout_s is not None else settings.segment_timeout_s,
            connect=settings.connect_timeout_s,
        )
        request = self._client.build_request("GET", url, headers=headers, timeout=timeout)
        try:
            resp = await self._client.send(request, stream=True, follow_redirects=True)
        except httpx.TimeoutException:
            logger.warning("Upstream timed out: %s", url[:100])
            raise FetchTimeout()
        except httpx.RequestError as exc:
            logger.warning("Upstream request failed (%s): %s", exc.__class__.__name__, url[:100])
            raise FetchError()

        logger.debug(
            "GET %s [%s] -> %s %s",
            url[:100], identity.value, resp.status_code, resp.headers.get("content-type", ""),
        )
        return resp
