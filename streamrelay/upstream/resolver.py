"""Indirection resolver — exchanges an upstream play URL for a CDN URL."""

import logging
from urllib.parse import urlsplit

import httpx

from streamrelay.cache import TTLCache
from streamrelay.config import settings
from streamrelay.errors import ResolveFailure
from streamrelay.upstream.credentials import Credential

logger = logging.getLogger("resolver")


def is_indirection_url(url: str) -> bool:
    """True when the URL's host is the indirection domain or a subdomain of it."""
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return False
    domain = settings.indirection_domain.lower().lstrip(".")
    return bool(host) and (host == domain or host.endswith("." + domain))


def extract_resolved_url(payload) -> str | None:
    """Pull the CDN URL out of either supported response shape.

    The resolve endpoint answers with a list of ``{"url": ...}`` objects or,
    less often, a single such object.
    """
    if isinstance(payload, list):
        first = payload[0] if payload else None
        url = first.get("url") if isinstance(first, dict) else None
    elif isinstance(payload, dict):
        url = payload.get("url")
    else:
        url = None
    if isinstance(url, str) and url.strip():
        return url.strip()
    return None


class IndirectionResolver:
    def __init__(self, client: httpx.AsyncClient, cache: TTLCache):
        self._client = client
        self._cache = cache

    def cached(self, source_url: str) -> str | None:
        return self._cache.get(source_url)

    async def resolve(self, source_url: str, credential: Credential) -> str:
        cached = self._cache.get(source_url)
        if cached is not None:
            return cached

        payload = {
            "language": settings.resolve_language,
            "region": settings.resolve_region,
            "url": source_url,
            "clientVersion": settings.client_version,
        }
        headers = {
            "User-Agent": settings.resolve_user_agent,
            "Accept": "application/json",
            "Content-Type": "application/json; charset=utf-8",
            "Accept-Encoding": "gzip",
            settings.signature_header: credential.token,
        }
        try:
            resp = await self._client.post(
                settings.resolve_url,
                json=payload,
                headers=headers,
                timeout=httpx.Timeout(settings.resolve_timeout_s, connect=settings.connect_timeout_s),
            )
        except httpx.TimeoutException:
            logger.warning("Resolve timed out for %s", source_url[:100])
            raise ResolveFailure("timeout")
        except httpx.RequestError as exc:
            logger.warning("Resolve request failed: %s", exc.__class__.__name__)
            raise ResolveFailure("unreachable")

        if resp.is_error or resp.status_code >= 300:
            logger.error("Resolve failed: HTTP %s for %s", resp.status_code, source_url[:100])
            raise ResolveFailure("status", status=resp.status_code)

        try:
            data = resp.json()
        except ValueError:
            data = None
        resolved = extract_resolved_url(data)
        if resolved is None:
            logger.error("Resolve response for %s has no url", source_url[:100])
            raise ResolveFailure("noUrlFound")

        self._cache.set(source_url, resolved, settings.resolve_ttl_s)
        logger.info("Resolved %s -> %s", source_url[:100], resolved[:80])
        return resolved
