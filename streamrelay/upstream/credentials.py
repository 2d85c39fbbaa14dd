"""Credential provider — replays the device-emulation ping to obtain a token.

The upstream app pings an auth endpoint on start with a block of device,
OS and app metadata and receives a signed ``addonSig`` string in return.
That signature is what the resolve endpoint and signed stream requests
expect in the ``mediahubmx-signature`` header.

The token is cached in-process for ``credential_ttl_s``.  Failures are never
cached, so the next request simply tries again.
"""

import logging
import time
from dataclasses import dataclass

import httpx

from streamrelay.cache import TTLCache
from streamrelay.config import settings
from streamrelay.errors import AuthFailure

logger = logging.getLogger("credentials")

_CACHE_KEY = "credential"
_TOKEN_FIELD = "addonSig"

_APP_PACKAGE = "tv.vavoo.app"
_APP_SIGNATURE = "6e8a975e3cbf07d5de823a760d4c2547f86c1403105020adee5de67ac510999e"


@dataclass(frozen=True)
class Credential:
    token: str
    issued_at: float
    expires_at: float

    def is_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at

    def redacted(self) -> str:
        return f"{self.token[:8]}..." if self.token else ""


def build_ping_payload(now_ms: int) -> dict:
    """The fixed device-emulation body the auth endpoint expects."""
    version = settings.client_version
    return {
        "token": "",
        "reason": "app-blur",
        "locale": settings.resolve_language,
        "theme": "dark",
        "metadata": {
            "device": {
                "type": "Handset",
                "brand": "google",
                "model": "Pixel",
                "name": "sdk_gphone64_arm64",
                "uniqueId": "d10e5d99ab665233",
            },
            "os": {
                "name": "android",
                "version": "13",
                "abis": ["arm64-v8a", "armeabi-v7a", "armeabi"],
                "host": "android",
            },
            "app": {
                "platform": "android",
                "version": version,
                "buildId": "289515000",
                "engine": "hbc85",
                "signatures": [_APP_SIGNATURE],
                "installer": "app.revanced.manager.flutter",
            },
            "version": {"package": _APP_PACKAGE, "binary": version, "js": version},
        },
        "appFocusTime": 0,
        "playerActive": False,
        "playDuration": 0,
        "devMode": False,
        "hasAddon": True,
        "castConnected": False,
        "package": _APP_PACKAGE,
        "version": version,
        "process": "app",
        "firstAppStart": now_ms,
        "lastAppStart": now_ms,
        "ipLocation": "",
        "adblockEnabled": True,
        "proxy": {
            "supported": ["ss", "openvpn"],
            "engine": "ss",
            "ssVersion": 1,
            "enabled": True,
            "autoServer": True,
            "id": "de-fra",
        },
        "iap": {"supported": False},
    }


class CredentialProvider:
    """Obtains and caches the signed token from the auth endpoint."""

    def __init__(self, client: httpx.AsyncClient, cache: TTLCache):
        self._client = client
        self._cache = cache

    def peek(self) -> Credential | None:
        cred = self._cache.get(_CACHE_KEY)
        if cred is not None and cred.is_expired():
            self._cache.pop(_CACHE_KEY)
            return None
        return cred

    def invalidate(self):
        self._cache.pop(_CACHE_KEY)

    async def get_token(self, refresh: bool = False) -> Credential:
        if not refresh:
            cached = self.peek()
            if cached is not None:
                return cached

        now = time.time()
        headers = {
            "User-Agent": settings.auth_user_agent,
            "Accept": "application/json",
            "Content-Type": "application/json; charset=utf-8",
            "Accept-Encoding": "gzip",
        }
        try:
            resp = await self._client.post(
                settings.auth_url,
                json=build_ping_payload(int(now * 1000)),
                headers=headers,
                timeout=httpx.Timeout(settings.auth_timeout_s, connect=settings.connect_timeout_s),
            )
        except httpx.TimeoutException:
            logger.warning("Auth ping timed out (%s)", settings.auth_url)
            raise AuthFailure("timeout")
        except httpx.RequestError as exc:
            logger.warning("Auth ping failed: %s", exc.__class__.__name__)
            raise AuthFailure("unreachable")

        if resp.is_error or resp.status_code >= 300:
            logger.error("Auth ping failed: HTTP %s", resp.status_code)
            raise AuthFailure("status", status=resp.status_code)

        try:
            data = resp.json()
        except ValueError:
            logger.error("Auth ping returned a non-JSON body")
            raise AuthFailure("invalidBody")

        token = data.get(_TOKEN_FIELD) if isinstance(data, dict) else None
        if not token or not isinstance(token, str):
            logger.error("Auth ping response has no %s field", _TOKEN_FIELD)
            raise AuthFailure("missingField")

        ttl = settings.credential_ttl_s
        cred = Credential(token=token, issued_at=now, expires_at=now + ttl)
        self._cache.set(_CACHE_KEY, cred, ttl)
        logger.info("Signature obtained and cached for %ds (%s)", ttl, cred.redacted())
        return cred
