"""Public REST API endpoints around the relay."""

import logging
import time

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from streamrelay.api.relay import proxy_origin
from streamrelay.config import settings
from streamrelay.errors import InputError, RelayError
from streamrelay.manifest import HLS_MIME, relay_url
from streamrelay.relay import RelayMode, cors_headers, validate_target

router = APIRouter(prefix="/api")
logger = logging.getLogger("api.routes")


# -- Models ------------------------------------------------------------------

class ProxyUrlRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=4096)
    mode: str = "standard"


class ProxyUrlResponse(BaseModel):
    proxyUrl: str


class Channel(BaseModel):
    id: str
    name: str
    url: str
    country: str


class Country(BaseModel):
    code: str
    name: str
    channels: list[Channel]


class ChannelsResponse(BaseModel):
    countries: list[Country]


class HealthResponse(BaseModel):
    status: str
    uptime_seconds: float
    credential_cached: bool
    resolve_cache_size: int


# -- Channel catalog ---------------------------------------------------------

_COUNTRY_NAMES = {
    "albania": "Albania",
    "arabia": "Arabia",
    "balkans": "Balkans",
    "bulgaria": "Bulgaria",
    "france": "France",
    "germany": "Germany",
    "italy": "Italy",
    "netherlands": "Netherlands",
    "poland": "Poland",
    "portugal": "Portugal",
    "romania": "Romania",
    "russia": "Russia",
    "spain": "Spain",
    "turkey": "Turkey",
    "uk": "United Kingdom",
    "united_kingdom": "United Kingdom",
}


def country_name(code: str) -> str:
    known = _COUNTRY_NAMES.get(code.lower())
    if known:
        return known
    return code[:1].upper() + code[1:]


def channel_play_url(channel_id) -> str:
    return f"https://{settings.indirection_domain}/play/{channel_id}/index.m3u8"


def group_channels(items: list) -> list[Country]:
    """Group the flat upstream channel list by country, sorted by display name."""
    grouped: dict[str, list[Channel]] = {}
    for item in items:
        if not isinstance(item, dict) or "id" not in item:
            continue
        code = item.get("country") or "Unknown"
        grouped.setdefault(code, []).append(
            Channel(
                id=str(item["id"]),
                name=str(item.get("name", "")),
                url=channel_play_url(item["id"]),
                country=code,
            )
        )
    countries = [
        Country(code=code.lower(), name=country_name(code), channels=channels)
        for code, channels in grouped.items()
    ]
    countries.sort(key=lambda c: c.name)
    return countries


@router.get("/channels", response_model=ChannelsResponse)
async def channels(request: Request):
    client: httpx.AsyncClient = request.app.state.http
    headers = {
        "User-Agent": settings.device_user_agent,
        "Accept": "application/json",
        "Accept-Language": "en-US,en;q=0.9",
        "Referer": f"https://{settings.indirection_domain}/",
    }
    try:
        resp = await client.get(settings.channels_url, headers=headers)
    except httpx.TimeoutException:
        return JSONResponse({"error": "Request timeout", "countries": []}, status_code=504)
    except httpx.RequestError:
        return JSONResponse({"error": "Upstream connection failed", "countries": []}, status_code=502)

    if resp.is_error:
        logger.error("Failed to fetch channels: %s", resp.status_code)
        return JSONResponse(
            {"error": f"Failed to fetch channels: {resp.status_code}", "countries": []},
            status_code=resp.status_code,
        )

    try:
        data = resp.json()
    except ValueError:
        data = None
    if not isinstance(data, list) or not data:
        logger.info("No channel data received")
        return ChannelsResponse(countries=[])

    countries = group_channels(data)
    logger.info("Returning %d countries from %d channels", len(countries), len(data))
    return ChannelsResponse(countries=countries)


# -- Proxy URL builder -------------------------------------------------------

@router.post("/proxy", response_model=ProxyUrlResponse)
async def build_proxy_url(body: ProxyUrlRequest, request: Request):
    try:
        target = validate_target(body.url)
        mode = RelayMode.parse(body.mode)
    except InputError as exc:
        raise HTTPException(400, exc.message)
    return ProxyUrlResponse(proxyUrl=relay_url(proxy_origin(request), target, mode.value))


# -- Direct (no-proxy) playlist ----------------------------------------------

@router.get("/direct")
async def direct_playlist(request: Request, url: str | None = None):
    source = validate_target(url)
    result = await request.app.state.relay.direct_playlist(source)
    return Response(
        content=result.text,
        headers={
            "Content-Type": HLS_MIME,
            **cors_headers(),
            "Cache-Control": "no-cache",
            "X-CDN-URL": result.cdn_url,
            "X-Original-URL": result.source_url,
            "X-Resolve-Duration": str(result.resolve_ms),
            "X-M3U8-Duration": str(result.fetch_ms),
        },
    )


# -- Diagnostics -------------------------------------------------------------

@router.get("/debug")
async def debug(request: Request, step: str = "ping", url: str | None = None):
    """Walk the auth (and optionally resolve) chain and report each step.

    The ping always goes to the network; the resulting token replaces the
    cached one.  Only a short prefix of the signature is reported.
    """
    relay = request.app.state.relay
    results: dict = {"step": step}

    start = time.monotonic()
    try:
        cred = await relay.credentials.get_token(refresh=True)
    except RelayError as exc:
        results["ping"] = {
            "ok": False,
            "error": exc.message,
            "duration_ms": int((time.monotonic() - start) * 1000),
        }
        return JSONResponse(results, headers=cors_headers())

    results["ping"] = {
        "ok": True,
        "duration_ms": int((time.monotonic() - start) * 1000),
        "hasSignature": True,
        "addonSig": cred.redacted(),
    }

    if step == "all" and url:
        source = validate_target(url)
        start = time.monotonic()
        try:
            resolved = await relay.resolver.resolve(source, cred)
            results["resolve"] = {"ok": True, "resolvedUrl": resolved}
        except RelayError as exc:
            results["resolve"] = {"ok": False, "error": exc.message}
        results["resolve"]["duration_ms"] = int((time.monotonic() - start) * 1000)
    elif step == "resolve":
        results["info"] = "Use step=all to test the full chain (ping + resolve)"

    return JSONResponse(results, headers=cors_headers())


# -- Health ------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    relay = request.app.state.relay
    return HealthResponse(
        status="ok",
        uptime_seconds=round(time.time() - request.app.state.start_time, 1),
        credential_cached=relay.credentials.peek() is not None,
        resolve_cache_size=len(request.app.state.resolve_cache),
    )
