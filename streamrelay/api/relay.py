"""The relay endpoint: GET/OPTIONS /relay.

``GET /relay?url=<encoded>&mode=standard|auth|cdn`` proxies a playlist or a
segment.  Playlists come back rewritten so that every entry points at this
endpoint again with the same mode.  Segments are streamed through chunk by
chunk; the upstream response is closed when the stream ends or the client
disconnects.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from streamrelay.config import settings
from streamrelay.errors import RelayError
from streamrelay.relay import RelayMode, RelayRequest, cors_headers, validate_target

logger = logging.getLogger("api.relay")

router = APIRouter()


def proxy_origin(request: Request) -> str:
    """Origin that rewritten URLs should point at."""
    if settings.public_origin:
        return settings.public_origin.rstrip("/")
    scheme = request.headers.get("X-Forwarded-Proto", request.url.scheme)
    host = request.headers.get("X-Forwarded-Host", request.headers.get("host", request.url.netloc))
    return f"{scheme.split(',')[0].strip()}://{host.split(',')[0].strip()}"


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        {"error": message, "status": status_code},
        status_code=status_code,
        headers=cors_headers(),
    )


async def relay_error_handler(request: Request, exc: RelayError):
    return error_response(exc.status_code, exc.message)


@router.get("/relay")
async def relay(request: Request, url: str | None = None, mode: str | None = None):
    target = validate_target(url)
    relay_mode = RelayMode.parse(mode)
    req = RelayRequest(target, relay_mode, request.headers.get("range"))

    try:
        result = await request.app.state.relay.relay(req, proxy_origin(request))
    except RelayError:
        raise
    except Exception:
        # Never echo the exception: it may carry upstream URLs or tokens.
        logger.exception("Relay failed for %s", target[:100])
        return error_response(500, "Internal relay error")

    if result.is_playlist:
        return Response(
            content=result.body,
            status_code=result.status_code,
            headers=result.headers,
        )

    upstream = result.upstream
    return StreamingResponse(
        result.stream,
        status_code=result.status_code,
        headers=result.headers,
        background=BackgroundTask(upstream.aclose),
    )


@router.options("/relay")
async def relay_preflight():
    return Response(status_code=200, headers=cors_headers())
