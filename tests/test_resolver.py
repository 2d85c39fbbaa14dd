import json
import time

import httpx
import pytest

from conftest import RESOLVE_URL
from streamrelay.cache import TTLCache
from streamrelay.errors import ResolveFailure
from streamrelay.upstream.credentials import Credential
from streamrelay.upstream.resolver import IndirectionResolver, extract_resolved_url, is_indirection_url

SOURCE = "https://indirect.example/play/42/index.m3u8"
CDN = "https://cdn2.example/x/index.m3u8"


def _cred():
    now = time.time()
    return Credential(token="sig-abc", issued_at=now, expires_at=now + 60)


def _resolver(http_client, cache=None):
    return IndirectionResolver(http_client, cache or TTLCache("resolve"))


@pytest.mark.anyio
async def test_array_response_shape(upstream, http_client):
    upstream.add(RESOLVE_URL, httpx.Response(200, json=[{"url": CDN}, {"url": "https://other"}]))

    assert await _resolver(http_client).resolve(SOURCE, _cred()) == CDN


@pytest.mark.anyio
async def test_object_response_shape(upstream, http_client):
    upstream.add(RESOLVE_URL, httpx.Response(200, json={"url": CDN}))

    assert await _resolver(http_client).resolve(SOURCE, _cred()) == CDN


@pytest.mark.anyio
async def test_request_carries_signature_and_payload(upstream, http_client):
    upstream.add(RESOLVE_URL, httpx.Response(200, json={"url": CDN}))

    await _resolver(http_client).resolve(SOURCE, _cred())

    (request,) = upstream.calls_to(RESOLVE_URL)
    assert request.headers["mediahubmx-signature"] == "sig-abc"
    assert request.headers["user-agent"] == "MediaHubMX/2"
    assert json.loads(request.content) == {
        "language": "de",
        "region": "AT",
        "url": SOURCE,
        "clientVersion": "3.1.21",
    }


@pytest.mark.anyio
async def test_result_is_cached_per_source_url(upstream, http_client):
    upstream.add(RESOLVE_URL, httpx.Response(200, json={"url": CDN}))
    resolver = _resolver(http_client)

    await resolver.resolve(SOURCE, _cred())
    await resolver.resolve(SOURCE, _cred())

    assert len(upstream.calls_to(RESOLVE_URL)) == 1
    assert resolver.cached(SOURCE) == CDN


@pytest.mark.anyio
@pytest.mark.parametrize("payload", [{}, [], [{}], {"url": ""}, "nope", [{"link": CDN}]])
async def test_unusable_payload_raises_no_url_found(upstream, http_client, payload):
    upstream.add(RESOLVE_URL, httpx.Response(200, json=payload))
    cache = TTLCache("resolve")

    with pytest.raises(ResolveFailure) as exc:
        await _resolver(http_client, cache).resolve(SOURCE, _cred())
    assert exc.value.reason == "noUrlFound"
    assert len(cache) == 0


@pytest.mark.anyio
async def test_rejected_status_raises(upstream, http_client):
    upstream.add(RESOLVE_URL, httpx.Response(403, json={"error": "bad sig"}))

    with pytest.raises(ResolveFailure) as exc:
        await _resolver(http_client).resolve(SOURCE, _cred())
    assert exc.value.upstream_status == 403
    assert "sig-abc" not in exc.value.message


def test_extract_resolved_url_strips_whitespace():
    assert extract_resolved_url([{"url": f" {CDN} "}]) == CDN
    assert extract_resolved_url(None) is None


def test_is_indirection_url():
    assert is_indirection_url("https://indirect.example/play/1/index.m3u8")
    assert is_indirection_url("https://edge.indirect.example/x.ts")
    assert not is_indirection_url("https://notindirect.example/x.ts")
    assert not is_indirection_url("https://cdn.example/indirect.example/x.ts")
    assert not is_indirection_url("garbage")
