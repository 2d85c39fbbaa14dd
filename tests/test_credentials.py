import asyncio
import json

import httpx
import pytest

from conftest import AUTH_URL
from streamrelay.cache import TTLCache
from streamrelay.errors import AuthFailure
from streamrelay.upstream.credentials import CredentialProvider, build_ping_payload


def _provider(http_client):
    return CredentialProvider(http_client, TTLCache("credential"))


@pytest.mark.anyio
async def test_token_is_fetched_once_and_cached(upstream, http_client):
    upstream.add(AUTH_URL, httpx.Response(200, json={"addonSig": "sig-123"}))
    provider = _provider(http_client)

    first = await provider.get_token()
    second = await provider.get_token()

    assert first.token == "sig-123"
    assert second is first
    assert first.expires_at - first.issued_at == pytest.approx(3600)
    assert len(upstream.calls_to(AUTH_URL)) == 1


@pytest.mark.anyio
async def test_ping_sends_device_emulation_payload(upstream, http_client):
    upstream.add(AUTH_URL, httpx.Response(200, json={"addonSig": "sig"}))

    await _provider(http_client).get_token()

    (request,) = upstream.calls_to(AUTH_URL)
    assert request.method == "POST"
    assert request.headers["user-agent"] == "okhttp/4.11.0"
    body = json.loads(request.content)
    assert body["package"] == "tv.vavoo.app"
    assert body["metadata"]["device"]["brand"] == "google"
    assert body["firstAppStart"] == body["lastAppStart"]


@pytest.mark.anyio
async def test_concurrent_cold_cache_calls_all_succeed_then_hit_cache(upstream, http_client):
    upstream.add(AUTH_URL, lambda request: httpx.Response(200, json={"addonSig": "sig-concurrent"}))
    provider = _provider(http_client)

    creds = await asyncio.gather(provider.get_token(), provider.get_token())
    assert all(c.token == "sig-concurrent" for c in creds)
    cold_calls = len(upstream.calls_to(AUTH_URL))
    assert 1 <= cold_calls <= 2

    for _ in range(10):
        assert (await provider.get_token()).token == "sig-concurrent"
    assert len(upstream.calls_to(AUTH_URL)) == cold_calls


@pytest.mark.anyio
async def test_bad_status_raises_and_is_not_cached(upstream, http_client):
    upstream.add(AUTH_URL, httpx.Response(503))
    provider = _provider(http_client)

    with pytest.raises(AuthFailure) as exc:
        await provider.get_token()
    assert exc.value.upstream_status == 503
    assert exc.value.status_code == 502
    assert provider.peek() is None

    upstream.add(AUTH_URL, httpx.Response(200, json={"addonSig": "later"}))
    assert (await provider.get_token()).token == "later"
    assert len(upstream.calls_to(AUTH_URL)) == 2


@pytest.mark.anyio
async def test_missing_token_field_raises(upstream, http_client):
    upstream.add(AUTH_URL, httpx.Response(200, json={"status": "ok"}))

    with pytest.raises(AuthFailure) as exc:
        await _provider(http_client).get_token()
    assert exc.value.reason == "missingField"


@pytest.mark.anyio
async def test_unreachable_endpoint_raises(upstream, http_client):
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    upstream.add(AUTH_URL, refuse)

    with pytest.raises(AuthFailure) as exc:
        await _provider(http_client).get_token()
    assert exc.value.reason == "unreachable"


@pytest.mark.anyio
async def test_refresh_bypasses_cache(upstream, http_client):
    upstream.add(AUTH_URL, httpx.Response(200, json={"addonSig": "sig"}))
    provider = _provider(http_client)

    await provider.get_token()
    await provider.get_token(refresh=True)

    assert len(upstream.calls_to(AUTH_URL)) == 2


def test_payload_timestamps_follow_argument():
    payload = build_ping_payload(1234)
    assert payload["firstAppStart"] == 1234
    assert payload["metadata"]["app"]["version"] == payload["version"]
