"""Test configuration — fake upstream services behind httpx.MockTransport."""

import os

# Keep a developer's .env out of the test run; must be set before any
# streamrelay imports.
os.environ["STREAMRELAY_ENV_FILE"] = "/nonexistent/.env"

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from streamrelay.config import settings  # noqa: E402
from streamrelay.main import app  # noqa: E402

AUTH_URL = "https://auth.example/api/app/ping"
RESOLVE_URL = "https://indirect.example/mediahubmx-resolve.json"
CHANNELS_URL = "https://indirect.example/channels"


class FakeUpstream:
    """Routes outbound requests by full URL and records every call."""

    def __init__(self):
        self.routes = {}
        self.calls: list[httpx.Request] = []

    def add(self, url, response):
        """``response`` is an httpx.Response or a callable taking the request."""
        self.routes[url] = response

    def calls_to(self, url) -> list[httpx.Request]:
        return [r for r in self.calls if str(r.url) == url]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, text="no route")
        if callable(route):
            return route(request)
        # Fresh copy per call: a Response object is single-use.
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _relay_settings(monkeypatch):
    overrides = {
        "auth_url": AUTH_URL,
        "resolve_url": RESOLVE_URL,
        "channels_url": CHANNELS_URL,
        "indirection_domain": "indirect.example",
        "public_origin": "",
    }
    for k, v in overrides.items():
        monkeypatch.setattr(settings, k, v)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def http_client(upstream):
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
async def api_client(http_client):
    app.state.http = http_client
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    await http_client.aclose()
    app.state.http = None
