"""FastAPI application entrypoint — lifespan, caches, and routes."""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from streamrelay.api.relay import relay_error_handler, router as relay_router
from streamrelay.api.routes import router as api_router
from streamrelay.cache import TTLCache
from streamrelay.config import settings
from streamrelay.errors import RelayError
from streamrelay.relay import EXPOSED_HEADERS, RelayService
from streamrelay.upstream.credentials import CredentialProvider
from streamrelay.upstream.fetcher import UpstreamFetcher
from streamrelay.upstream.resolver import IndirectionResolver

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("main")


async def _periodic_cache_sweep(caches: list[TTLCache], interval_seconds: int | None = None):
    """Background task that drops expired cache entries nobody reads again."""
    if interval_seconds is None:
        interval_seconds = settings.cache_sweep_interval_s
    while True:
        await asyncio.sleep(interval_seconds)
        for cache in caches:
            try:
                removed = cache.purge_expired()
                if removed:
                    logger.info("Swept %d expired entries from %s cache", removed, cache.name)
            except Exception:
                logger.exception("Periodic sweep of %s cache failed", cache.name)


def build_relay(client: httpx.AsyncClient, credential_cache: TTLCache, resolve_cache: TTLCache) -> RelayService:
    return RelayService(
        CredentialProvider(client, credential_cache),
        IndirectionResolver(client, resolve_cache),
        UpstreamFetcher(client),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    # Caches live in process memory; extra workers would each hold their own
    # token and hit the auth endpoint separately.
    web_concurrency = os.environ.get("WEB_CONCURRENCY", "1")
    try:
        if int(web_concurrency) > 1:
            logger.warning(
                "WEB_CONCURRENCY=%s — every worker keeps its own credential "
                "and resolve cache.",
                web_concurrency,
            )
    except ValueError:
        pass  # Non-integer value, ignore

    from streamrelay.config import _resolve_env_file
    env_path = _resolve_env_file()
    logger.info(
        "Starting stream relay (env_file=%s, exists=%s)",
        env_path, env_path.exists(),
    )
    settings.warn_insecure_defaults()
    app.state.start_time = time.time()
    app.state.background_tasks = set()

    # Tests may pre-install a client (e.g. backed by httpx.MockTransport).
    owns_client = getattr(app.state, "http", None) is None
    if owns_client:
        app.state.http = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.segment_timeout_s, connect=settings.connect_timeout_s),
        )
    app.state.credential_cache = TTLCache("credential")
    app.state.resolve_cache = TTLCache("resolve", max_entries=settings.resolve_cache_max_entries)
    app.state.relay = build_relay(app.state.http, app.state.credential_cache, app.state.resolve_cache)

    sweep_task = asyncio.create_task(
        _periodic_cache_sweep([app.state.credential_cache, app.state.resolve_cache])
    )
    app.state.background_tasks.add(sweep_task)
    sweep_task.add_done_callback(app.state.background_tasks.discard)

    logger.info("Relay ready (indirection_domain=%s)", settings.indirection_domain)
    yield

    # Shutdown
    logger.info("Shutting down")
    tasks = list(app.state.background_tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)

    if owns_client:
        await app.state.http.aclose()
        app.state.http = None
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Build the application with the CORS origins currently in ``settings``."""
    application = FastAPI(
        title="Stream Relay",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url=None,
    )

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Range", "User-Agent", "Content-Type"],
        expose_headers=[h.strip() for h in EXPOSED_HEADERS.split(",")],
    )

    application.add_exception_handler(RelayError, relay_error_handler)

    application.include_router(relay_router)
    application.include_router(api_router)
    return application


app = create_app()


def run():
    import uvicorn

    uvicorn.run("streamrelay.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
