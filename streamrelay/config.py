"""Configuration via Pydantic Settings, loaded from .env file."""

import logging
import os
from pathlib import Path
from pydantic_settings import BaseSettings

_cfg_logger = logging.getLogger("config")

_DEFAULT_BROWSER_UA = (
    "Mozilla/5.0 (Linux; Android 13) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)

# Resolve .env path relative to the project root (parent of streamrelay/) so
# it works regardless of the working directory the process is launched from.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _resolve_env_file() -> Path:
    """Return an absolute path to the .env file.

    If ``STREAMRELAY_ENV_FILE`` is set, use it (resolved relative to the
    project root when not absolute).  Otherwise default to
    ``<project_root>/.env``.
    """
    raw = os.environ.get("STREAMRELAY_ENV_FILE", "")
    if raw:
        p = Path(raw)
        return p if p.is_absolute() else _PROJECT_ROOT / p
    return _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_allowed_origins: str = "*"
    # Origin used when rewriting manifest entries. Empty = derive from the
    # incoming request (honours X-Forwarded-Proto / X-Forwarded-Host).
    public_origin: str = ""

    # Upstream endpoints
    auth_url: str = "https://www.vavoo.tv/api/app/ping"
    resolve_url: str = "https://vavoo.to/mediahubmx-resolve.json"
    channels_url: str = "https://vavoo.to/channels"
    indirection_domain: str = "vavoo.to"

    # Identity profiles
    device_user_agent: str = "VAVOO/2.6"
    auth_user_agent: str = "okhttp/4.11.0"
    resolve_user_agent: str = "MediaHubMX/2"
    browser_user_agent: str = _DEFAULT_BROWSER_UA
    signature_header: str = "mediahubmx-signature"

    # Resolve payload
    resolve_language: str = "de"
    resolve_region: str = "AT"
    client_version: str = "3.1.21"

    # -- Caches ---------------------------------------------------------------

    credential_ttl_s: int = 3600
    resolve_ttl_s: int = 1800
    resolve_cache_max_entries: int = 1024
    cache_sweep_interval_s: int = 300

    # -- Timeouts -------------------------------------------------------------

    connect_timeout_s: float = 10.0
    auth_timeout_s: float = 15.0
    resolve_timeout_s: float = 15.0
    manifest_timeout_s: float = 30.0
    segment_timeout_s: float = 60.0

    # -- Response caching / streaming -----------------------------------------

    manifest_max_age_s: int = 10
    segment_max_age_s: int = 86400
    stream_chunk_bytes: int = 65536

    model_config = {
        "env_file": str(_resolve_env_file()),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origins(self) -> list[str]:
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]
        return origins or ["*"]

    def warn_insecure_defaults(self):
        """Log warnings about permissive defaults. Called once at startup."""
        if "*" in self.cors_origins:
            _cfg_logger.warning(
                "CORS_ALLOWED_ORIGINS allows any origin. Anyone can embed this "
                "relay in a page; restrict it before exposing to the internet."
            )
        if not self.public_origin:
            _cfg_logger.info(
                "PUBLIC_ORIGIN is empty, rewritten manifests will use the origin "
                "of each request (X-Forwarded-Proto/X-Forwarded-Host honoured). "
                "Set PUBLIC_ORIGIN when running behind a reverse proxy."
            )


settings = Settings()
