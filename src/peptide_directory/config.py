import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger

log = get_logger("config")

DEFAULT_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1/chat/completions"
DEFAULT_GATEWAY_MODEL = "google/gemini-3-flash-preview"
DEFAULT_FIRECRAWL_URL = "https://api.firecrawl.dev/v1"


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    Running tools from a subdirectory (e.g. `src/`) still finds the
    deployment-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Parse the nearest .env into a mapping without touching os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug("No .env found starting from: %s", os.path.abspath(dotenv_dir or "."))
        return {}
    values = {k: v.strip() for k, v in dotenv_values(path).items() if v is not None}
    log.debug("Loaded %d key(s) from .env at %s", len(values), path)
    return values


def _lookup(dotenv_dir: str, *names: str) -> Optional[str]:
    """First non-empty value for any of names: environment wins over .env."""
    for name in names:
        v = os.environ.get(name)
        if v and v.strip():
            return v.strip()
    env = _read_dotenv(dotenv_dir)
    for name in names:
        v = env.get(name)
        if v:
            return v
    return None


@dataclass(frozen=True)
class GatewaySettings:
    """Settings for the OpenAI-compatible chat-completions gateway."""

    api_key: Optional[str]
    url: str = DEFAULT_GATEWAY_URL
    model: str = DEFAULT_GATEWAY_MODEL
    backend: str = "gateway"
    timeout_seconds: int = 120


@dataclass(frozen=True)
class SiteAccessSettings:
    password: Optional[str]
    secret: str = "secret"


def load_gateway(dotenv_dir: str) -> GatewaySettings:
    api_key = _lookup(dotenv_dir, "AI_GATEWAY_API_KEY", "LOVABLE_API_KEY")
    if api_key:
        log.info("AI gateway key loaded")
    else:
        log.debug("AI_GATEWAY_API_KEY not found in env or .env")
    backend = (_lookup(dotenv_dir, "AI_BACKEND") or "gateway").lower()
    if backend not in {"gateway", "openai"}:
        log.warning("AI_BACKEND=%s is invalid; expected gateway/openai. Falling back to 'gateway'.", backend)
        backend = "gateway"
    timeout_raw = _lookup(dotenv_dir, "AI_GATEWAY_TIMEOUT")
    try:
        timeout = int(timeout_raw) if timeout_raw else 120
    except ValueError:
        log.warning("AI_GATEWAY_TIMEOUT=%s is not an integer; using 120", timeout_raw)
        timeout = 120
    return GatewaySettings(
        api_key=api_key,
        url=_lookup(dotenv_dir, "AI_GATEWAY_URL") or DEFAULT_GATEWAY_URL,
        model=_lookup(dotenv_dir, "AI_GATEWAY_MODEL") or DEFAULT_GATEWAY_MODEL,
        backend=backend,
        timeout_seconds=timeout,
    )


def load_firecrawl(dotenv_dir: str) -> Optional[str]:
    """Return the FIRECRAWL_API_KEY from env or .env."""
    return _lookup(dotenv_dir, "FIRECRAWL_API_KEY")


def load_firecrawl_url(dotenv_dir: str) -> str:
    return (_lookup(dotenv_dir, "FIRECRAWL_API_URL") or DEFAULT_FIRECRAWL_URL).rstrip("/")


def load_site_access(dotenv_dir: str) -> SiteAccessSettings:
    password = _lookup(dotenv_dir, "SITE_ACCESS_PASSWORD")
    if not password:
        log.warning("SITE_ACCESS_PASSWORD is not set; site access verification will fail")
    secret = _lookup(dotenv_dir, "SITE_ACCESS_SECRET") or "secret"
    return SiteAccessSettings(password=password, secret=secret)


def load_cron_secret(dotenv_dir: str) -> Optional[str]:
    """Shared secret expected in X-Cron-Secret for unauthenticated schedule triggers."""
    return _lookup(dotenv_dir, "CRON_SECRET")


def load_db_path(dotenv_dir: str) -> Optional[str]:
    return _lookup(dotenv_dir, "DIRECTORY_DB_PATH")
