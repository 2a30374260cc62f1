import logging

from fastapi import Request

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _csv(raw: str | None) -> list[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


def _first_forwarded(value: str | None) -> str:
    return (value or "").split(",")[0].strip()


def _from_trusted_proxy(request: Request) -> bool:
    peer = request.client.host if request.client else ""
    return bool(peer) and peer in _csv(settings.TRUSTED_PROXY_IPS)


def client_ip(request: Request) -> str:
    """Caller IP for share analytics. X-Forwarded-For counts only behind a trusted proxy."""
    if _from_trusted_proxy(request):
        forwarded = _first_forwarded(request.headers.get("x-forwarded-for"))
        if forwarded:
            return forwarded
    return (request.client.host if request.client else "") or ""


def get_safe_base_url_from_request(request: Request) -> str:
    """
    Base URL for share links and board URLs.

    The request host is used only when it appears in ALLOWED_BASE_HOSTS; anything
    else gets APP_BASE_URL so a spoofed Host header cannot redirect shared links.
    X-Forwarded-Host/Proto are read only from TRUSTED_PROXY_IPS.
    """
    fallback = (settings.APP_BASE_URL or "").rstrip("/")
    trusted = _from_trusted_proxy(request)

    host_header = _first_forwarded(request.headers.get("x-forwarded-host")) if trusted else ""
    if not host_header:
        host_header = (request.headers.get("host") or "").strip()
    hostname = host_header.split(":")[0].strip().lower()
    if not hostname or hostname not in {host.lower() for host in _csv(settings.ALLOWED_BASE_HOSTS)}:
        if hostname:
            logger.debug("base_url: host %s not allowed, using APP_BASE_URL", hostname)
        return fallback

    scheme = request.url.scheme or "https"
    if trusted:
        proto = (request.headers.get("x-forwarded-proto") or "").strip().lower()
        if proto in ("http", "https"):
            scheme = proto
    return f"{scheme}://{host_header.lower()}"


class CoreSettings(BaseSettings):
    ENV: str = Field(default="development", validation_alias="APP_ENV")
    APP_NAME: str = "haulsync-api"
    LOG_LEVEL: str = "INFO"

    APP_BASE_URL: str = "https://app.haulsync.io"
    ALLOWED_BASE_HOSTS: str = "app.haulsync.io,localhost,127.0.0.1"
    TRUSTED_PROXY_IPS: str = ""  # Comma-separated IPs; X-Forwarded-Host honored only from these
    CORS_ORIGINS: str = "http://localhost:3000"

    SESSION_SECRET_KEY: str = "change-this-session-secret"
    SESSION_COOKIE_DOMAIN: str = ""
    ACCESS_TOKEN_MAX_AGE_SECONDS: int = 60 * 60 * 24 * 30

    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    PUSH_TIMEOUT_SECONDS: int = 15
    PUSH_CHUNK_SIZE: int = 100

    GEOCODER_URL: str = "https://api.zippopotam.us/us"
    GEOCODER_TIMEOUT_SECONDS: int = 10

    SUGGESTION_DEFAULT_MAX_DETOUR_MILES: float = 50.0
    SUGGESTION_EXPIRY_HOURS: int = 24
    MATCH_RESULT_LIMIT: int = 20
    DEFAULT_TRAILER_CAPACITY_CUFT: float = 4200.0

    # Cost model used by the matching engine when a driver has no per-mile rate
    FUEL_COST_PER_MILE: float = 0.65
    DEFAULT_DRIVER_RATE_PER_MILE: float = 0.60

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CoreSettings()
