"""Environment configuration for the flight proxy.

Values are read from the process environment after loading a local .env file.
Secrets (API keys) are kept out of repr() and never logged.
"""
import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from flight_proxy.schemas import UpstreamRoute

DEFAULT_CORS_ORIGINS = (
    "https://front-end-c0mh.onrender.com,"
    "https://preview.navifare.com,"
    "https://navifare.com,"
    "http://localhost:5173,"
    "http://localhost:4173"
)


def env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def env_csv(name: str, default: str = "") -> List[str]:
    value = os.getenv(name, default)
    return [item.strip() for item in value.split(",") if item.strip()]


# Logs full request lines, query string included
QUIET_LOGGERS = ("urllib3",)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging at `level`, keeping HTTP client loggers at WARNING or above."""
    logging.basicConfig(level=level)
    floor = max(logging.getLogger().getEffectiveLevel(), logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(floor)


def default_cors_origins() -> List[str]:
    return [item.strip() for item in DEFAULT_CORS_ORIGINS.split(",")]


class ProxySettings(BaseModel):
    """All externally supplied values the proxy consumes."""
    port: int = 3001
    log_level: str = "INFO"
    cors_origins: List[str] = Field(default_factory=default_cors_origins)

    airlabs_base_url: str = "https://airlabs.co"
    airlabs_api_key: Optional[str] = Field(None, repr=False)

    farera_base_url: Optional[str] = None
    farera_api_key: Optional[str] = Field(None, repr=False)
    farera_path_prefix: str = "/api/search"
    farera_key_param: str = "apikey"

    upstream_timeout_seconds: float = 300.0

    alert_cooldown_minutes: float = 15.0
    alert_recipients: List[str] = Field(default_factory=list)
    feedback_recipients: List[str] = Field(default_factory=list)
    alert_from: str = "Flight Proxy <alerts@navifare.com>"
    resend_api_key: Optional[str] = Field(None, repr=False)
    notifier_timeout_seconds: float = 10.0


def load_settings() -> ProxySettings:
    """Build ProxySettings from the environment (and a .env file, if present)."""
    load_dotenv()
    alert_recipients = env_csv("ALERT_RECIPIENTS")
    return ProxySettings(
        port=env_int("PORT", 3001),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=env_csv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS),
        airlabs_base_url=os.getenv("AIRLABS_BASE_URL", "https://airlabs.co"),
        airlabs_api_key=os.getenv("AIRLABS_API_KEY") or None,
        farera_base_url=os.getenv("FARERA_BASE_URL") or None,
        farera_api_key=os.getenv("FARERA_API_KEY") or None,
        farera_path_prefix=os.getenv("FARERA_PATH_PREFIX", "/api/search"),
        farera_key_param=os.getenv("FARERA_KEY_PARAM", "apikey"),
        upstream_timeout_seconds=env_float("UPSTREAM_TIMEOUT_SECONDS", 300.0),
        alert_cooldown_minutes=env_float("ALERT_COOLDOWN_MINUTES", 15.0),
        alert_recipients=alert_recipients,
        feedback_recipients=env_csv("FEEDBACK_RECIPIENTS") or alert_recipients,
        alert_from=os.getenv("ALERT_FROM", "Flight Proxy <alerts@navifare.com>"),
        resend_api_key=os.getenv("RESEND_API_KEY") or None,
        notifier_timeout_seconds=env_float("NOTIFIER_TIMEOUT_SECONDS", 10.0),
    )


def build_routes(settings: ProxySettings) -> List[UpstreamRoute]:
    """Return the proxy legs enabled by `settings`."""
    routes = [
        # AirLabs is the only leg whose responses are inspected and alerted on
        UpstreamRoute(
            service="airlabs",
            mount="/api/airlabs",
            target=settings.airlabs_base_url,
            rewrite_to="/api/v9",
            key_param="api_key",
            api_key=settings.airlabs_api_key,
            inspect=True,
            methods=["GET"],
        ),
    ]
    if settings.farera_base_url:
        routes.append(
            UpstreamRoute(
                service="farera",
                mount="/api/search",
                target=settings.farera_base_url,
                rewrite_to=settings.farera_path_prefix,
                key_param=settings.farera_key_param,
                api_key=settings.farera_api_key,
                inspect=False,
                methods=["GET", "POST"],
            )
        )
    return routes
