"""Process configuration for InvoiceAgent.

All environment reads for QuickBooks OAuth, the LLM agent, and HTTP
behaviour go through ``get_settings()``. The settings object is built once
per process; tests call ``reset_settings()`` after patching the environment.

Environment variables:
    QUICKBOOKS_CLIENT_ID / QUICKBOOKS_CLIENT_SECRET: OAuth app credentials.
    QUICKBOOKS_REDIRECT_URI: Callback URL registered with Intuit.
    QUICKBOOKS_ENVIRONMENT: 'sandbox' (default) or 'production'.
    QUICKBOOKS_HTTP_TIMEOUT: Outbound request timeout in seconds (default 30).
    AGENT_MODEL / ANTHROPIC_MODEL: Claude model for the chat agent.
    AGENT_MAX_STEPS: Maximum LLM round-trips per chat turn (default 5).
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

QUICKBOOKS_AUTHORIZE_URL = "https://appcenter.intuit.com/connect/oauth2"
QUICKBOOKS_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
QUICKBOOKS_SCOPE = "com.intuit.quickbooks.accounting"

_QUICKBOOKS_BASE_URLS = {
    "sandbox": "https://sandbox-quickbooks.api.intuit.com",
    "production": "https://quickbooks.api.intuit.com",
}

DEFAULT_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_MAX_STEPS = 5
DEFAULT_HTTP_TIMEOUT = 30.0

# Refresh the access token this many seconds before it actually expires.
TOKEN_REFRESH_MARGIN_SECONDS = 300


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration."""

    quickbooks_client_id: str
    quickbooks_client_secret: str
    quickbooks_redirect_uri: str
    quickbooks_environment: str
    http_timeout: float
    agent_model: str
    agent_max_steps: int

    @property
    def quickbooks_base_url(self) -> str:
        """Return the QuickBooks Online API host for the configured environment."""
        return _QUICKBOOKS_BASE_URLS[self.quickbooks_environment]

    @property
    def oauth_configured(self) -> bool:
        """True when client id, secret and redirect URI are all present."""
        return bool(
            self.quickbooks_client_id
            and self.quickbooks_client_secret
            and self.quickbooks_redirect_uri
        )


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default


def load_settings() -> Settings:
    """Build a Settings object from the current environment.

    Returns:
        Settings with defaults applied for unset variables.
    """
    environment = os.environ.get("QUICKBOOKS_ENVIRONMENT", "sandbox").strip().lower()
    if environment not in _QUICKBOOKS_BASE_URLS:
        logger.warning(
            "Unknown QUICKBOOKS_ENVIRONMENT=%r, falling back to sandbox", environment
        )
        environment = "sandbox"

    model = (
        os.environ.get("AGENT_MODEL", "").strip()
        or os.environ.get("ANTHROPIC_MODEL", "").strip()
        or DEFAULT_MODEL
    )

    return Settings(
        quickbooks_client_id=os.environ.get("QUICKBOOKS_CLIENT_ID", "").strip(),
        quickbooks_client_secret=os.environ.get("QUICKBOOKS_CLIENT_SECRET", "").strip(),
        quickbooks_redirect_uri=os.environ.get("QUICKBOOKS_REDIRECT_URI", "").strip(),
        quickbooks_environment=environment,
        http_timeout=_env_float("QUICKBOOKS_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        agent_model=model,
        agent_max_steps=max(1, _env_int("AGENT_MAX_STEPS", DEFAULT_MAX_STEPS)),
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings. Used by tests."""
    global _settings
    _settings = None
