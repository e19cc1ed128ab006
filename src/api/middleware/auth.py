"""Optional shared-secret protection for the /api surface.

When INVOICEAGENT_API_KEY is set, every /api/ request must carry the same
value in the X-API-Key header. The OAuth routes under /auth stay public so
the Intuit redirect can reach the callback. Repeated failures from one
client address are throttled.
"""

import hmac
import logging
import os
import threading
import time

from fastapi import Request
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

API_KEY_ENV = "INVOICEAGENT_API_KEY"
API_KEY_HEADER = "X-API-Key"

_MAX_FAILURES = 10
_FAILURE_WINDOW_SECONDS = 300
_failures: dict[str, list[float]] = {}
_failures_lock = threading.Lock()


def get_expected_api_key() -> str:
    """Return the configured key; empty string means the check is off."""
    return os.environ.get(API_KEY_ENV, "").strip()


def should_authenticate(path: str) -> bool:
    """Only JSON API routes are protected; /health, /auth and docs are not."""
    return path.startswith("/api/")


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _recent_failures(client_ip: str, now: float) -> list[float]:
    recent = [t for t in _failures.get(client_ip, []) if now - t < _FAILURE_WINDOW_SECONDS]
    _failures[client_ip] = recent
    return recent


def reset_rate_limiter() -> None:
    """Forget recorded failures. Used by tests."""
    with _failures_lock:
        _failures.clear()


async def maybe_require_api_key(request: Request, call_next) -> Response:
    """HTTP middleware enforcing the API key when one is configured."""
    expected = get_expected_api_key()
    if (
        not expected
        or request.method.upper() == "OPTIONS"
        or not should_authenticate(request.url.path)
    ):
        return await call_next(request)

    client_ip = _client_ip(request)
    now = time.monotonic()
    with _failures_lock:
        throttled = len(_recent_failures(client_ip, now)) >= _MAX_FAILURES
    if throttled:
        logger.warning("API key failures throttled for %s", client_ip)
        return JSONResponse(
            status_code=429,
            content={"error": "Too many authentication failures. Try again later."},
        )

    provided = request.headers.get(API_KEY_HEADER, "")
    if not provided or not hmac.compare_digest(provided, expected):
        with _failures_lock:
            _recent_failures(client_ip, now).append(now)
        return JSONResponse(status_code=401, content={"error": "Invalid or missing API key"})
    return await call_next(request)
