"""QuickBooks OAuth 2.0 client and access-token lifecycle.

QuickBooksOAuthClient talks to Intuit's authorization server (code
exchange and refresh grant). TokenManager owns the stored credential and
hands out access tokens that are valid for at least the refresh margin,
refreshing through the OAuth client when needed.

Refresh is serialized: concurrent callers that all observe an expiring
token wait on one lock, and only the first performs the refresh grant.
QuickBooks rotates refresh tokens, so a second grant with the old refresh
token would be rejected.
"""

import asyncio
import base64
import logging
import secrets
from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from src.config import (
    QUICKBOOKS_AUTHORIZE_URL,
    QUICKBOOKS_SCOPE,
    QUICKBOOKS_TOKEN_URL,
    TOKEN_REFRESH_MARGIN_SECONDS,
    Settings,
    get_settings,
)
from src.errors.domain import NotAuthenticated, TokenRefreshFailed, UpstreamError
from src.services.token_store import Credential, CredentialStore
from src.utils.redaction import mask_token, redact_for_logging

logger = logging.getLogger(__name__)

# Intuit access tokens live one hour; used when expires_in is missing.
_DEFAULT_EXPIRES_IN = 3600


def utc_now() -> datetime:
    """Current UTC time. Injected as a clock so tests can pin it."""
    return datetime.now(UTC)


class QuickBooksOAuthClient:
    """Client for Intuit's OAuth 2.0 authorization server.

    Args:
        settings: Runtime settings (client id/secret, redirect URI).
        http_client: Optional shared httpx client. When omitted a client
            is created per request.
        now_fn: Clock used to convert ``expires_in`` to absolute instants.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        now_fn: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._http = http_client
        self._now = now_fn

    def authorization_url(self, state: str) -> str:
        """Build the Intuit consent URL the browser is redirected to.

        Args:
            state: Opaque anti-CSRF value echoed back on the callback.

        Returns:
            Fully-qualified authorization URL.
        """
        params = {
            "client_id": self._settings.quickbooks_client_id,
            "scope": QUICKBOOKS_SCOPE,
            "redirect_uri": self._settings.quickbooks_redirect_uri,
            "response_type": "code",
            "access_type": "offline",
            "state": state,
        }
        return f"{QUICKBOOKS_AUTHORIZE_URL}?{urlencode(params)}"

    def _get_headers(self) -> dict[str, str]:
        raw = (
            f"{self._settings.quickbooks_client_id}:"
            f"{self._settings.quickbooks_client_secret}"
        )
        basic = base64.b64encode(raw.encode()).decode()
        return {
            "Authorization": f"Basic {basic}",
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }

    async def _post_token(self, data: dict[str, str]) -> httpx.Response:
        if self._http is not None:
            return await self._http.post(
                QUICKBOOKS_TOKEN_URL, data=data, headers=self._get_headers()
            )
        async with httpx.AsyncClient(timeout=self._settings.http_timeout) as client:
            return await client.post(
                QUICKBOOKS_TOKEN_URL, data=data, headers=self._get_headers()
            )

    def _expiry(self, seconds: Any, default: int | None) -> datetime | None:
        try:
            value = int(seconds)
        except (TypeError, ValueError):
            if default is None:
                return None
            value = default
        return self._now() + timedelta(seconds=value)

    async def exchange_code(self, code: str, realm_id: str) -> Credential:
        """Exchange an authorization code for a new credential.

        Args:
            code: Authorization code from the OAuth callback.
            realm_id: QuickBooks company id from the OAuth callback.

        Returns:
            The new Credential.

        Raises:
            UpstreamError: If the token endpoint rejects the code or is
                unreachable.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._settings.quickbooks_redirect_uri,
        }
        try:
            response = await self._post_token(data)
        except httpx.HTTPError as e:
            raise UpstreamError(f"OAuth token exchange failed: {e}") from e

        payload = _json_or_text(response)
        if response.status_code >= 400:
            logger.error(
                "OAuth code exchange rejected (%s): %s",
                response.status_code,
                redact_for_logging(payload) if isinstance(payload, dict) else payload,
            )
            raise UpstreamError(
                "OAuth token exchange failed",
                upstream_status=response.status_code,
                details=_oauth_error_details(payload),
            )
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise UpstreamError("OAuth token exchange returned no access_token")

        credential = Credential(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token", ""),
            realm_id=realm_id,
            expires_at=self._expiry(payload.get("expires_in"), _DEFAULT_EXPIRES_IN),
            refresh_expires_at=self._expiry(
                payload.get("x_refresh_token_expires_in"), None
            ),
            token_type=payload.get("token_type") or "bearer",
        )
        logger.info(
            "OAuth code exchanged for realm %s (access %s)",
            realm_id,
            mask_token(credential.access_token),
        )
        return credential

    async def refresh(self, credential: Credential) -> Credential:
        """Run the refresh-token grant for a stored credential.

        Args:
            credential: The current credential.

        Returns:
            A new Credential. The prior refresh token is kept when the
            provider omits a new one.

        Raises:
            TokenRefreshFailed: If the grant is rejected or the provider
                is unreachable. Not retried.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
        }
        try:
            response = await self._post_token(data)
        except httpx.HTTPError as e:
            raise TokenRefreshFailed(f"Token refresh failed: {e}") from e

        payload = _json_or_text(response)
        if response.status_code >= 400 or not isinstance(payload, dict):
            logger.warning("Token refresh rejected (%s)", response.status_code)
            raise TokenRefreshFailed(
                "Token refresh failed. Reconnect via /auth/quickbooks.",
                details=_oauth_error_details(payload),
            )

        access_token = payload.get("access_token")
        if not access_token:
            raise TokenRefreshFailed("Token refresh response had no access_token")

        refreshed = credential.rotated(
            access_token=access_token,
            expires_at=self._expiry(payload.get("expires_in"), _DEFAULT_EXPIRES_IN),
            refresh_token=payload.get("refresh_token"),
            refresh_expires_at=self._expiry(
                payload.get("x_refresh_token_expires_in"), None
            ),
        )
        logger.info(
            "Refreshed QuickBooks access token for realm %s (access %s)",
            refreshed.realm_id,
            mask_token(refreshed.access_token),
        )
        return refreshed


def _json_or_text(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _oauth_error_details(payload: Any) -> dict[str, Any] | None:
    if isinstance(payload, dict):
        return {
            "error": payload.get("error"),
            "error_description": payload.get("error_description"),
        }
    return {"body": payload} if payload else None


class OAuthStateRegistry:
    """Bounded set of OAuth ``state`` values issued by this process.

    Args:
        max_pending: Oldest states are forgotten beyond this count.
    """

    def __init__(self, max_pending: int = 50) -> None:
        self._pending: OrderedDict[str, datetime] = OrderedDict()
        self._max_pending = max_pending
        self._issued_any = False

    def issue(self) -> str:
        """Create and remember a fresh state value."""
        state = secrets.token_urlsafe(24)
        self._issued_any = True
        self._pending[state] = utc_now()
        while len(self._pending) > self._max_pending:
            self._pending.popitem(last=False)
        return state

    def consume(self, state: str | None) -> bool:
        """Validate and forget a state value.

        Returns:
            True if the state was issued here and not yet used.
        """
        if not state:
            return False
        return self._pending.pop(state, None) is not None

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    @property
    def issued_any(self) -> bool:
        """True once any state was issued, even if all have been consumed."""
        return self._issued_any


class TokenManager:
    """Hands out valid access tokens, refreshing through the OAuth client.

    Args:
        store: Credential repository.
        oauth_client: Client used for code exchange and refresh.
        now_fn: Clock; defaults to the wall clock in UTC.
        margin_seconds: Refresh this long before actual expiry.
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: QuickBooksOAuthClient,
        now_fn: Callable[[], datetime] = utc_now,
        margin_seconds: int = TOKEN_REFRESH_MARGIN_SECONDS,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._now = now_fn
        self._margin = margin_seconds
        self._refresh_lock = asyncio.Lock()
        self.states = OAuthStateRegistry()

    @property
    def oauth_client(self) -> QuickBooksOAuthClient:
        return self._oauth

    def current_credential(self) -> Credential | None:
        """Return the stored credential without validating expiry."""
        return self._store.get()

    def is_connected(self) -> bool:
        return self._store.get() is not None

    async def get_valid_credential(self) -> Credential:
        """Return a credential whose access token is usable right now.

        Raises:
            NotAuthenticated: If no credential is stored.
            TokenRefreshFailed: If a needed refresh was rejected.
        """
        credential = self._store.get()
        if credential is None:
            raise NotAuthenticated()
        if not credential.needs_refresh(self._now(), self._margin):
            return credential

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited.
            credential = self._store.get()
            if credential is None:
                raise NotAuthenticated()
            if not credential.needs_refresh(self._now(), self._margin):
                return credential

            logger.info(
                "Access token for realm %s expires at %s, refreshing",
                credential.realm_id,
                credential.expires_at.isoformat(),
            )
            refreshed = await self._oauth.refresh(credential)
            self._store.set(refreshed)
            return refreshed

    async def get_valid_access_token(self) -> str:
        """Return a valid access token, refreshing it first if needed.

        Raises:
            NotAuthenticated: If no credential is stored.
            TokenRefreshFailed: If a needed refresh was rejected.
        """
        credential = await self.get_valid_credential()
        return credential.access_token

    async def complete_authorization(self, code: str, realm_id: str) -> Credential:
        """Exchange a callback code and store the resulting credential."""
        credential = await self._oauth.exchange_code(code, realm_id)
        self._store.set(credential)
        return credential

    def disconnect(self) -> None:
        """Forget the stored credential (logout/disconnect)."""
        self._store.delete()
