"""Credential storage for the single QuickBooks connection.

The store holds at most one OAuth credential per process. Expiry is
governed only by the credential's own ``expires_at``; the store never
drops an entry on its own. Callers depend on the ``CredentialStore``
interface so tests and alternative backends can be swapped in.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from src.config import TOKEN_REFRESH_MARGIN_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """OAuth credential for one QuickBooks company (realm).

    Attributes:
        access_token: Bearer token for API calls.
        refresh_token: Token used for the refresh grant.
        realm_id: QuickBooks company id the tokens are scoped to.
        expires_at: UTC instant the access token expires.
        refresh_expires_at: UTC instant the refresh token expires, if known.
        token_type: Token type reported by the provider.
    """

    access_token: str
    refresh_token: str
    realm_id: str
    expires_at: datetime
    refresh_expires_at: datetime | None = None
    token_type: str = "bearer"

    def needs_refresh(
        self,
        now: datetime,
        margin_seconds: int = TOKEN_REFRESH_MARGIN_SECONDS,
    ) -> bool:
        """True when ``now`` is past ``expires_at`` minus the safety margin."""
        return now > self.expires_at - timedelta(seconds=margin_seconds)

    def rotated(
        self,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
        refresh_expires_at: datetime | None = None,
    ) -> "Credential":
        """Return a copy carrying a refreshed access token.

        The prior refresh token and its expiry are kept when the provider
        did not issue new ones. The realm id never changes on refresh.
        """
        return replace(
            self,
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=refresh_token or self.refresh_token,
            refresh_expires_at=refresh_expires_at or self.refresh_expires_at,
        )

    def to_status(self) -> dict[str, Any]:
        """Public, token-free view used by the status endpoint."""
        return {
            "realmId": self.realm_id,
            "expiresAt": self.expires_at.astimezone(UTC).isoformat(),
        }


class CredentialStore(ABC):
    """Repository for the process's QuickBooks credential."""

    @abstractmethod
    def get(self) -> Credential | None:
        """Return the stored credential, or None when not connected."""
        ...

    @abstractmethod
    def set(self, credential: Credential) -> None:
        """Store (or replace) the credential."""
        ...

    @abstractmethod
    def delete(self) -> None:
        """Remove the credential. A no-op when nothing is stored."""
        ...


class InMemoryCredentialStore(CredentialStore):
    """Process-local credential store.

    Credentials are lost on restart; the user reconnects through the
    OAuth flow.
    """

    def __init__(self, credential: Credential | None = None) -> None:
        self._credential = credential
        self._lock = threading.Lock()

    def get(self) -> Credential | None:
        with self._lock:
            return self._credential

    def set(self, credential: Credential) -> None:
        with self._lock:
            self._credential = credential
        logger.info(
            "Stored QuickBooks credential for realm %s (expires %s)",
            credential.realm_id,
            credential.expires_at.isoformat(),
        )

    def delete(self) -> None:
        with self._lock:
            had_credential = self._credential is not None
            self._credential = None
        if had_credential:
            logger.info("Cleared QuickBooks credential")
