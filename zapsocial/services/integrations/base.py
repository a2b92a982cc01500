"""
Base integration interface.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from zapsocial.config import Settings, get_settings
from zapsocial.exceptions import MissingCredential, ProviderError
from zapsocial.models.integration import Integration

# Long-lived tokens on both Meta and LinkedIn last 60 days
SIXTY_DAYS_SECONDS = 60 * 24 * 60 * 60


@dataclass
class TokenResponse:
    """OAuth token response."""
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    expires_at: datetime | None = None
    scopes: list[str] | None = None
    external_user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class BaseIntegration(ABC):
    """
    Abstract base class for platform OAuth clients.

    Clients never construct their own HTTP client; the caller owns the
    ``httpx.AsyncClient`` and its lifetime.
    """

    platform: str = ""
    default_expires_in: int = SIXTY_DAYS_SECONDS
    token_endpoint: str = ""
    token_method: str = "POST"

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings | None = None):
        self.http = http_client
        self.settings = settings or get_settings()

    def expires_at(self, expires_in: int | None) -> datetime:
        """Absolute expiry for a relative lifetime, with the platform default."""
        return datetime.now(timezone.utc) + timedelta(
            seconds=expires_in or self.default_expires_in
        )

    @abstractmethod
    def get_auth_url(self, state: str) -> str:
        """
        Generate OAuth authorization URL.

        Args:
            state: Signed state string for CSRF protection

        Returns:
            Authorization URL to redirect user to
        """
        pass

    @abstractmethod
    async def exchange_code(self, code: str) -> TokenResponse:
        """
        Exchange authorization code for tokens and account details.

        Args:
            code: Authorization code from OAuth callback

        Returns:
            TokenResponse with tokens, provider user id and metadata
        """
        pass

    @abstractmethod
    def refresh_credential(self, integration: Integration) -> str:
        """
        Pick the stored credential the refresh protocol needs.

        Raises:
            MissingCredential: The integration has no such credential
        """
        pass

    @abstractmethod
    async def refresh_token(self, credential: str) -> TokenResponse:
        """
        Exchange a credential for a renewed access token.

        Args:
            credential: Value returned by ``refresh_credential``

        Returns:
            TokenResponse with the new access token

        Raises:
            ProviderError: The provider rejected the request
        """
        pass

    @abstractmethod
    def is_credential_expired(self, error: ProviderError) -> bool:
        """Whether a provider error means the user must re-authorize."""
        pass

    @staticmethod
    def _require(value: str | None, message: str) -> str:
        if not value:
            raise MissingCredential(message)
        return value

    @staticmethod
    def _access_token(data: dict[str, Any]) -> str:
        if not data.get("access_token"):
            raise ProviderError("No access token in provider response", body=data)
        return data["access_token"]

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
