"""
Facebook integration (Pages, plus Instagram business accounts linked to them).
"""
import logging
from typing import Any
from urllib.parse import urlencode

from zapsocial.exceptions import ProviderError
from zapsocial.models.integration import Integration
from zapsocial.services.integrations.base import BaseIntegration, TokenResponse
from zapsocial.utils.retry import is_token_expired

logger = logging.getLogger(__name__)

# Short-lived user tokens from the code exchange last about an hour
SHORT_LIVED_EXPIRES_IN = 3600


class FacebookIntegration(BaseIntegration):
    """Facebook Graph API OAuth client."""

    platform = "facebook"
    token_endpoint = "/oauth/access_token"
    token_method = "GET"

    SCOPES = [
        "pages_show_list",
        "pages_read_engagement",
        "pages_manage_posts",
        "pages_read_user_content",
        "business_management",
    ]

    @property
    def graph_url(self) -> str:
        return f"https://graph.facebook.com/{self.settings.facebook_graph_version}"

    @property
    def dialog_url(self) -> str:
        return f"https://www.facebook.com/{self.settings.facebook_graph_version}/dialog/oauth"

    def get_auth_url(self, state: str) -> str:
        """Generate Facebook OAuth dialog URL."""
        params = {
            "client_id": self.settings.facebook_app_id,
            "redirect_uri": self.settings.facebook_redirect_uri,
            "scope": ",".join(self.SCOPES),
            "state": state,
            "response_type": "code",
        }
        return f"{self.dialog_url}?{urlencode(params)}"

    async def _graph_get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        response = await self.http.get(f"{self.graph_url}{path}", params=params)
        data = self._json(response)

        if response.is_error or "error" in data:
            error = data.get("error") or {}
            raise ProviderError(
                error.get("message") or f"Graph API request failed: {path}",
                status_code=response.status_code,
                code=error.get("code"),
                body=data,
            )

        return data

    async def exchange_code(self, code: str) -> TokenResponse:
        """Exchange code for a long-lived token and collect account details."""
        short = await self._graph_get(
            self.token_endpoint,
            {
                "client_id": self.settings.facebook_app_id,
                "client_secret": self.settings.facebook_app_secret,
                "redirect_uri": self.settings.facebook_redirect_uri,
                "code": code,
            },
        )

        # Fall back to the short-lived token if the long-lived exchange fails
        try:
            tokens = await self.refresh_token(self._access_token(short))
        except ProviderError as e:
            logger.warning("Long-lived token exchange failed: %s", e.message)
            expires_in = short.get("expires_in") or SHORT_LIVED_EXPIRES_IN
            tokens = TokenResponse(
                access_token=self._access_token(short),
                expires_in=expires_in,
                expires_at=self.expires_at(expires_in),
            )

        tokens.scopes = list(self.SCOPES)

        try:
            me = await self._graph_get("/me", {"access_token": tokens.access_token, "fields": "id"})
            tokens.external_user_id = me.get("id")
        except ProviderError as e:
            logger.error("Failed to fetch Facebook user ID: %s", e.message)

        pages: list[dict[str, Any]] = []
        try:
            accounts = await self._graph_get(
                "/me/accounts",
                {
                    "access_token": tokens.access_token,
                    "fields": "id,name,instagram_business_account{id,username}",
                },
            )
            pages = [
                {
                    "id": page.get("id"),
                    "name": page.get("name"),
                    "instagram_account": page.get("instagram_business_account"),
                }
                for page in accounts.get("data", [])
            ]
        except ProviderError as e:
            logger.error("Failed to fetch Facebook pages: %s", e.message)

        tokens.metadata = {
            "fb_user_id": tokens.external_user_id,
            "pages": pages,
            "app_id": self.settings.facebook_app_id,
        }
        return tokens

    def refresh_credential(self, integration: Integration) -> str:
        """Facebook renews long-lived tokens by exchanging the token itself."""
        return self._require(integration.access_token, "No token found to refresh")

    async def refresh_token(self, credential: str) -> TokenResponse:
        """Exchange a token for a new long-lived token."""
        data = await self._graph_get(
            self.token_endpoint,
            {
                "grant_type": "fb_exchange_token",
                "client_id": self.settings.facebook_app_id,
                "client_secret": self.settings.facebook_app_secret,
                "fb_exchange_token": credential,
            },
        )

        expires_in = data.get("expires_in")
        return TokenResponse(
            access_token=self._access_token(data),
            refresh_token=None,  # Graph API has no refresh tokens
            expires_in=expires_in,
            expires_at=self.expires_at(expires_in),
        )

    def is_credential_expired(self, error: ProviderError) -> bool:
        return is_token_expired(error)


class InstagramIntegration(FacebookIntegration):
    """Instagram business accounts, authorized through Facebook Login."""

    platform = "instagram"
