"""
LinkedIn integration.
"""
import logging
from urllib.parse import urlencode

from zapsocial.exceptions import ProviderError
from zapsocial.models.integration import Integration
from zapsocial.services.integrations.base import BaseIntegration, TokenResponse

logger = logging.getLogger(__name__)


class LinkedInIntegration(BaseIntegration):
    """LinkedIn OAuth 2.0 client (OpenID Connect + member posting)."""

    platform = "linkedin"
    token_endpoint = "/oauth/v2/accessToken"

    SCOPES = [
        "openid",
        "profile",
        "email",
        "w_member_social",
    ]

    AUTH_URL = "https://www.linkedin.com/oauth/v2/authorization"
    TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
    USERINFO_URL = "https://api.linkedin.com/v2/userinfo"

    def get_auth_url(self, state: str) -> str:
        """Generate LinkedIn OAuth authorization URL."""
        params = {
            "response_type": "code",
            "client_id": self.settings.linkedin_client_id,
            "redirect_uri": self.settings.linkedin_redirect_uri,
            "state": state,
            "scope": " ".join(self.SCOPES),
        }
        return f"{self.AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, form: dict[str, str]) -> dict:
        response = await self.http.post(
            self.TOKEN_URL,
            data={
                **form,
                "client_id": self.settings.linkedin_client_id,
                "client_secret": self.settings.linkedin_client_secret,
            },
        )
        data = self._json(response)

        if response.is_error or "error" in data:
            raise ProviderError(
                data.get("error_description") or data.get("error") or "LinkedIn token request failed",
                status_code=response.status_code,
                body=data,
            )

        return data

    async def exchange_code(self, code: str) -> TokenResponse:
        """Exchange authorization code for tokens and fetch the member profile."""
        data = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.linkedin_redirect_uri,
        })

        expires_in = data.get("expires_in")
        tokens = TokenResponse(
            access_token=self._access_token(data),
            refresh_token=data.get("refresh_token"),
            expires_in=expires_in,
            expires_at=self.expires_at(expires_in),
            scopes=(data.get("scope") or "").replace(",", " ").split() or list(self.SCOPES),
        )

        profile = None
        response = await self.http.get(
            self.USERINFO_URL,
            headers={"Authorization": f"Bearer {tokens.access_token}"},
        )
        if response.is_success:
            profile = self._json(response)
            tokens.external_user_id = profile.get("sub")
        else:
            # Not fatal, the profile can be fetched later
            logger.error("Error fetching LinkedIn profile: HTTP %s", response.status_code)

        tokens.metadata = {
            "profile": profile,
            "app_id": self.settings.linkedin_client_id,
            "refresh_token_expires_in": data.get("refresh_token_expires_in"),
        }
        return tokens

    def refresh_credential(self, integration: Integration) -> str:
        """LinkedIn renews access tokens with the refresh token."""
        return self._require(integration.refresh_token, "No refresh token found to refresh")

    async def refresh_token(self, credential: str) -> TokenResponse:
        """Refresh LinkedIn access token."""
        data = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": credential,
        })

        expires_in = data.get("expires_in")
        return TokenResponse(
            access_token=self._access_token(data),
            refresh_token=data.get("refresh_token"),
            expires_in=expires_in,
            expires_at=self.expires_at(expires_in),
        )

    def is_credential_expired(self, error: ProviderError) -> bool:
        message = (error.message or "").lower()
        return "expired" in message or "invalid" in message
