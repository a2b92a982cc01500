"""
Platform integration clients.
"""
import httpx
from fastapi import HTTPException, status

from zapsocial.config import Settings
from zapsocial.services.integrations.base import BaseIntegration, TokenResponse
from zapsocial.services.integrations.facebook import FacebookIntegration, InstagramIntegration
from zapsocial.services.integrations.linkedin import LinkedInIntegration

# Map platforms to their integration classes
INTEGRATIONS: dict[str, type[BaseIntegration]] = {
    "facebook": FacebookIntegration,
    "instagram": InstagramIntegration,
    "linkedin": LinkedInIntegration,
}


def get_integration(
    platform: str,
    http_client: httpx.AsyncClient,
    settings: Settings | None = None,
) -> BaseIntegration:
    """Get integration client instance by platform name."""
    if platform not in INTEGRATIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown platform: {platform}",
        )
    return INTEGRATIONS[platform](http_client, settings)


__all__ = [
    "BaseIntegration",
    "TokenResponse",
    "FacebookIntegration",
    "InstagramIntegration",
    "LinkedInIntegration",
    "INTEGRATIONS",
    "get_integration",
]
