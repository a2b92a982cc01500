"""
Integration-related Pydantic schemas.
"""
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Platform(str, Enum):
    """Supported social platforms."""
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    LINKEDIN = "linkedin"


class IntegrationRead(BaseModel):
    """Schema for reading integration data."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    platform: Platform
    scopes: list[str]
    expired: bool
    token_expires_at: datetime | None
    metadata: dict[str, Any] = Field(validation_alias="meta")
    connected_at: datetime
    updated_at: datetime


class OAuthURL(BaseModel):
    """OAuth authorization URL response."""
    auth_url: str
    state: str


class RefreshTokenRequest(BaseModel):
    """Manual token refresh request."""
    integration_id: str = Field(..., min_length=1)


class RefreshResult(BaseModel):
    """Outcome of a successful token refresh."""
    success: bool = True
    expires_at: datetime | None
    expires_in: int | None


class RefreshError(BaseModel):
    """Per-integration failure in a batch refresh."""
    integration_id: str
    error: str


class RefreshAllResult(BaseModel):
    """Outcome of a batch refresh of expiring tokens."""
    success: bool = True
    total: int = 0
    refreshed: int = 0
    failed: int = 0
    errors: list[RefreshError] = []


class DataDeletionResponse(BaseModel):
    """Data deletion callback response expected by Meta."""
    url: str
    confirmation_code: str
