"""
Pydantic schemas package.
"""
from zapsocial.schemas.user import (
    UserCreate,
    UserRead,
    Token,
)
from zapsocial.schemas.integration import (
    Platform,
    IntegrationRead,
    OAuthURL,
    RefreshTokenRequest,
    RefreshResult,
    RefreshAllResult,
    DataDeletionResponse,
)

__all__ = [
    "UserCreate",
    "UserRead",
    "Token",
    "Platform",
    "IntegrationRead",
    "OAuthURL",
    "RefreshTokenRequest",
    "RefreshResult",
    "RefreshAllResult",
    "DataDeletionResponse",
]
