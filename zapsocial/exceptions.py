"""
Domain errors for integration credentials and platform webhooks.
"""
from typing import Any

from fastapi import status


class IntegrationError(Exception):
    """Base class for errors surfaced to API consumers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Integration error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class MalformedPayload(IntegrationError):
    """Signed request is structurally invalid."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid signed_request"


class SignatureMismatch(MalformedPayload):
    """Signed request signature does not match the payload."""

    default_message = "Invalid signature"


class NotFound(IntegrationError):
    """Integration does not exist or belongs to another user."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Integration not found"


class MissingCredential(IntegrationError):
    """No token available to attempt a renewal."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "No token found to refresh"


class CredentialExpired(IntegrationError):
    """Provider rejected the credential; the user must reconnect."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Token expired. Please reconnect your account."


class RefreshFailed(IntegrationError):
    """Provider rejected the refresh for a reason other than expiry."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to refresh token"


class ProviderError(Exception):
    """
    Error response from a platform API.

    Attributes:
        message: Provider error message (or a generic one)
        status_code: HTTP status of the provider response, if any
        code: Provider-specific error code (e.g. Graph API 190)
        body: Decoded response body, if any
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: int | None = None,
        body: Any = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.body = body
        super().__init__(message)
