"""
Integrations router: OAuth flows, token refresh and platform webhooks.
"""
import logging
import secrets
from typing import Annotated, NoReturn
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Form, Header, HTTPException, Query, status
from fastapi.responses import PlainTextResponse, RedirectResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zapsocial.config import Settings, get_settings
from zapsocial.database import get_db
from zapsocial.exceptions import (
    CredentialExpired,
    IntegrationError,
    MalformedPayload,
    ProviderError,
    SignatureMismatch,
)
from zapsocial.models.integration import Integration
from zapsocial.models.user import User
from zapsocial.schemas.integration import (
    DataDeletionResponse,
    IntegrationRead,
    OAuthURL,
    Platform,
    RefreshAllResult,
    RefreshResult,
    RefreshTokenRequest,
)
from zapsocial.services.api_logger import ApiLogger
from zapsocial.services.auth import get_current_user
from zapsocial.services.deauthorization import DeauthorizationService
from zapsocial.services.http import get_http_client
from zapsocial.services.integrations import get_integration
from zapsocial.services.token_refresh import TokenRefreshCoordinator
from zapsocial.utils.security import decode_oauth_state, sign_oauth_state
from zapsocial.utils.signed_request import parse_signed_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["Integrations"])


def raise_http_error(error: IntegrationError) -> NoReturn:
    """Translate a domain error into an HTTP error response."""
    detail: str | dict = error.message
    if isinstance(error, CredentialExpired):
        detail = {"error": error.message, "expired": True}
    raise HTTPException(status_code=error.status_code, detail=detail) from error


def oauth_platform(platform: Platform) -> str:
    """Instagram accounts are connected through Facebook Login."""
    if platform == Platform.INSTAGRAM:
        return Platform.FACEBOOK.value
    return platform.value


def is_configured(platform: str, settings: Settings) -> bool:
    if platform == Platform.LINKEDIN.value:
        return bool(settings.linkedin_client_id and settings.linkedin_client_secret)
    return bool(settings.facebook_app_id and settings.facebook_app_secret)


def verify_facebook_webhook(signed_request: str | None, settings: Settings) -> str:
    """
    Verify a Facebook webhook's signed_request and return the Facebook user id.

    Raises:
        HTTPException: 500 if the app secret is missing, 400 for a missing,
            malformed or forged signed_request
    """
    if not settings.facebook_app_secret:
        logger.error("FACEBOOK_APP_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        )

    if not signed_request:
        logger.error("Missing signed_request parameter")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required parameter",
        )

    try:
        payload = parse_signed_request(signed_request, settings.facebook_app_secret)
    except SignatureMismatch:
        logger.warning("signed_request signature mismatch, possible tampering attempt")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signed_request",
        )
    except MalformedPayload as e:
        logger.error("Error parsing signed_request: %s", e.message)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signed_request",
        )

    facebook_user_id = payload.get("user_id")
    if not facebook_user_id:
        logger.error("No user_id in signed_request")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signed_request",
        )

    return str(facebook_user_id)


@router.get("", response_model=list[IntegrationRead])
async def list_integrations(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[Integration]:
    """List all connected integrations for current user."""
    result = await db.execute(
        select(Integration).where(Integration.user_id == current_user.id)
    )
    return list(result.scalars().all())


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_integration(
    platform: Annotated[Platform | None, Query()] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Disconnect a platform integration."""
    if platform is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Platform is required",
        )

    result = await db.execute(
        select(Integration).where(
            Integration.user_id == current_user.id,
            Integration.platform == platform.value,
        )
    )
    integration = result.scalar_one_or_none()

    if not integration:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Integration not found",
        )

    await db.delete(integration)
    await db.commit()


@router.get("/{platform}/auth", response_model=OAuthURL)
async def get_oauth_url(
    platform: Platform,
    current_user: User = Depends(get_current_user),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> OAuthURL:
    """Get OAuth authorization URL for a platform."""
    flow = oauth_platform(platform)

    if not is_configured(flow, settings):
        logger.error("%s OAuth credentials are not configured", flow)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{flow.capitalize()} integration is not configured",
        )

    state = sign_oauth_state(current_user.id, flow)
    auth_url = get_integration(flow, http_client, settings).get_auth_url(state)

    return OAuthURL(auth_url=auth_url, state=state)


@router.get("/{platform}/callback")
async def oauth_callback(
    platform: Platform,
    code: Annotated[str | None, Query()] = None,
    state: Annotated[str | None, Query()] = None,
    error: Annotated[str | None, Query()] = None,
    db: AsyncSession = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Handle OAuth callback from a platform."""

    def redirect(**params: str) -> RedirectResponse:
        return RedirectResponse(
            url=f"{settings.app_url}/integrations?{urlencode(params)}",
            status_code=status.HTTP_302_FOUND,
        )

    if error:
        logger.error("%s OAuth error: %s", platform.value, error)
        return redirect(error=f"{platform.value}_oauth_{error}")

    if not code or not state:
        return redirect(error="missing_params")

    user_id = decode_oauth_state(state, platform.value)
    if not user_id or await db.get(User, user_id) is None:
        return redirect(error="invalid_state")

    integration_service = get_integration(platform.value, http_client, settings)

    try:
        tokens = await integration_service.exchange_code(code)
    except (ProviderError, httpx.HTTPError) as e:
        logger.error("Error exchanging %s code for token: %s", platform.value, e)
        return redirect(error="token_exchange_failed")

    # Check if integration already exists
    result = await db.execute(
        select(Integration).where(
            Integration.user_id == user_id,
            Integration.platform == platform.value,
        )
    )
    integration = result.scalar_one_or_none()

    if integration is None:
        integration = Integration(user_id=user_id, platform=platform.value)
        db.add(integration)

    # A new grant always resets the expired state
    integration.access_token = tokens.access_token
    integration.refresh_token = tokens.refresh_token
    integration.token_expires_at = tokens.expires_at
    integration.scopes = tokens.scopes or []
    integration.external_user_id = tokens.external_user_id
    integration.meta = {**tokens.metadata, "expired": False}

    try:
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Error saving %s integration", platform.value)
        await db.rollback()
        return redirect(error="save_failed")

    await ApiLogger(db).log(
        user_id=user_id,
        integration_id=integration.id,
        platform=platform.value,
        endpoint=integration_service.token_endpoint,
        method=integration_service.token_method,
        response_body={"success": True},
        status_code=200,
        success=True,
    )

    return redirect(connected=platform.value)


@router.post("/{platform}/refresh-token", response_model=RefreshResult)
async def refresh_integration_token(
    platform: Platform,
    request: RefreshTokenRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> RefreshResult:
    """Manually refresh an integration's access token."""
    coordinator = TokenRefreshCoordinator(db, http_client, settings)

    try:
        return await coordinator.refresh(current_user.id, request.integration_id, platform.value)
    except IntegrationError as e:
        raise_http_error(e)


@router.post("/{platform}/refresh-all", response_model=RefreshAllResult)
async def refresh_all_tokens(
    platform: Platform,
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
) -> RefreshAllResult:
    """Refresh every token of a platform that expires soon (cron entry point)."""
    if settings.cron_secret and not secrets.compare_digest(
        (authorization or "").encode(), f"Bearer {settings.cron_secret}".encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    coordinator = TokenRefreshCoordinator(db, http_client, settings)
    return await coordinator.refresh_expiring(platform.value)


@router.post("/facebook/deauthorize", response_class=PlainTextResponse)
async def facebook_deauthorize(
    signed_request: Annotated[str | None, Form()] = None,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> PlainTextResponse:
    """
    Handle Facebook deauthorization callback.

    Called by Meta when a user removes the app from their Facebook account.
    Once the request is verified the response is always 200 OK, even for
    unknown users or internal failures, so that Meta does not retry.
    """
    try:
        facebook_user_id = verify_facebook_webhook(signed_request, settings)
    except HTTPException as e:
        return PlainTextResponse(e.detail, status_code=e.status_code)

    try:
        await DeauthorizationService(db, settings).deauthorize(facebook_user_id)
    except Exception:
        logger.exception("Error in Facebook deauthorize callback")

    return PlainTextResponse("OK")


@router.post("/facebook/data-deletion", response_model=DataDeletionResponse)
async def facebook_data_deletion(
    signed_request: Annotated[str | None, Form()] = None,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> DataDeletionResponse:
    """
    Handle Facebook data deletion callback.

    Deletes the user's Facebook and Instagram integrations and answers with
    the confirmation URL and code Meta shows to the user.
    """
    facebook_user_id = verify_facebook_webhook(signed_request, settings)

    try:
        return await DeauthorizationService(db, settings).delete_user_data(facebook_user_id)
    except Exception:
        logger.exception("Error in Facebook data deletion callback")
        return DataDeletionResponse(
            url=f"{settings.app_url}/settings?data_deletion=error",
            confirmation_code=secrets.token_hex(8),
        )
