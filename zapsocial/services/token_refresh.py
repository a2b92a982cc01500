"""
OAuth token refresh for connected platform accounts.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from functools import partial

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zapsocial.config import Settings, get_settings
from zapsocial.exceptions import (
    CredentialExpired,
    IntegrationError,
    NotFound,
    ProviderError,
    RefreshFailed,
)
from zapsocial.models.integration import Integration
from zapsocial.schemas.integration import RefreshAllResult, RefreshError, RefreshResult
from zapsocial.services.api_logger import ApiLogger
from zapsocial.services.integrations import INTEGRATIONS, BaseIntegration
from zapsocial.utils.retry import RetryPolicy, is_retryable_error

logger = logging.getLogger(__name__)

# Batch refreshes skip integrations renewed more recently than this
RECENT_REFRESH_WINDOW = timedelta(hours=24)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TokenRefreshCoordinator:
    """
    Renews platform credentials and persists the outcome.

    Every refresh attempt that reaches the provider produces exactly one
    integration update (on success or credential expiry) and one audit log
    entry. Concurrent refreshes of the same integration are not serialized;
    the last commit wins.
    """

    def __init__(
        self,
        db: AsyncSession,
        http_client: httpx.AsyncClient,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.db = db
        self.http = http_client
        self.settings = settings or get_settings()
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=self.settings.retry_max_retries,
            delay_ms=self.settings.retry_delay_ms,
            backoff_multiplier=self.settings.retry_backoff_multiplier,
            should_retry=is_retryable_error,
        )
        self.api_logger = ApiLogger(db)

    def _client_for(self, platform: str) -> BaseIntegration:
        if platform not in INTEGRATIONS:
            raise RefreshFailed(f"Token refresh is not supported for {platform}")
        return INTEGRATIONS[platform](self.http, self.settings)

    async def refresh(self, user_id: str, integration_id: str, platform: str) -> RefreshResult:
        """
        Refresh one of the user's integrations.

        Raises:
            NotFound: No such integration for this user and platform
            MissingCredential: Nothing stored to refresh with
            CredentialExpired: Provider says the user must reconnect
            RefreshFailed: Any other provider failure
        """
        result = await self.db.execute(
            select(Integration).where(
                Integration.id == integration_id,
                Integration.user_id == user_id,
                Integration.platform == platform,
            )
        )
        integration = result.scalar_one_or_none()

        if integration is None:
            raise NotFound()

        return await self.refresh_integration(integration)

    async def refresh_integration(
        self,
        integration: Integration,
        automatic: bool = False,
    ) -> RefreshResult:
        """Refresh a loaded integration; ``automatic`` marks batch refreshes."""
        client = self._client_for(integration.platform)
        credential = client.refresh_credential(integration)
        integration_id = integration.id

        log = partial(
            self.api_logger.log,
            user_id=integration.user_id,
            integration_id=integration_id,
            platform=integration.platform,
            endpoint=client.token_endpoint,
            method=client.token_method,
        )

        started = time.perf_counter()
        try:
            tokens = await self.retry_policy.run(lambda: client.refresh_token(credential))
        except ProviderError as e:
            expired = client.is_credential_expired(e)
            await self._record_failure(
                integration,
                message=e.message or "Failed to refresh token",
                expired=expired,
                automatic=automatic,
            )
            await log(
                success=False,
                status_code=e.status_code,
                response_body=e.body,
                error_message=e.message,
                duration_ms=_elapsed_ms(started),
            )
            if expired:
                logger.warning("Credential expired for integration %s", integration_id)
                raise CredentialExpired() from e
            raise RefreshFailed(e.message) from e
        except httpx.HTTPError as e:
            message = f"Network error while refreshing token: {e}"
            await self._record_failure(integration, message=message, expired=False, automatic=automatic)
            await log(
                success=False,
                error_message=message,
                duration_ms=_elapsed_ms(started),
            )
            raise RefreshFailed(message) from e

        duration_ms = _elapsed_ms(started)
        now = datetime.now(timezone.utc).isoformat()

        meta = {
            **(integration.meta or {}),
            "expired": False,
            "token_refreshed_at": now,
            "auto_refresh_failed": False,
            "auto_refresh_error": None,
        }
        if automatic:
            meta.update(auto_refreshed=True, last_auto_refresh=now)

        integration.access_token = tokens.access_token
        integration.refresh_token = tokens.refresh_token or integration.refresh_token
        integration.token_expires_at = tokens.expires_at
        integration.meta = meta
        await self.db.commit()

        expires_in = tokens.expires_in or client.default_expires_in
        refreshed = RefreshResult(expires_at=tokens.expires_at, expires_in=expires_in)

        await log(
            success=True,
            status_code=200,
            response_body={"success": True, "expires_in": expires_in, "auto_refresh": automatic},
            duration_ms=duration_ms,
        )
        logger.info("Refreshed %s token for integration %s", client.platform, integration_id)

        return refreshed

    async def _record_failure(
        self,
        integration: Integration,
        message: str,
        expired: bool,
        automatic: bool,
    ) -> None:
        updates: dict[str, object] = {}
        if expired:
            updates.update(expired=True, expired_at=datetime.now(timezone.utc).isoformat())
        if automatic:
            updates.update(auto_refresh_failed=True, auto_refresh_error=message)

        # A transient failure on a manual refresh leaves the row untouched
        if not updates:
            return

        integration.meta = {**(integration.meta or {}), **updates}
        await self.db.commit()

    def _recently_refreshed(self, integration: Integration, now: datetime) -> bool:
        meta = integration.meta or {}
        last = _parse_timestamp(meta.get("token_refreshed_at")) or _parse_timestamp(
            meta.get("last_auto_refresh")
        )
        return last is not None and now - last < RECENT_REFRESH_WINDOW

    async def refresh_expiring(
        self,
        platform: str,
        within: timedelta | None = None,
    ) -> RefreshAllResult:
        """
        Refresh every integration of ``platform`` expiring within ``within``.

        Integrations refreshed in the last 24 hours are skipped and counted
        as refreshed. One failure never stops the batch.
        """
        now = datetime.now(timezone.utc)
        cutoff = now + (within or timedelta(days=self.settings.token_refresh_window_days))

        result = await self.db.execute(
            select(Integration.id).where(
                Integration.platform == platform,
                Integration.access_token.is_not(None),
                Integration.token_expires_at.is_not(None),
                Integration.token_expires_at <= cutoff,
            )
        )
        integration_ids = list(result.scalars().all())

        summary = RefreshAllResult(total=len(integration_ids))

        for integration_id in integration_ids:
            # Re-fetch each row; a failed audit write expires loaded instances
            integration = await self.db.get(Integration, integration_id)
            if integration is None:
                summary.total -= 1
                continue

            if self._recently_refreshed(integration, now):
                summary.refreshed += 1
                continue

            try:
                await self.refresh_integration(integration, automatic=True)
            except IntegrationError as e:
                logger.error("Error refreshing token for integration %s: %s", integration_id, e.message)
                summary.failed += 1
                summary.errors.append(RefreshError(integration_id=integration_id, error=e.message))
                continue
            except SQLAlchemyError:
                logger.exception("Error updating integration %s", integration_id)
                await self.db.rollback()
                summary.failed += 1
                summary.errors.append(
                    RefreshError(integration_id=integration_id, error="Failed to update integration")
                )
                continue

            summary.refreshed += 1

        logger.info(
            "Batch %s refresh: %d total, %d refreshed, %d failed",
            platform,
            summary.total,
            summary.refreshed,
            summary.failed,
        )
        return summary
