"""
Handling of Facebook deauthorization and data deletion callbacks.
"""
import logging
import secrets
from urllib.parse import urlencode

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from zapsocial.config import Settings, get_settings
from zapsocial.models.integration import Integration
from zapsocial.schemas.integration import DataDeletionResponse

logger = logging.getLogger(__name__)


class DeauthorizationService:
    """Removes integrations named by verified platform webhooks."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    async def find_by_external_user(self, platform: str, external_user_id: str) -> list[Integration]:
        """Look up integrations by provider-issued user id."""
        result = await self.db.execute(
            select(Integration).where(
                Integration.platform == platform,
                Integration.external_user_id == external_user_id,
            )
        )
        return list(result.scalars().all())

    async def deauthorize(self, facebook_user_id: str) -> int:
        """
        Delete Facebook integrations for a Facebook user who removed the app.

        Returns:
            Number of integrations deleted. Zero means the user is unknown
            here, which is not an error: the caller still acknowledges.
        """
        integrations = await self.find_by_external_user("facebook", facebook_user_id)

        if not integrations:
            logger.warning("Facebook deauthorization for unknown user: %s", facebook_user_id)
            return 0

        for integration in integrations:
            logger.info(
                "Deleting Facebook integration for user %s (Facebook user: %s)",
                integration.user_id,
                facebook_user_id,
            )
            await self.db.delete(integration)

        await self.db.commit()
        return len(integrations)

    def _confirmation_url(self, **params: str) -> str:
        return f"{self.settings.app_url}/settings?{urlencode(params)}"

    async def delete_user_data(self, facebook_user_id: str) -> DataDeletionResponse:
        """
        Delete Facebook and Instagram integrations for a data deletion request.

        The user account and integrations with other platforms are kept.
        """
        confirmation_code = secrets.token_hex(8)
        integrations = await self.find_by_external_user("facebook", facebook_user_id)

        if not integrations:
            logger.warning("Data deletion request for unknown Facebook user: %s", facebook_user_id)
            return DataDeletionResponse(
                url=self._confirmation_url(data_deletion="not_found"),
                confirmation_code=confirmation_code,
            )

        user_ids = {integration.user_id for integration in integrations}
        await self.db.execute(
            delete(Integration).where(
                Integration.user_id.in_(user_ids),
                Integration.platform.in_(["facebook", "instagram"]),
            )
        )
        await self.db.commit()

        logger.info(
            "Data deletion completed for users %s (Facebook user: %s, confirmation %s)",
            ", ".join(sorted(user_ids)),
            facebook_user_id,
            confirmation_code,
        )
        return DataDeletionResponse(
            url=self._confirmation_url(
                data_deletion="completed",
                fb_user_id=facebook_user_id,
                code=confirmation_code,
            ),
            confirmation_code=confirmation_code,
        )
