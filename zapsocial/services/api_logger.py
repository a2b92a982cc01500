"""
Audit logging of platform API calls.
"""
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from zapsocial.models.api_log import ApiLog

logger = logging.getLogger(__name__)


class ApiLogger:
    """
    Fire-and-forget writer for ``meta_api_logs``.

    Each entry is committed on its own, after the caller's changes have been
    committed, so a failed write only loses the log entry.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        *,
        user_id: str,
        platform: str,
        endpoint: str,
        method: str,
        success: bool,
        integration_id: str | None = None,
        request_body: Any = None,
        response_body: Any = None,
        status_code: int | None = None,
        error_message: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        entry = ApiLog(
            user_id=user_id,
            integration_id=integration_id,
            platform=platform,
            endpoint=endpoint,
            method=method,
            request_body=request_body,
            response_body=response_body,
            status_code=status_code,
            success=success,
            error_message=error_message,
            duration_ms=duration_ms,
        )

        try:
            self.db.add(entry)
            await self.db.commit()
        except Exception:
            # Logging failures must not break the caller. Rollback expires
            # loaded instances, so callers read what they need beforehand.
            logger.exception("Error logging API request to %s%s", platform, endpoint)
            await self.db.rollback()
