"""
Integration model for connected social platform accounts.
"""
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from zapsocial.database import Base

if TYPE_CHECKING:
    from zapsocial.models.user import User


class Integration(Base):
    """One user's OAuth connection to one social platform."""

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_integrations_user_platform"),
        Index("ix_integrations_platform_external_user_id", "platform", "external_user_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    platform: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )  # facebook, instagram, linkedin
    access_token: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    refresh_token: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    scopes: Mapped[list] = mapped_column(
        JSON,
        default=list,
    )
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        default=dict,
    )
    # Provider-issued user id, used to match platform webhooks
    external_user_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    connected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    user: Mapped["User"] = relationship(
        "User",
        back_populates="integrations",
    )

    @property
    def expired(self) -> bool:
        return bool((self.meta or {}).get("expired", False))

    def __repr__(self) -> str:
        return f"<Integration {self.platform} for user {self.user_id}>"
