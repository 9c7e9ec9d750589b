from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from remindly.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from remindly.models.users import User


RELATED_TYPES = ("reminder", "emi")


class PushSubscription(TimestampMixin, Base):
    __tablename__ = "push_subscriptions"
    __table_args__ = (UniqueConstraint("endpoint", "user_id", name="uq_push_subscriptions_endpoint_user"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    p256dh: Mapped[str] = mapped_column(String(255), nullable=False)
    auth: Mapped[str] = mapped_column(String(255), nullable=False)

    user: Mapped["User"] = relationship(back_populates="push_subscriptions")


class NotificationLog(Base):
    """Append-only delivery audit; related_id is not a foreign key so rows outlive their entity."""

    __tablename__ = "notification_log"
    __table_args__ = (
        CheckConstraint(
            "related_type IS NULL OR related_type IN ("
            + ",".join(f"'{value}'" for value in RELATED_TYPES)
            + ")",
            name="ck_notification_log_related_type",
        ),
        Index("ix_notification_log_related", "related_type", "related_id", "sent_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    channel: Mapped[str] = mapped_column(String(32), nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    related_id: Mapped[int | None] = mapped_column(nullable=True)
    related_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), server_default=func.now(), nullable=False
    )
