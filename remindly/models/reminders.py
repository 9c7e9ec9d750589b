from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from remindly.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from remindly.models.users import User


REMINDER_STATUSES = ("Pending", "Completed", "Missed")
REMINDER_CATEGORIES = ("Work", "Meeting", "Personal", "Loan", "Other")
REMINDER_PRIORITIES = ("Low", "Medium", "High")


class Reminder(TimestampMixin, Base):
    __tablename__ = "reminders"
    __table_args__ = (
        CheckConstraint("status IN ('Pending','Completed','Missed')", name="ck_reminders_status"),
        CheckConstraint(
            "category IN ('Work','Meeting','Personal','Loan','Other')",
            name="ck_reminders_category",
        ),
        CheckConstraint("priority IN ('Low','Medium','High')", name="ck_reminders_priority"),
        Index("ix_reminders_status_trigger_at", "status", "trigger_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    category: Mapped[str] = mapped_column(String(16), nullable=False, default="Personal")
    priority: Mapped[str] = mapped_column(String(8), nullable=False, default="Medium")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pending")

    user: Mapped["User"] = relationship(back_populates="reminders")
