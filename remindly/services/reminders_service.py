from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from remindly.models import Reminder
from remindly.models.reminders import REMINDER_CATEGORIES, REMINDER_PRIORITIES, REMINDER_STATUSES
from remindly.services.clock import to_naive_utc
from remindly.services.formatting import single_line
from remindly.services.users_service import get_user


class ReminderValidationError(ValueError):
    pass


class ReminderNotFoundError(ReminderValidationError):
    pass


@dataclass(frozen=True)
class CreateReminderInput:
    user_id: int
    title: str
    trigger_at: datetime
    description: str | None = None
    category: str = "Personal"
    priority: str = "Medium"


def get_reminder(session: Session, reminder_id: int) -> Reminder:
    reminder = session.get(Reminder, reminder_id)
    if reminder is None:
        raise ReminderNotFoundError(f"Reminder {reminder_id} not found")
    return reminder


def list_reminders(session: Session, *, user_id: int, status: str | None = None) -> list[Reminder]:
    stmt = select(Reminder).where(Reminder.user_id == user_id)
    if status is not None:
        if status not in REMINDER_STATUSES:
            raise ReminderValidationError(f"Unsupported status: {status}")
        stmt = stmt.where(Reminder.status == status)
    return session.scalars(stmt.order_by(Reminder.trigger_at.asc(), Reminder.id.asc())).all()


def create_reminder(session: Session, data: CreateReminderInput) -> Reminder:
    if data.category not in REMINDER_CATEGORIES:
        raise ReminderValidationError(f"Unsupported category: {data.category}")
    if data.priority not in REMINDER_PRIORITIES:
        raise ReminderValidationError(f"Unsupported priority: {data.priority}")
    title = single_line(data.title)
    if not title:
        raise ReminderValidationError("title is required")
    get_user(session, data.user_id)

    reminder = Reminder(
        user_id=data.user_id,
        title=title,
        description=(data.description or "").strip() or None,
        trigger_at=to_naive_utc(data.trigger_at),
        category=data.category,
        priority=data.priority,
        status="Pending",
    )
    session.add(reminder)
    session.commit()
    session.refresh(reminder)
    return reminder


def complete_reminder(session: Session, *, reminder_id: int) -> Reminder:
    reminder = get_reminder(session, reminder_id)
    if reminder.status != "Pending":
        raise ReminderValidationError(f"Reminder {reminder_id} is already {reminder.status}")
    reminder.status = "Completed"
    session.commit()
    session.refresh(reminder)
    return reminder
