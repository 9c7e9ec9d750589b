from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from remindly.models import NotificationLog


SUBJECT_MAX_LENGTH = 255


@dataclass(frozen=True)
class NotificationLogFilters:
    channel: str | None = None
    status: str | None = None
    related_type: str | None = None
    related_id: int | None = None
    sent_since: datetime | None = None


def create_notification_log_entry(
    session: Session,
    *,
    channel: str,
    recipient: str,
    subject: str,
    status: str,
    related_id: int | None,
    related_type: str | None,
    sent_at: datetime,
    error_message: str | None = None,
) -> NotificationLog:
    row = NotificationLog(
        channel=channel,
        recipient=recipient,
        subject=subject[:SUBJECT_MAX_LENGTH],
        status=status,
        error_message=(error_message or "").strip() or None,
        related_id=related_id,
        related_type=related_type,
        sent_at=sent_at,
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def find_recent_notification(
    session: Session,
    *,
    related_id: int,
    related_type: str,
    since: datetime,
    subject_contains: str | None = None,
) -> NotificationLog | None:
    stmt = select(NotificationLog).where(
        NotificationLog.related_id == related_id,
        NotificationLog.related_type == related_type,
        NotificationLog.sent_at >= since,
    )
    if subject_contains:
        stmt = stmt.where(NotificationLog.subject.contains(subject_contains, autoescape=True))
    return session.scalars(stmt.order_by(NotificationLog.sent_at.desc()).limit(1)).first()


def _apply_notification_log_filters(stmt: Select, filters: NotificationLogFilters | None) -> Select:
    if filters is None:
        return stmt
    if filters.channel:
        stmt = stmt.where(NotificationLog.channel == filters.channel)
    if filters.status:
        stmt = stmt.where(NotificationLog.status == filters.status)
    if filters.related_type:
        stmt = stmt.where(NotificationLog.related_type == filters.related_type)
    if filters.related_id is not None:
        stmt = stmt.where(NotificationLog.related_id == filters.related_id)
    if filters.sent_since:
        stmt = stmt.where(NotificationLog.sent_at >= filters.sent_since)
    return stmt


def count_notification_logs(session: Session, *, filters: NotificationLogFilters | None = None) -> int:
    stmt = _apply_notification_log_filters(select(func.count()).select_from(NotificationLog), filters)
    return int(session.scalar(stmt) or 0)


def list_notification_logs(
    session: Session,
    *,
    limit: int = 50,
    offset: int = 0,
    filters: NotificationLogFilters | None = None,
) -> list[NotificationLog]:
    stmt = _apply_notification_log_filters(select(NotificationLog), filters)
    return session.scalars(
        stmt.order_by(NotificationLog.sent_at.desc(), NotificationLog.id.desc())
        .offset(max(offset, 0))
        .limit(limit)
    ).all()
