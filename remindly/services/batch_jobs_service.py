"""Periodic batch cycle: reminder notifications, missed/overdue transitions, EMI reminders.

One invocation is a single linear pass. Every mutation is committed as it happens,
so counts accumulated before a failure reflect work that actually persisted, and a
skipped cycle self-heals on the next run because every transition is re-derived
from timestamps.

The EMI dedup check-then-insert is not atomic across overlapping runs; callers must
guarantee that at most one cycle runs at a time.

A failure while handling one reminder or loan rolls the session back, is logged and
counted, and the pass moves on to the next entity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from remindly.config import Settings
from remindly.models import EMIPayment, Loan, Reminder
from remindly.services.calendar_sync_service import CalendarSync
from remindly.services.dispatch_service import EmailSender, PushSender, dispatch_intent
from remindly.services.loans_service import count_paid_installments, next_unpaid_installment
from remindly.services.notification_intents import ReminderWindow, emi_intent, reminder_intent
from remindly.services.notifications_service import find_recent_notification

logger = logging.getLogger(__name__)


def default_emi_ladder() -> tuple[ReminderWindow, ...]:
    return (
        ReminderWindow(hours=15 * 24, label="15 days before"),
        ReminderWindow(hours=7 * 24, label="7 days before"),
        ReminderWindow(hours=24, label="1 day before"),
        ReminderWindow(hours=12, label="12 hours before"),
        ReminderWindow(hours=4, label="4 hours before"),
        ReminderWindow(hours=1, label="1 hour before"),
    )


@dataclass(frozen=True)
class BatchJobConfig:
    emi_ladder: tuple[ReminderWindow, ...] = field(default_factory=default_emi_ladder)
    window_tolerance_hours: float = 0.5
    emi_dedup_lookback: timedelta = timedelta(hours=2)
    missed_grace: timedelta = timedelta(hours=1)
    # None keeps re-notifying Pending reminders every cycle until they resolve.
    reminder_dedup_window: timedelta | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "BatchJobConfig":
        return cls(
            emi_dedup_lookback=timedelta(minutes=settings.emi_dedup_lookback_minutes),
            missed_grace=timedelta(minutes=settings.missed_grace_minutes),
            reminder_dedup_window=(
                None
                if settings.reminder_dedup_minutes is None
                else timedelta(minutes=settings.reminder_dedup_minutes)
            ),
        )


@dataclass(frozen=True)
class ReminderNotifyResult:
    reminders_due: int
    reminders_notified: int
    emails_sent: int
    pushes_sent: int
    errors: int


@dataclass(frozen=True)
class EmiScheduleResult:
    loans_processed: int
    notifications_sent: int
    duplicates_skipped: int
    emails_sent: int
    pushes_sent: int
    loans_marked_overdue: int
    errors: int


@dataclass(frozen=True)
class BatchCycleResult:
    emails_sent: int
    pushes_sent: int
    reminders_missed: int
    loans_processed: int
    loan_errors: int
    calendar_accounts_synced: int
    calendar_sync_failed: int


def match_window(
    hours_until_due: float,
    ladder: tuple[ReminderWindow, ...],
    *,
    tolerance_hours: float,
) -> ReminderWindow | None:
    for window in ladder:
        if window.hours - tolerance_hours <= hours_until_due <= window.hours + tolerance_hours:
            return window
    return None


def notify_due_reminders(
    session: Session,
    *,
    now: datetime,
    config: BatchJobConfig,
    email_sender: EmailSender,
    push_sender: PushSender,
) -> ReminderNotifyResult:
    due_ids = session.scalars(
        select(Reminder.id)
        .where(Reminder.status == "Pending", Reminder.trigger_at <= now)
        .order_by(Reminder.trigger_at.asc(), Reminder.id.asc())
    ).all()

    notified = 0
    emails_sent = 0
    pushes_sent = 0
    errors = 0
    for reminder_id in due_ids:
        try:
            reminder = session.get(Reminder, reminder_id)
            if reminder is None or reminder.status != "Pending":
                continue
            if config.reminder_dedup_window is not None and find_recent_notification(
                session,
                related_id=reminder_id,
                related_type="reminder",
                since=now - config.reminder_dedup_window,
            ):
                logger.debug("Reminder %s already notified within dedup window", reminder_id)
                continue
            result = dispatch_intent(
                session,
                reminder_intent(reminder, reminder.user),
                now=now,
                email_sender=email_sender,
                push_sender=push_sender,
            )
        except Exception:
            session.rollback()
            errors += 1
            logger.exception("Due reminder processing failed reminder_id=%s", reminder_id)
            continue
        notified += 1
        emails_sent += int(result.email_sent)
        pushes_sent += result.pushes_sent

    logger.info(
        "Due reminders processed due=%s notified=%s emails=%s pushes=%s errors=%s",
        len(due_ids),
        notified,
        emails_sent,
        pushes_sent,
        errors,
    )
    return ReminderNotifyResult(
        reminders_due=len(due_ids),
        reminders_notified=notified,
        emails_sent=emails_sent,
        pushes_sent=pushes_sent,
        errors=errors,
    )


def reap_missed_reminders(session: Session, *, now: datetime, config: BatchJobConfig) -> int:
    cutoff = now - config.missed_grace
    result = session.execute(
        update(Reminder)
        .where(Reminder.status == "Pending", Reminder.trigger_at < cutoff)
        .values(status="Missed")
        .execution_options(synchronize_session=False)
    )
    session.commit()
    missed = int(result.rowcount or 0)
    logger.info("Missed reminders reaped count=%s cutoff=%s", missed, cutoff.isoformat())
    return missed


def transition_overdue_installments(session: Session, *, loan: Loan, now: datetime) -> int:
    result = session.execute(
        update(EMIPayment)
        .where(
            EMIPayment.loan_id == loan.id,
            EMIPayment.status == "Pending",
            EMIPayment.due_at < now,
        )
        .values(status="Overdue")
        .execution_options(synchronize_session=False)
    )
    changed = int(result.rowcount or 0)
    if changed:
        loan.status = "Overdue"
        logger.info("Loan %s marked overdue installments=%s", loan.id, changed)
    session.commit()
    return changed


def _send_emi_reminder_for_loan(
    session: Session,
    loan: Loan,
    *,
    now: datetime,
    config: BatchJobConfig,
    email_sender: EmailSender,
    push_sender: PushSender,
) -> tuple[str, int, int]:
    installment = next_unpaid_installment(session, loan_id=loan.id)
    if installment is None:
        return "no_installment", 0, 0

    hours_until_due = (installment.due_at - now).total_seconds() / 3600
    window = match_window(hours_until_due, config.emi_ladder, tolerance_hours=config.window_tolerance_hours)
    if window is None:
        return "no_window", 0, 0

    # Only one window can plausibly match per cycle, so a hit ends this loan's ladder.
    if find_recent_notification(
        session,
        related_id=installment.id,
        related_type="emi",
        since=now - config.emi_dedup_lookback,
        subject_contains=window.label,
    ):
        logger.debug("EMI reminder already sent emi_id=%s window=%s", installment.id, window.label)
        return "duplicate", 0, 0

    intent = emi_intent(
        loan,
        installment,
        loan.user,
        window=window,
        paid_count=count_paid_installments(session, loan_id=loan.id),
    )
    result = dispatch_intent(session, intent, now=now, email_sender=email_sender, push_sender=push_sender)
    return "sent", int(result.email_sent), result.pushes_sent


def schedule_emi_reminders(
    session: Session,
    *,
    now: datetime,
    config: BatchJobConfig,
    email_sender: EmailSender,
    push_sender: PushSender,
) -> EmiScheduleResult:
    loan_ids = session.scalars(select(Loan.id).where(Loan.status == "Active").order_by(Loan.id.asc())).all()

    sent = 0
    duplicates = 0
    emails_sent = 0
    pushes_sent = 0
    marked_overdue = 0
    errors = 0
    for loan_id in loan_ids:
        try:
            loan = session.get(Loan, loan_id)
            if loan is None or loan.status != "Active":
                continue
            outcome, emails, pushes = _send_emi_reminder_for_loan(
                session,
                loan,
                now=now,
                config=config,
                email_sender=email_sender,
                push_sender=push_sender,
            )
            if transition_overdue_installments(session, loan=loan, now=now):
                marked_overdue += 1
        except Exception:
            session.rollback()
            errors += 1
            logger.exception("EMI processing failed loan_id=%s", loan_id)
            continue
        sent += int(outcome == "sent")
        duplicates += int(outcome == "duplicate")
        emails_sent += emails
        pushes_sent += pushes

    logger.info(
        "EMI reminders processed loans=%s sent=%s duplicates=%s overdue=%s errors=%s",
        len(loan_ids),
        sent,
        duplicates,
        marked_overdue,
        errors,
    )
    return EmiScheduleResult(
        loans_processed=len(loan_ids),
        notifications_sent=sent,
        duplicates_skipped=duplicates,
        emails_sent=emails_sent,
        pushes_sent=pushes_sent,
        loans_marked_overdue=marked_overdue,
        errors=errors,
    )


def run_batch_cycle(
    session: Session,
    *,
    now: datetime,
    config: BatchJobConfig,
    email_sender: EmailSender,
    push_sender: PushSender,
    calendar_sync: CalendarSync,
) -> BatchCycleResult:
    logger.info("Batch cycle started now=%s", now.isoformat())
    reminders = notify_due_reminders(
        session,
        now=now,
        config=config,
        email_sender=email_sender,
        push_sender=push_sender,
    )
    missed = reap_missed_reminders(session, now=now, config=config)
    emi = schedule_emi_reminders(
        session,
        now=now,
        config=config,
        email_sender=email_sender,
        push_sender=push_sender,
    )
    calendar = calendar_sync()

    result = BatchCycleResult(
        emails_sent=reminders.emails_sent + emi.emails_sent,
        pushes_sent=reminders.pushes_sent + emi.pushes_sent,
        reminders_missed=missed,
        loans_processed=emi.loans_processed,
        loan_errors=emi.errors,
        calendar_accounts_synced=calendar.synced,
        calendar_sync_failed=calendar.failed,
    )
    logger.info(
        "Batch cycle finished emails=%s pushes=%s missed=%s loans=%s loan_errors=%s calendar_synced=%s calendar_failed=%s",
        result.emails_sent,
        result.pushes_sent,
        result.reminders_missed,
        result.loans_processed,
        result.loan_errors,
        result.calendar_accounts_synced,
        result.calendar_sync_failed,
    )
    return result
