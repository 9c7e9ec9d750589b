from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

import remindly.models  # noqa: F401
from remindly.config import get_settings
from remindly.models import EMIPayment, Loan, NotificationLog, PushSubscription, Reminder, User
from remindly.models.base import Base
from remindly.services import batch_jobs_service
from remindly.services.batch_jobs_service import (
    BatchJobConfig,
    match_window,
    notify_due_reminders,
    reap_missed_reminders,
    run_batch_cycle,
    schedule_emi_reminders,
    default_emi_ladder,
)
from remindly.services.calendar_sync_service import CalendarSyncResult
from remindly.services.email_service import EmailSendResult
from remindly.services.loans_service import CreateLoanInput, create_loan
from remindly.services.notification_intents import ReminderWindow
from remindly.services.push_service import PushSendResult


def _make_session(tmp_path) -> Session:
    db_path = tmp_path / "batch_jobs.db"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    return SessionLocal()


class RecordingEmailSender:
    def __init__(self, success: bool = True) -> None:
        self.success = success
        self.sent: list[dict[str, str]] = []

    def __call__(self, *, to: str, subject: str, html: str) -> EmailSendResult:
        self.sent.append({"to": to, "subject": subject, "html": html})
        if self.success:
            return EmailSendResult(success=True)
        return EmailSendResult(success=False, error="smtp down")


class RecordingPushSender:
    def __init__(self, expired_endpoints: set[str] | None = None) -> None:
        self.expired_endpoints = expired_endpoints or set()
        self.sent: list[tuple[str, object]] = []

    def __call__(self, subscription: PushSubscription, payload) -> PushSendResult:
        self.sent.append((subscription.endpoint, payload))
        if subscription.endpoint in self.expired_endpoints:
            return PushSendResult(success=False, expired=True)
        return PushSendResult(success=True)


def _seed_user(session: Session, *, endpoints: tuple[str, ...] = ()) -> User:
    user = User(name="Asha", email="asha@example.com")
    session.add(user)
    session.flush()
    for endpoint in endpoints:
        session.add(PushSubscription(user_id=user.id, endpoint=endpoint, p256dh="key", auth="secret"))
    session.commit()
    return user


def _seed_reminder(session: Session, user: User, *, trigger_at: datetime, title: str = "Call bank") -> Reminder:
    reminder = Reminder(
        user_id=user.id,
        title=title,
        trigger_at=trigger_at,
        category="Personal",
        priority="High",
        status="Pending",
    )
    session.add(reminder)
    session.commit()
    return reminder


def _seed_loan(session: Session, user: User, *, start_date: date, title: str = "Phone", tenure: int = 12) -> Loan:
    return create_loan(
        session,
        CreateLoanInput(
            user_id=user.id,
            platform="HDFC",
            title=title,
            total_amount=Decimal("120000.00"),
            emi_amount=Decimal("10000.00"),
            emi_date=start_date.day,
            start_date=start_date,
            tenure=tenure,
        ),
    )


def _log_count(session: Session, **filters) -> int:
    stmt = select(func.count()).select_from(NotificationLog)
    for key, value in filters.items():
        stmt = stmt.where(getattr(NotificationLog, key) == value)
    return int(session.scalar(stmt) or 0)


def test_match_window_uses_half_hour_tolerance() -> None:
    ladder = default_emi_ladder()

    assert match_window(23.75, ladder, tolerance_hours=0.5).label == "1 day before"
    assert match_window(360.4, ladder, tolerance_hours=0.5).hours == 360
    assert match_window(1.5, ladder, tolerance_hours=0.5).hours == 1
    assert match_window(3.0, ladder, tolerance_hours=0.5) is None
    assert match_window(-2.0, ladder, tolerance_hours=0.5) is None


def test_notify_due_reminders_sends_email_push_and_one_log_row(tmp_path) -> None:
    session = _make_session(tmp_path)
    now = datetime(2024, 3, 1, 9, 0)
    user = _seed_user(session, endpoints=("https://push.example/a", "https://push.example/b"))
    due = _seed_reminder(session, user, trigger_at=now - timedelta(minutes=5))
    _seed_reminder(session, user, trigger_at=now + timedelta(hours=1), title="Later")
    email_sender = RecordingEmailSender()
    push_sender = RecordingPushSender()

    result = notify_due_reminders(
        session,
        now=now,
        config=BatchJobConfig(),
        email_sender=email_sender,
        push_sender=push_sender,
    )

    assert result.reminders_due == 1
    assert result.emails_sent == 1
    assert result.pushes_sent == 2
    assert email_sender.sent[0]["subject"] == "Reminder: Call bank"
    assert email_sender.sent[0]["to"] == "asha@example.com"
    payload = push_sender.sent[0][1]
    assert payload.tag == f"reminder-{due.id}"
    assert payload.url == "/reminders"
    log = session.scalars(select(NotificationLog)).one()
    assert log.related_id == due.id
    assert log.related_type == "reminder"
    assert log.status == "sent"
    assert log.sent_at == now
    assert session.get(Reminder, due.id).status == "Pending"


def test_notify_due_reminders_records_failed_email(tmp_path) -> None:
    session = _make_session(tmp_path)
    now = datetime(2024, 3, 1, 9, 0)
    user = _seed_user(session)
    _seed_reminder(session, user, trigger_at=now)

    result = notify_due_reminders(
        session,
        now=now,
        config=BatchJobConfig(),
        email_sender=RecordingEmailSender(success=False),
        push_sender=RecordingPushSender(),
    )

    assert result.emails_sent == 0
    log = session.scalars(select(NotificationLog)).one()
    assert log.status == "failed"
    assert log.error_message == "smtp down"


def test_due_reminders_repeat_each_cycle_unless_dedup_window_configured(tmp_path) -> None:
    session = _make_session(tmp_path)
    now = datetime(2024, 3, 1, 9, 0)
    user = _seed_user(session)
    _seed_reminder(session, user, trigger_at=now - timedelta(minutes=1))
    senders = {"email_sender": RecordingEmailSender(), "push_sender": RecordingPushSender()}

    notify_due_reminders(session, now=now, config=BatchJobConfig(), **senders)
    notify_due_reminders(session, now=now + timedelta(minutes=5), config=BatchJobConfig(), **senders)
    assert _log_count(session, related_type="reminder") == 2

    deduped = BatchJobConfig(reminder_dedup_window=timedelta(minutes=30))
    result = notify_due_reminders(session, now=now + timedelta(minutes=10), config=deduped, **senders)
    assert result.reminders_notified == 0
    assert _log_count(session, related_type="reminder") == 2


def test_expired_push_subscription_is_removed(tmp_path) -> None:
    session = _make_session(tmp_path)
    now = datetime(2024, 3, 1, 9, 0)
    user = _seed_user(session, endpoints=("https://push.example/live", "https://push.example/gone"))
    _seed_reminder(session, user, trigger_at=now)

    result = notify_due_reminders(
        session,
        now=now,
        config=BatchJobConfig(),
        email_sender=RecordingEmailSender(),
        push_sender=RecordingPushSender(expired_endpoints={"https://push.example/gone"}),
    )

    assert result.pushes_sent == 1
    endpoints = session.scalars(select(PushSubscription.endpoint)).all()
    assert endpoints == ["https://push.example/live"]


def test_reap_missed_reminders_respects_grace_period(tmp_path) -> None:
    session = _make_session(tmp_path)
    now = datetime(2024, 3, 1, 9, 0)
    user = _seed_user(session)
    stale = _seed_reminder(session, user, trigger_at=now - timedelta(minutes=90))
    recent = _seed_reminder(session, user, trigger_at=now - timedelta(minutes=30))
    done = _seed_reminder(session, user, trigger_at=now - timedelta(hours=5))
    done.status = "Completed"
    session.commit()

    missed = reap_missed_reminders(session, now=now, config=BatchJobConfig())

    session.expire_all()
    assert missed == 1
    assert session.get(Reminder, stale.id).status == "Missed"
    assert session.get(Reminder, recent.id).status == "Pending"
    assert session.get(Reminder, done.id).status == "Completed"


def test_emi_reminder_sent_once_for_one_day_window(tmp_path) -> None:
    session = _make_session(tmp_path)
    user = _seed_user(session, endpoints=("https://push.example/a",))
    loan = _seed_loan(session, user, start_date=date(2024, 3, 5))
    first = loan.installments[0]
    now = first.due_at - timedelta(hours=24) + timedelta(minutes=15)
    email_sender = RecordingEmailSender()
    push_sender = RecordingPushSender()

    result = schedule_emi_reminders(
        session,
        now=now,
        config=BatchJobConfig(),
        email_sender=email_sender,
        push_sender=push_sender,
    )

    assert result.loans_processed == 1
    assert result.notifications_sent == 1
    assert email_sender.sent[0]["subject"] == "EMI Reminder (1 day before): Phone - ₹10,000"
    assert "₹1,20,000" in email_sender.sent[0]["html"]
    payload = push_sender.sent[0][1]
    assert payload.title == "EMI Due 1 day before"
    assert payload.tag == f"emi-{first.id}-24"
    assert payload.url == f"/loans/{loan.id}"

    rerun = schedule_emi_reminders(
        session,
        now=now + timedelta(minutes=10),
        config=BatchJobConfig(),
        email_sender=email_sender,
        push_sender=push_sender,
    )
    assert rerun.notifications_sent == 0
    assert rerun.duplicates_skipped == 1
    assert len(email_sender.sent) == 1
    assert _log_count(session, related_type="emi", related_id=first.id) == 1


def test_emi_reminder_skipped_between_ladder_windows(tmp_path) -> None:
    session = _make_session(tmp_path)
    user = _seed_user(session)
    loan = _seed_loan(session, user, start_date=date(2024, 3, 5))
    email_sender = RecordingEmailSender()

    result = schedule_emi_reminders(
        session,
        now=loan.installments[0].due_at - timedelta(hours=3),
        config=BatchJobConfig(),
        email_sender=email_sender,
        push_sender=RecordingPushSender(),
    )

    assert result.notifications_sent == 0
    assert email_sender.sent == []
    assert _log_count(session) == 0


def test_emi_ladder_can_be_replaced(tmp_path) -> None:
    session = _make_session(tmp_path)
    user = _seed_user(session)
    loan = _seed_loan(session, user, start_date=date(2024, 3, 5))
    email_sender = RecordingEmailSender()
    config = BatchJobConfig(emi_ladder=(ReminderWindow(hours=3, label="3 hours before"),))

    result = schedule_emi_reminders(
        session,
        now=loan.installments[0].due_at - timedelta(hours=3),
        config=config,
        email_sender=email_sender,
        push_sender=RecordingPushSender(),
    )

    assert result.notifications_sent == 1
    assert "(3 hours before)" in email_sender.sent[0]["subject"]


def test_emi_reminder_targets_earliest_unpaid_installment(tmp_path) -> None:
    session = _make_session(tmp_path)
    user = _seed_user(session)
    loan = _seed_loan(session, user, start_date=date(2024, 3, 5))
    first, second = loan.installments[0], loan.installments[1]
    first.status = "Paid"
    first.paid_at = datetime(2024, 3, 1)
    session.commit()
    email_sender = RecordingEmailSender()

    schedule_emi_reminders(
        session,
        now=second.due_at - timedelta(hours=1),
        config=BatchJobConfig(),
        email_sender=email_sender,
        push_sender=RecordingPushSender(),
    )

    assert len(email_sender.sent) == 1
    assert "1 hour before" in email_sender.sent[0]["subject"]
    log = session.scalars(select(NotificationLog)).one()
    assert log.related_id == second.id


def test_overdue_installment_marks_loan_overdue(tmp_path) -> None:
    session = _make_session(tmp_path)
    user = _seed_user(session)
    loan = _seed_loan(session, user, start_date=date(2024, 1, 5))
    first_id = loan.installments[0].id
    now = loan.installments[0].due_at + timedelta(seconds=1)

    result = schedule_emi_reminders(
        session,
        now=now,
        config=BatchJobConfig(),
        email_sender=RecordingEmailSender(),
        push_sender=RecordingPushSender(),
    )

    session.expire_all()
    assert result.loans_marked_overdue == 1
    assert session.get(EMIPayment, first_id).status == "Overdue"
    assert session.get(Loan, loan.id).status == "Overdue"
    pending = session.scalar(
        select(func.count())
        .select_from(EMIPayment)
        .where(EMIPayment.loan_id == loan.id, EMIPayment.status == "Pending")
    )
    assert pending == 11


def test_loan_failure_does_not_stop_other_loans(tmp_path, monkeypatch) -> None:
    session = _make_session(tmp_path)
    user = _seed_user(session)
    broken = _seed_loan(session, user, start_date=date(2024, 3, 5), title="Broken")
    healthy = _seed_loan(session, user, start_date=date(2024, 3, 5), title="Healthy")
    now = healthy.installments[0].due_at - timedelta(hours=12)
    real_next_unpaid = batch_jobs_service.next_unpaid_installment

    def flaky_next_unpaid(session, *, loan_id):
        if loan_id == broken.id:
            raise OperationalError("SELECT", {}, Exception("database is locked"))
        return real_next_unpaid(session, loan_id=loan_id)

    monkeypatch.setattr(batch_jobs_service, "next_unpaid_installment", flaky_next_unpaid)
    email_sender = RecordingEmailSender()

    result = schedule_emi_reminders(
        session,
        now=now,
        config=BatchJobConfig(),
        email_sender=email_sender,
        push_sender=RecordingPushSender(),
    )

    assert result.loans_processed == 2
    assert result.errors == 1
    assert result.notifications_sent == 1
    assert "Healthy" in email_sender.sent[0]["subject"]


def test_completed_and_overdue_loans_are_not_scheduled(tmp_path) -> None:
    session = _make_session(tmp_path)
    user = _seed_user(session)
    loan = _seed_loan(session, user, start_date=date(2024, 3, 5))
    loan.status = "Completed"
    session.commit()

    result = schedule_emi_reminders(
        session,
        now=loan.installments[0].due_at - timedelta(hours=1),
        config=BatchJobConfig(),
        email_sender=RecordingEmailSender(),
        push_sender=RecordingPushSender(),
    )

    assert result.loans_processed == 0


def test_run_batch_cycle_aggregates_stage_counts(tmp_path) -> None:
    session = _make_session(tmp_path)
    user = _seed_user(session, endpoints=("https://push.example/a",))
    loan = _seed_loan(session, user, start_date=date(2024, 3, 5))
    now = loan.installments[0].due_at - timedelta(hours=4)
    _seed_reminder(session, user, trigger_at=now - timedelta(minutes=10))
    _seed_reminder(session, user, trigger_at=now - timedelta(hours=3), title="Old")

    result = run_batch_cycle(
        session,
        now=now,
        config=BatchJobConfig(),
        email_sender=RecordingEmailSender(),
        push_sender=RecordingPushSender(),
        calendar_sync=lambda: CalendarSyncResult(synced=2, failed=1),
    )

    # Both pending reminders are notified before the stale one is reaped.
    assert result.emails_sent == 3
    assert result.pushes_sent == 3
    assert result.reminders_missed == 1
    assert result.loans_processed == 1
    assert result.loan_errors == 0
    assert result.calendar_accounts_synced == 2
    assert result.calendar_sync_failed == 1


class FlakyPushSender(RecordingPushSender):
    def __init__(self, *, crash_on: str | None = None, fail_on: str | None = None) -> None:
        super().__init__()
        self.crash_on = crash_on
        self.fail_on = fail_on

    def __call__(self, subscription: PushSubscription, payload) -> PushSendResult:
        if subscription.endpoint == self.crash_on:
            raise ValueError("bad key")
        if subscription.endpoint == self.fail_on:
            self.sent.append((subscription.endpoint, payload))
            return PushSendResult(success=False)
        return super().__call__(subscription, payload)


def test_push_crash_on_one_subscription_still_reaches_the_others(tmp_path) -> None:
    session = _make_session(tmp_path)
    now = datetime(2024, 3, 1, 9, 0)
    user = _seed_user(session, endpoints=("https://push.example/a", "https://push.example/b"))
    _seed_reminder(session, user, trigger_at=now)
    push_sender = FlakyPushSender(crash_on="https://push.example/a")

    result = notify_due_reminders(
        session,
        now=now,
        config=BatchJobConfig(),
        email_sender=RecordingEmailSender(),
        push_sender=push_sender,
    )

    assert result.errors == 0
    assert result.pushes_sent == 1
    assert [endpoint for endpoint, _ in push_sender.sent] == ["https://push.example/b"]
    assert _log_count(session, related_type="reminder") == 1


def test_push_failure_keeps_subscription_and_continues(tmp_path) -> None:
    session = _make_session(tmp_path)
    now = datetime(2024, 3, 1, 9, 0)
    user = _seed_user(session, endpoints=("https://push.example/a", "https://push.example/b"))
    _seed_reminder(session, user, trigger_at=now)
    push_sender = FlakyPushSender(fail_on="https://push.example/a")

    result = notify_due_reminders(
        session,
        now=now,
        config=BatchJobConfig(),
        email_sender=RecordingEmailSender(),
        push_sender=push_sender,
    )

    assert result.pushes_sent == 1
    assert [endpoint for endpoint, _ in push_sender.sent] == ["https://push.example/a", "https://push.example/b"]
    assert len(session.scalars(select(PushSubscription)).all()) == 2


def test_reminder_failure_is_skipped_and_next_reminder_notified(tmp_path) -> None:
    session = _make_session(tmp_path)
    now = datetime(2024, 3, 1, 9, 0)
    user = _seed_user(session)
    _seed_reminder(session, user, trigger_at=now - timedelta(minutes=2), title="Broken")
    _seed_reminder(session, user, trigger_at=now - timedelta(minutes=1), title="Fine")
    delivered: list[str] = []

    def email_sender(*, to: str, subject: str, html: str) -> EmailSendResult:
        if "Broken" in subject:
            raise RuntimeError("template exploded")
        delivered.append(subject)
        return EmailSendResult(success=True)

    result = run_batch_cycle(
        session,
        now=now,
        config=BatchJobConfig(),
        email_sender=email_sender,
        push_sender=RecordingPushSender(),
        calendar_sync=lambda: CalendarSyncResult(synced=0, failed=0),
    )

    assert delivered == ["Reminder: Fine"]
    assert result.emails_sent == 1
    assert _log_count(session, related_type="reminder") == 1


def test_loan_failure_outside_database_is_isolated(tmp_path) -> None:
    session = _make_session(tmp_path)
    user = _seed_user(session)
    _seed_loan(session, user, start_date=date(2024, 3, 5), title="Broken")
    healthy = _seed_loan(session, user, start_date=date(2024, 3, 5), title="Healthy")
    delivered: list[str] = []

    def email_sender(*, to: str, subject: str, html: str) -> EmailSendResult:
        if "Broken" in subject:
            raise RuntimeError("sender bug")
        delivered.append(subject)
        return EmailSendResult(success=True)

    result = schedule_emi_reminders(
        session,
        now=healthy.installments[0].due_at - timedelta(hours=4),
        config=BatchJobConfig(),
        email_sender=email_sender,
        push_sender=RecordingPushSender(),
    )

    assert result.errors == 1
    assert result.notifications_sent == 1
    assert len(delivered) == 1
    assert "Healthy" in delivered[0]


def test_dedup_hit_ends_ladder_without_trying_narrower_window(tmp_path) -> None:
    session = _make_session(tmp_path)
    user = _seed_user(session)
    loan = _seed_loan(session, user, start_date=date(2024, 3, 5))
    due_at = loan.installments[0].due_at
    # With a one hour tolerance 23.75h matches both rungs; the wider one wins.
    config = BatchJobConfig(
        emi_ladder=(
            ReminderWindow(hours=24, label="1 day before"),
            ReminderWindow(hours=23, label="23 hours before"),
        ),
        window_tolerance_hours=1.0,
    )
    email_sender = RecordingEmailSender()
    senders = {"email_sender": email_sender, "push_sender": RecordingPushSender()}

    schedule_emi_reminders(session, now=due_at - timedelta(hours=23, minutes=45), config=config, **senders)
    rerun = schedule_emi_reminders(session, now=due_at - timedelta(hours=23, minutes=30), config=config, **senders)

    assert rerun.duplicates_skipped == 1
    assert rerun.notifications_sent == 0
    assert [sent["subject"] for sent in email_sender.sent] == ["EMI Reminder (1 day before): Phone - ₹10,000"]


def test_reminder_dedup_window_comes_from_settings(monkeypatch) -> None:
    monkeypatch.delenv("REMINDER_DEDUP_MINUTES", raising=False)
    assert BatchJobConfig.from_settings(get_settings()).reminder_dedup_window is None

    monkeypatch.setenv("REMINDER_DEDUP_MINUTES", "15")
    monkeypatch.setenv("MISSED_GRACE_MINUTES", "90")
    config = BatchJobConfig.from_settings(get_settings())

    assert config.reminder_dedup_window == timedelta(minutes=15)
    assert config.missed_grace == timedelta(minutes=90)
    assert config.emi_dedup_lookback == timedelta(hours=2)
