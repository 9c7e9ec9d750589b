"""Kind-specific adapters that turn reminders and installments into one notification shape.

Every intent carries both channels' content: the rendered email (subject + HTML)
and the push payload. ``dispatch_service.dispatch_intent`` consumes intents without
knowing which kind produced them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from remindly.models import EMIPayment, Loan, Reminder, User
from remindly.services.email_service import render_email_template
from remindly.services.formatting import format_currency, format_date, format_datetime
from remindly.services.push_service import PushPayload


PRIORITY_COLORS = {
    "High": {"bg": "#fee2e2", "fg": "#dc2626"},
    "Medium": {"bg": "#fef3c7", "fg": "#d97706"},
    "Low": {"bg": "#dcfce7", "fg": "#16a34a"},
}


@dataclass(frozen=True)
class ReminderWindow:
    hours: int
    label: str


@dataclass(frozen=True)
class NotificationIntent:
    kind: str
    user_id: int
    recipient: str
    subject: str
    html: str
    push: PushPayload
    related_id: int
    related_type: str


def reminder_intent(reminder: Reminder, user: User) -> NotificationIntent:
    subject = f"Reminder: {reminder.title}"
    html = render_email_template(
        "reminder.html",
        user_name=user.name,
        title=reminder.title,
        description=reminder.description,
        due=format_datetime(reminder.trigger_at),
        category=reminder.category,
        priority=reminder.priority,
        priority_colors=PRIORITY_COLORS.get(reminder.priority, PRIORITY_COLORS["Low"]),
    )
    return NotificationIntent(
        kind="reminder",
        user_id=user.id,
        recipient=user.email,
        subject=subject,
        html=html,
        push=PushPayload(
            title=subject,
            body=reminder.description or f"Due: {format_date(reminder.trigger_at)}",
            url="/reminders",
            tag=f"reminder-{reminder.id}",
        ),
        related_id=reminder.id,
        related_type="reminder",
    )


def emi_intent(
    loan: Loan,
    installment: EMIPayment,
    user: User,
    *,
    window: ReminderWindow,
    paid_count: int,
) -> NotificationIntent:
    emi_amount = Decimal(str(loan.emi_amount))
    total_amount = Decimal(str(loan.total_amount))
    amount_paid = emi_amount * paid_count
    amount_pending = max(total_amount - amount_paid, Decimal("0"))
    progress = (amount_paid / total_amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    html = render_email_template(
        "emi_reminder.html",
        user_name=user.name,
        loan_title=loan.title,
        platform=loan.platform,
        emi_amount=format_currency(emi_amount),
        due_date=format_date(installment.due_at),
        pending_balance=format_currency(amount_pending),
        progress_percent=min(int(progress), 100),
        time_until_due=window.label,
    )
    return NotificationIntent(
        kind="emi",
        user_id=user.id,
        recipient=user.email,
        subject=f"EMI Reminder ({window.label}): {loan.title} - {format_currency(emi_amount)}",
        html=html,
        push=PushPayload(
            title=f"EMI Due {window.label}",
            body=f"{loan.title}: {format_currency(emi_amount)} due on {format_date(installment.due_at)}",
            url=f"/loans/{loan.id}",
            tag=f"emi-{installment.id}-{window.hours}",
        ),
        related_id=installment.id,
        related_type="emi",
    )
