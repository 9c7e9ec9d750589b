from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
import logging

from sqlalchemy.orm import Session

from remindly.models import PushSubscription
from remindly.services.email_service import EmailSendResult
from remindly.services.notification_intents import NotificationIntent
from remindly.services.notifications_service import create_notification_log_entry
from remindly.services.push_service import PushPayload, PushSendResult
from remindly.services.subscriptions_service import delete_subscription, list_user_subscriptions

logger = logging.getLogger(__name__)

EmailSender = Callable[..., EmailSendResult]
PushSender = Callable[[PushSubscription, PushPayload], PushSendResult]


@dataclass(frozen=True)
class DispatchResult:
    email_sent: bool
    pushes_sent: int
    subscriptions_removed: int


def dispatch_intent(
    session: Session,
    intent: NotificationIntent,
    *,
    now: datetime,
    email_sender: EmailSender,
    push_sender: PushSender,
) -> DispatchResult:
    email_result = email_sender(to=intent.recipient, subject=intent.subject, html=intent.html)

    pushes_sent = 0
    removed = 0
    for subscription in list_user_subscriptions(session, user_id=intent.user_id):
        try:
            result = push_sender(subscription, intent.push)
        except Exception:
            logger.exception("Push delivery crashed subscription_id=%s", subscription.id)
            continue
        if result.success:
            pushes_sent += 1
        if result.expired:
            if delete_subscription(session, subscription_id=subscription.id):
                removed += 1

    # One audit row per intent; its status reflects the email channel only.
    create_notification_log_entry(
        session,
        channel="email",
        recipient=intent.recipient,
        subject=intent.subject,
        status="sent" if email_result.success else "failed",
        error_message=email_result.error,
        related_id=intent.related_id,
        related_type=intent.related_type,
        sent_at=now,
    )
    logger.info(
        "Dispatched %s notification related_id=%s email_sent=%s pushes_sent=%s subscriptions_removed=%s",
        intent.kind,
        intent.related_id,
        email_result.success,
        pushes_sent,
        removed,
    )
    return DispatchResult(email_sent=email_result.success, pushes_sent=pushes_sent, subscriptions_removed=removed)
