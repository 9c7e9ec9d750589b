from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from remindly.models import PushSubscription
from remindly.services.users_service import get_user

logger = logging.getLogger(__name__)


class SubscriptionValidationError(ValueError):
    pass


@dataclass(frozen=True)
class PushSubscriptionInput:
    user_id: int
    endpoint: str
    p256dh: str
    auth: str


def upsert_push_subscription(session: Session, data: PushSubscriptionInput) -> PushSubscription:
    endpoint = data.endpoint.strip()
    if not endpoint or not data.p256dh.strip() or not data.auth.strip():
        raise SubscriptionValidationError("Invalid subscription data")
    get_user(session, data.user_id)

    row = session.scalar(
        select(PushSubscription).where(
            PushSubscription.endpoint == endpoint,
            PushSubscription.user_id == data.user_id,
        )
    )
    if row is None:
        row = PushSubscription(user_id=data.user_id, endpoint=endpoint, p256dh=data.p256dh, auth=data.auth)
        session.add(row)
    else:
        row.p256dh = data.p256dh
        row.auth = data.auth
    session.commit()
    session.refresh(row)
    return row


def list_user_subscriptions(session: Session, *, user_id: int) -> list[PushSubscription]:
    return session.scalars(
        select(PushSubscription).where(PushSubscription.user_id == user_id).order_by(PushSubscription.id.asc())
    ).all()


def delete_subscription(session: Session, *, subscription_id: int) -> bool:
    row = session.get(PushSubscription, subscription_id)
    if row is None:
        return False
    user_id = row.user_id
    session.delete(row)
    session.commit()
    logger.info("Removed push subscription id=%s user_id=%s", subscription_id, user_id)
    return True
