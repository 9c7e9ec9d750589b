from __future__ import annotations

from dataclasses import asdict, dataclass
import json
import logging

from pywebpush import WebPushException, webpush
import requests

from remindly.config import get_settings
from remindly.models import PushSubscription

logger = logging.getLogger(__name__)

PUSH_TIMEOUT_SECONDS = 10.0
EXPIRED_STATUS_CODES = {404, 410}


@dataclass(frozen=True)
class PushPayload:
    title: str
    body: str
    url: str
    tag: str


@dataclass(frozen=True)
class PushSendResult:
    success: bool
    expired: bool = False


def subscription_info(subscription: PushSubscription) -> dict[str, object]:
    return {
        "endpoint": subscription.endpoint,
        "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
    }


def send_push(subscription: PushSubscription, payload: PushPayload) -> PushSendResult:
    settings = get_settings()
    if not settings.vapid_private_key:
        logger.debug("VAPID keys not configured; push to subscription %s skipped", subscription.id)
        return PushSendResult(success=False)

    try:
        webpush(
            subscription_info=subscription_info(subscription),
            data=json.dumps(asdict(payload)),
            vapid_private_key=settings.vapid_private_key,
            vapid_claims={"sub": settings.vapid_email},
            timeout=PUSH_TIMEOUT_SECONDS,
        )
    except WebPushException as exc:
        status_code = exc.response.status_code if exc.response is not None else None
        if status_code in EXPIRED_STATUS_CODES:
            logger.info("Push subscription %s expired (HTTP %s)", subscription.id, status_code)
            return PushSendResult(success=False, expired=True)
        logger.warning("Push send failed subscription=%s status=%s: %s", subscription.id, status_code, exc)
        return PushSendResult(success=False)
    except requests.RequestException as exc:
        logger.warning("Push send failed subscription=%s: %s", subscription.id, exc)
        return PushSendResult(success=False)
    except (ValueError, TypeError) as exc:
        # Malformed stored keys (bad base64, wrong curve point) surface here; binascii.Error is a ValueError.
        logger.warning("Push subscription %s has unusable keys: %s", subscription.id, exc)
        return PushSendResult(success=False)
    return PushSendResult(success=True)
