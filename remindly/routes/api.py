from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from remindly.config import get_settings
from remindly.db import get_db_session
from remindly.models import EMIPayment, Loan, NotificationLog, Reminder
from remindly.services.batch_jobs_service import BatchJobConfig, run_batch_cycle
from remindly.services.calendar_sync_service import sync_calendar_accounts
from remindly.services.clock import to_naive_utc, utc_now
from remindly.services.email_service import send_email
from remindly.services.loans_service import (
    CreateLoanInput,
    LoanNotFoundError,
    LoanValidationError,
    create_loan,
    delete_loan,
    get_loan,
    list_loans,
    loan_stats,
    mark_installment_paid,
)
from remindly.services.notifications_service import (
    NotificationLogFilters,
    count_notification_logs,
    list_notification_logs,
)
from remindly.services.push_service import send_push
from remindly.services.reminders_service import (
    CreateReminderInput,
    ReminderNotFoundError,
    ReminderValidationError,
    complete_reminder,
    create_reminder,
    list_reminders,
)
from remindly.services.subscriptions_service import (
    PushSubscriptionInput,
    SubscriptionValidationError,
    upsert_push_subscription,
)
from remindly.services.users_service import (
    CreateUserInput,
    UserNotFoundError,
    UserValidationError,
    create_user,
)

api_router = APIRouter(tags=["api"])
logger = logging.getLogger(__name__)


class UserCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: str = Field(min_length=3, max_length=255)


class LoanCreateRequest(BaseModel):
    user_id: int
    platform: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=200)
    total_amount: Decimal = Field(gt=0)
    emi_amount: Decimal = Field(gt=0)
    emi_date: int = Field(ge=1, le=31)
    start_date: date
    tenure: int = Field(gt=0)
    notes: str | None = Field(default=None, max_length=500)


class MarkEmiPaidRequest(BaseModel):
    emi_id: int


class ReminderCreateRequest(BaseModel):
    user_id: int
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    trigger_at: datetime
    category: str = "Personal"
    priority: str = "Medium"


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class SubscriptionPayload(BaseModel):
    endpoint: str = Field(min_length=1)
    keys: SubscriptionKeys


class SubscribeRequest(BaseModel):
    user_id: int
    subscription: SubscriptionPayload


def _serialize_installment(row: EMIPayment) -> dict[str, object]:
    return {
        "id": row.id,
        "month": row.month,
        "amount": str(row.amount),
        "due_at": row.due_at.isoformat(),
        "paid_at": None if row.paid_at is None else row.paid_at.isoformat(),
        "status": row.status,
    }


def _serialize_loan(db: Session, loan: Loan) -> dict[str, object]:
    stats = loan_stats(db, loan)
    installments = sorted(loan.installments, key=lambda row: row.month)
    next_emi = next((row for row in installments if row.status != "Paid"), None)
    return {
        "id": loan.id,
        "user_id": loan.user_id,
        "platform": loan.platform,
        "title": loan.title,
        "total_amount": str(loan.total_amount),
        "emi_amount": str(loan.emi_amount),
        "emi_date": loan.emi_date,
        "start_date": loan.start_date.isoformat(),
        "tenure": loan.tenure,
        "status": loan.status,
        "notes": loan.notes,
        "total_payable": str(stats.total_payable),
        "amount_paid": str(stats.amount_paid),
        "amount_pending": str(stats.amount_pending),
        "progress_percent": stats.progress_percent,
        "next_emi_date": None if next_emi is None else next_emi.due_at.isoformat(),
        "installments": [_serialize_installment(row) for row in installments],
    }


def _serialize_reminder(row: Reminder) -> dict[str, object]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "title": row.title,
        "description": row.description,
        "trigger_at": row.trigger_at.isoformat(),
        "category": row.category,
        "priority": row.priority,
        "status": row.status,
    }


def _serialize_notification_log(row: NotificationLog) -> dict[str, object]:
    return {
        "id": row.id,
        "channel": row.channel,
        "recipient": row.recipient,
        "subject": row.subject,
        "status": row.status,
        "error_message": row.error_message,
        "related_id": row.related_id,
        "related_type": row.related_type,
        "sent_at": row.sent_at.isoformat(),
    }


def _secret_matches(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@api_router.get("/health")
def health_check(db: Session = Depends(get_db_session)) -> dict[str, str]:
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail="database unavailable") from exc
    return {"status": "ok"}


@api_router.get("/cron")
def run_cron(
    secret: str | None = Query(default=None),
    now: datetime | None = Query(default=None),
    db: Session = Depends(get_db_session),
):
    settings = get_settings()
    if not _secret_matches(secret, settings.cron_secret):
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    try:
        result = run_batch_cycle(
            db,
            now=utc_now() if now is None else to_naive_utc(now),
            config=BatchJobConfig.from_settings(settings),
            email_sender=send_email,
            push_sender=send_push,
            calendar_sync=sync_calendar_accounts,
        )
    except Exception:
        logger.exception("Cron cycle failed")
        return JSONResponse({"success": False, "error": "Cron job failed"}, status_code=500)

    return {
        "success": True,
        "summary": {
            "emailsSent": result.emails_sent,
            "pushSent": result.pushes_sent,
            "remindersMissed": result.reminders_missed,
            "loansProcessed": result.loans_processed,
            "googleAccountsSynced": result.calendar_accounts_synced,
            "googleSyncFailed": result.calendar_sync_failed,
        },
    }


@api_router.post("/users", status_code=201)
def users_create(payload: UserCreateRequest, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        user = create_user(db, CreateUserInput(name=payload.name, email=payload.email))
    except UserValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"id": user.id, "name": user.name, "email": user.email}


@api_router.get("/loans")
def loans_list(
    user_id: int = Query(),
    status: str | None = Query(default=None),
    db: Session = Depends(get_db_session),
) -> list[dict[str, object]]:
    try:
        loans = list_loans(db, user_id=user_id, status=status)
    except LoanValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [_serialize_loan(db, loan) for loan in loans]


@api_router.post("/loans", status_code=201)
def loans_create(payload: LoanCreateRequest, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        loan = create_loan(
            db,
            CreateLoanInput(
                user_id=payload.user_id,
                platform=payload.platform,
                title=payload.title,
                total_amount=payload.total_amount,
                emi_amount=payload.emi_amount,
                emi_date=payload.emi_date,
                start_date=payload.start_date,
                tenure=payload.tenure,
                notes=payload.notes,
            ),
        )
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except LoanValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize_loan(db, loan)


@api_router.get("/loans/{loan_id}")
def loans_get(loan_id: int, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        loan = get_loan(db, loan_id)
    except LoanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize_loan(db, loan)


@api_router.delete("/loans/{loan_id}")
def loans_delete(loan_id: int, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        delete_loan(db, loan_id=loan_id)
    except LoanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"success": True}


@api_router.post("/loans/{loan_id}/emi")
def loans_mark_emi_paid(
    loan_id: int,
    payload: MarkEmiPaidRequest,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    try:
        loan = mark_installment_paid(db, loan_id=loan_id, installment_id=payload.emi_id, now=utc_now())
    except LoanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except LoanValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize_loan(db, loan)


@api_router.get("/reminders")
def reminders_list(
    user_id: int = Query(),
    status: str | None = Query(default=None),
    db: Session = Depends(get_db_session),
) -> list[dict[str, object]]:
    try:
        reminders = list_reminders(db, user_id=user_id, status=status)
    except ReminderValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [_serialize_reminder(row) for row in reminders]


@api_router.post("/reminders", status_code=201)
def reminders_create(payload: ReminderCreateRequest, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        reminder = create_reminder(
            db,
            CreateReminderInput(
                user_id=payload.user_id,
                title=payload.title,
                description=payload.description,
                trigger_at=payload.trigger_at,
                category=payload.category,
                priority=payload.priority,
            ),
        )
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ReminderValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize_reminder(reminder)


@api_router.post("/reminders/{reminder_id}/complete")
def reminders_complete(reminder_id: int, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        reminder = complete_reminder(db, reminder_id=reminder_id)
    except ReminderNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ReminderValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _serialize_reminder(reminder)


@api_router.post("/notifications/subscribe")
def notifications_subscribe(payload: SubscribeRequest, db: Session = Depends(get_db_session)) -> dict[str, object]:
    try:
        row = upsert_push_subscription(
            db,
            PushSubscriptionInput(
                user_id=payload.user_id,
                endpoint=payload.subscription.endpoint,
                p256dh=payload.subscription.keys.p256dh,
                auth=payload.subscription.keys.auth,
            ),
        )
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SubscriptionValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True, "subscription_id": row.id}


@api_router.get("/notifications/vapid-public-key")
def notifications_vapid_public_key() -> dict[str, str]:
    public_key = get_settings().vapid_public_key
    if not public_key:
        raise HTTPException(status_code=404, detail="Push notifications are not configured")
    return {"publicKey": public_key}


@api_router.get("/notifications/log")
def notifications_log(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    status: str | None = Query(default=None),
    related_type: str | None = Query(default=None),
    related_id: int | None = Query(default=None),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    filters = NotificationLogFilters(status=status, related_type=related_type, related_id=related_id)
    offset = (page - 1) * per_page
    total = count_notification_logs(db, filters=filters)
    rows = list_notification_logs(db, limit=per_page, offset=offset, filters=filters)
    return {
        "items": [_serialize_notification_log(row) for row in rows],
        "total": total,
        "page": page,
        "has_next": offset + per_page < total,
    }
