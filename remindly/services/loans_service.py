from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from remindly.models import EMIPayment, Loan
from remindly.models.loans import LOAN_STATUSES
from remindly.services.emi_schedule import build_installment_seeds
from remindly.services.formatting import single_line
from remindly.services.users_service import get_user

logger = logging.getLogger(__name__)


class LoanValidationError(ValueError):
    pass


class LoanNotFoundError(LoanValidationError):
    pass


@dataclass(frozen=True)
class CreateLoanInput:
    user_id: int
    platform: str
    title: str
    total_amount: Decimal
    emi_amount: Decimal
    emi_date: int
    start_date: date
    tenure: int
    notes: str | None = None


@dataclass(frozen=True)
class LoanStats:
    total_payable: Decimal
    amount_paid: Decimal
    amount_pending: Decimal
    progress_percent: int


def calculate_loan_stats(*, emi_amount: Decimal, tenure: int, paid_count: int) -> LoanStats:
    emi = Decimal(str(emi_amount))
    total_payable = emi * tenure
    amount_paid = emi * paid_count
    amount_pending = max(total_payable - amount_paid, Decimal("0"))
    if total_payable > 0:
        ratio = (amount_paid / total_payable * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        progress_percent = min(int(ratio), 100)
    else:
        progress_percent = 0
    return LoanStats(
        total_payable=total_payable,
        amount_paid=amount_paid,
        amount_pending=amount_pending,
        progress_percent=progress_percent,
    )


def count_paid_installments(session: Session, *, loan_id: int) -> int:
    count = session.scalar(
        select(func.count())
        .select_from(EMIPayment)
        .where(EMIPayment.loan_id == loan_id, EMIPayment.status == "Paid")
    )
    return int(count or 0)


def loan_stats(session: Session, loan: Loan) -> LoanStats:
    return calculate_loan_stats(
        emi_amount=loan.emi_amount,
        tenure=loan.tenure,
        paid_count=count_paid_installments(session, loan_id=loan.id),
    )


def next_unpaid_installment(session: Session, *, loan_id: int) -> EMIPayment | None:
    return session.scalars(
        select(EMIPayment)
        .where(EMIPayment.loan_id == loan_id, EMIPayment.status != "Paid")
        .order_by(EMIPayment.due_at.asc(), EMIPayment.month.asc())
        .limit(1)
    ).first()


def get_loan(session: Session, loan_id: int) -> Loan:
    loan = session.get(Loan, loan_id)
    if loan is None:
        raise LoanNotFoundError(f"Loan {loan_id} not found")
    return loan


def list_loans(session: Session, *, user_id: int, status: str | None = None) -> list[Loan]:
    stmt = select(Loan).where(Loan.user_id == user_id)
    if status is not None:
        if status not in LOAN_STATUSES:
            raise LoanValidationError(f"Unsupported status: {status}")
        stmt = stmt.where(Loan.status == status)
    return session.scalars(stmt.order_by(Loan.created_at.desc(), Loan.id.desc())).all()


def create_loan(session: Session, data: CreateLoanInput) -> Loan:
    if data.total_amount <= 0:
        raise LoanValidationError("total_amount must be positive")
    if data.emi_amount <= 0:
        raise LoanValidationError("emi_amount must be positive")
    platform = single_line(data.platform)
    title = single_line(data.title)
    if not platform or not title:
        raise LoanValidationError("platform and title are required")
    get_user(session, data.user_id)

    try:
        seeds = build_installment_seeds(
            start_date=data.start_date,
            emi_date=data.emi_date,
            tenure=data.tenure,
            amount=data.emi_amount,
        )
    except ValueError as exc:
        raise LoanValidationError(str(exc)) from exc

    loan = Loan(
        user_id=data.user_id,
        platform=platform,
        title=title,
        total_amount=data.total_amount,
        emi_amount=data.emi_amount,
        emi_date=data.emi_date,
        start_date=data.start_date,
        tenure=data.tenure,
        notes=(data.notes or "").strip() or None,
        status="Active",
    )
    loan.installments = [
        EMIPayment(amount=seed.amount, due_at=seed.due_at, status=seed.status, month=seed.month)
        for seed in seeds
    ]
    # Loan and schedule land in one commit; a failure leaves neither behind.
    session.add(loan)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    session.refresh(loan)
    logger.info("Loan created id=%s user_id=%s tenure=%s", loan.id, loan.user_id, loan.tenure)
    return loan


def mark_installment_paid(
    session: Session,
    *,
    loan_id: int,
    installment_id: int,
    now: datetime,
) -> Loan:
    loan = get_loan(session, loan_id)
    installment = session.get(EMIPayment, installment_id)
    if installment is None or installment.loan_id != loan.id:
        raise LoanNotFoundError(f"EMI {installment_id} not found")
    if installment.status == "Paid":
        raise LoanValidationError("EMI already marked as paid")

    installment.status = "Paid"
    installment.paid_at = now
    session.flush()

    paid_count = count_paid_installments(session, loan_id=loan.id)
    if paid_count >= loan.tenure:
        loan.status = "Completed"
    elif loan.status == "Overdue":
        still_overdue = session.scalar(
            select(func.count())
            .select_from(EMIPayment)
            .where(EMIPayment.loan_id == loan.id, EMIPayment.status == "Overdue")
        )
        if not still_overdue:
            loan.status = "Active"
    session.commit()
    session.refresh(loan)
    logger.info(
        "EMI marked paid loan_id=%s emi_id=%s paid_count=%s loan_status=%s",
        loan.id,
        installment_id,
        paid_count,
        loan.status,
    )
    return loan


def delete_loan(session: Session, *, loan_id: int) -> None:
    loan = get_loan(session, loan_id)
    session.delete(loan)
    session.commit()
