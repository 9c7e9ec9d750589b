from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal


@dataclass(frozen=True)
class InstallmentSeed:
    month: int
    due_at: datetime
    amount: Decimal
    status: str = "Pending"


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _add_months(year: int, month: int, offset: int) -> tuple[int, int]:
    zero_based = (year * 12 + (month - 1)) + offset
    return zero_based // 12, (zero_based % 12) + 1


def installment_due_date(start_date: date, emi_date: int, month_offset: int) -> date:
    year, month = _add_months(start_date.year, start_date.month, month_offset)
    return date(year, month, min(emi_date, _days_in_month(year, month)))


def build_installment_seeds(
    *,
    start_date: date,
    emi_date: int,
    tenure: int,
    amount: Decimal,
) -> list[InstallmentSeed]:
    if tenure < 1:
        raise ValueError("tenure must be at least 1")
    if not 1 <= emi_date <= 31:
        raise ValueError("emi_date must be between 1 and 31")
    if amount <= 0:
        raise ValueError("amount must be positive")

    return [
        InstallmentSeed(
            month=offset + 1,
            due_at=datetime.combine(installment_due_date(start_date, emi_date, offset), time.min),
            amount=amount,
        )
        for offset in range(tenure)
    ]
