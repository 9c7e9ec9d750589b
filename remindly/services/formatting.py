from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal


def _group_indian(digits: str) -> str:
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    pairs: list[str] = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join([*pairs, tail])


def format_currency(amount: Decimal | int | float) -> str:
    """Whole rupees with lakh/crore grouping, e.g. 120000 -> "₹1,20,000"."""
    value = Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    return f"{sign}₹{_group_indian(str(abs(value)))}"


def format_date(value: date | datetime) -> str:
    return f"{value.day} {value.strftime('%b %Y')}"


def format_datetime(value: datetime) -> str:
    return f"{format_date(value)}, {value.strftime('%I:%M %p')}"


def single_line(value: str) -> str:
    """Collapse every run of whitespace, line breaks included, into one space."""
    return " ".join(value.split())
