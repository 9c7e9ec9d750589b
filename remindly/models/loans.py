from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from remindly.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from remindly.models.users import User


LOAN_STATUSES = ("Active", "Completed", "Overdue")
INSTALLMENT_STATUSES = ("Pending", "Paid", "Overdue")


class Loan(TimestampMixin, Base):
    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint("status IN ('Active','Completed','Overdue')", name="ck_loans_status"),
        CheckConstraint("emi_date BETWEEN 1 AND 31", name="ck_loans_emi_date"),
        CheckConstraint("tenure > 0", name="ck_loans_tenure"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    platform: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    emi_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    emi_date: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    tenure: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Active")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship(back_populates="loans")
    installments: Mapped[list["EMIPayment"]] = relationship(
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="EMIPayment.month",
    )

    @property
    def total_payable(self) -> Decimal:
        return Decimal(str(self.emi_amount)) * self.tenure


class EMIPayment(TimestampMixin, Base):
    __tablename__ = "emi_payments"
    __table_args__ = (
        UniqueConstraint("loan_id", "month", name="uq_emi_payments_loan_month"),
        CheckConstraint("status IN ('Pending','Paid','Overdue')", name="ck_emi_payments_status"),
        Index("ix_emi_payments_loan_status_due_at", "loan_id", "status", "due_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    loan_id: Mapped[int] = mapped_column(ForeignKey("loans.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    due_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pending")
    month: Mapped[int] = mapped_column(Integer, nullable=False)

    loan: Mapped[Loan] = relationship(back_populates="installments")
