"""initial schema: users, reminders, loans, installments, push subscriptions, notification log

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "reminders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_at", sa.DateTime(), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False, server_default="Personal"),
        sa.Column("priority", sa.String(length=8), nullable=False, server_default="Medium"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="Pending"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("status IN ('Pending','Completed','Missed')", name="ck_reminders_status"),
        sa.CheckConstraint(
            "category IN ('Work','Meeting','Personal','Loan','Other')",
            name="ck_reminders_category",
        ),
        sa.CheckConstraint("priority IN ('Low','Medium','High')", name="ck_reminders_priority"),
    )
    op.create_index("ix_reminders_status_trigger_at", "reminders", ["status", "trigger_at"])

    op.create_table(
        "loans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("platform", sa.String(length=100), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("emi_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("emi_date", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("tenure", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="Active"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("status IN ('Active','Completed','Overdue')", name="ck_loans_status"),
        sa.CheckConstraint("emi_date BETWEEN 1 AND 31", name="ck_loans_emi_date"),
        sa.CheckConstraint("tenure > 0", name="ck_loans_tenure"),
    )
    op.create_index("ix_loans_status", "loans", ["status"])

    op.create_table(
        "emi_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("loan_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_at", sa.DateTime(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="Pending"),
        sa.Column("month", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["loan_id"], ["loans.id"], ondelete="CASCADE"),
        sa.CheckConstraint("status IN ('Pending','Paid','Overdue')", name="ck_emi_payments_status"),
        sa.UniqueConstraint("loan_id", "month", name="uq_emi_payments_loan_month"),
    )
    op.create_index("ix_emi_payments_loan_status_due_at", "emi_payments", ["loan_id", "status", "due_at"])

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh", sa.String(length=255), nullable=False),
        sa.Column("auth", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("endpoint", "user_id", name="uq_push_subscriptions_endpoint_user"),
    )

    op.create_table(
        "notification_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("related_id", sa.Integer(), nullable=True),
        sa.Column("related_type", sa.String(length=32), nullable=True),
        sa.Column("sent_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint(
            "related_type IS NULL OR related_type IN ('reminder','emi')",
            name="ck_notification_log_related_type",
        ),
    )
    op.create_index("ix_notification_log_related", "notification_log", ["related_type", "related_id", "sent_at"])


def downgrade() -> None:
    op.drop_index("ix_notification_log_related", table_name="notification_log")
    op.drop_table("notification_log")
    op.drop_table("push_subscriptions")
    op.drop_index("ix_emi_payments_loan_status_due_at", table_name="emi_payments")
    op.drop_table("emi_payments")
    op.drop_index("ix_loans_status", table_name="loans")
    op.drop_table("loans")
    op.drop_index("ix_reminders_status_trigger_at", table_name="reminders")
    op.drop_table("reminders")
    op.drop_table("users")
