"""initial finance schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None

EXPENSE_CATEGORIES = ("Food", "Transport", "Shopping", "Bills", "Investment", "Other")
PAYMENT_MODES = ("UPI", "Cash", "Card", "Net Banking")
INCOME_SOURCES = (
    "Salary",
    "Freelance",
    "Investment",
    "Business",
    "Rental",
    "Gift",
    "Other",
)
FREQUENCIES = ("weekly", "biweekly", "monthly", "quarterly", "annually")
GOAL_CATEGORIES = (
    "Emergency Fund",
    "Vacation",
    "Education",
    "Home",
    "Vehicle",
    "Retirement",
    "Other",
)
NOTIFICATION_TYPES = (
    "budget_alert",
    "goal_completed",
    "goal_reminder",
    "spending_insight",
    "system",
)
RELATED_TO = ("transaction", "budget", "goal", "system", "insight")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=254), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column(
            "category",
            sa.Enum(*EXPENSE_CATEGORIES, name="expensecategory"),
            nullable=False,
        ),
        sa.Column(
            "payment_mode", sa.Enum(*PAYMENT_MODES, name="paymentmode"), nullable=False
        ),
        sa.Column("upi_id", sa.String(length=100), nullable=True),
        sa.Column("gst_rate", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category", "date"],
    )

    op.create_table(
        "budget_limits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "category",
            sa.Enum(*EXPENSE_CATEGORIES, name="expensecategory"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "category", name="uq_budget_limit_user_category"),
        sa.CheckConstraint("amount_cents > 0", name="ck_budget_limit_amount_positive"),
    )

    op.create_table(
        "incomes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("source", sa.Enum(*INCOME_SOURCES, name="incomesource"), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "recurring_frequency",
            sa.Enum(*FREQUENCIES, name="recurringfrequency"),
            nullable=False,
            server_default="monthly",
        ),
        sa.Column("taxable", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_incomes_amount_positive"),
    )
    op.create_index("ix_incomes_user_date", "incomes", ["user_id", "date"])

    op.create_table(
        "savings_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_amount_cents", sa.BigInteger(), nullable=False),
        sa.Column(
            "current_amount_cents", sa.BigInteger(), nullable=False, server_default="0"
        ),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "category",
            sa.Enum(*GOAL_CATEGORIES, name="goalcategory"),
            nullable=False,
            server_default="Other",
        ),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("target_amount_cents > 0", name="ck_goal_target_positive"),
        sa.CheckConstraint("current_amount_cents >= 0", name="ck_goal_current_nonneg"),
    )
    op.create_index(
        "ix_savings_goals_user_created", "savings_goals", ["user_id", "created_at"]
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "type", sa.Enum(*NOTIFICATION_TYPES, name="notificationtype"), nullable=False
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "related_to",
            sa.Enum(*RELATED_TO, name="relatedto"),
            nullable=False,
            server_default="system",
        ),
        sa.Column("related_id", sa.Integer(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_priority", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index(
        "ix_notifications_user_created", "notifications", ["user_id", "created_at"]
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "is_read"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_read", table_name="notifications")
    op.drop_index("ix_notifications_user_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_savings_goals_user_created", table_name="savings_goals")
    op.drop_table("savings_goals")
    op.drop_index("ix_incomes_user_date", table_name="incomes")
    op.drop_table("incomes")
    op.drop_table("budget_limits")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("users")
