from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


def _values_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class ExpenseCategory(str, Enum):
    food = "Food"
    transport = "Transport"
    shopping = "Shopping"
    bills = "Bills"
    investment = "Investment"
    other = "Other"


EXPENSE_CATEGORY_ENUM = _values_enum(ExpenseCategory, "expensecategory")


class PaymentMode(str, Enum):
    upi = "UPI"
    cash = "Cash"
    card = "Card"
    net_banking = "Net Banking"


class IncomeSource(str, Enum):
    salary = "Salary"
    freelance = "Freelance"
    investment = "Investment"
    business = "Business"
    rental = "Rental"
    gift = "Gift"
    other = "Other"


class RecurringFrequency(str, Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    annually = "annually"


class GoalCategory(str, Enum):
    emergency_fund = "Emergency Fund"
    vacation = "Vacation"
    education = "Education"
    home = "Home"
    vehicle = "Vehicle"
    retirement = "Retirement"
    other = "Other"


class NotificationType(str, Enum):
    budget_alert = "budget_alert"
    goal_completed = "goal_completed"
    goal_reminder = "goal_reminder"
    spending_insight = "spending_insight"
    system = "system"


class RelatedTo(str, Enum):
    transaction = "transaction"
    budget = "budget"
    goal = "goal"
    system = "system"
    insight = "insight"


class BudgetState(str, Enum):
    normal = "normal"
    warning = "warning"
    exceeded = "exceeded"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(100), nullable=False)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(
        EXPENSE_CATEGORY_ENUM, nullable=False
    )
    payment_mode: Mapped[PaymentMode] = mapped_column(
        _values_enum(PaymentMode, "paymentmode"), nullable=False
    )
    upi_id: Mapped[Optional[str]] = mapped_column(String(100))
    gst_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class BudgetLimit(Base, TimestampMixin):
    __tablename__ = "budget_limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(
        EXPENSE_CATEGORY_ENUM, nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_budget_limit_user_category"),
        CheckConstraint("amount_cents > 0", name="ck_budget_limit_amount_positive"),
    )


class Income(Base, TimestampMixin):
    __tablename__ = "incomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source: Mapped[IncomeSource] = mapped_column(
        _values_enum(IncomeSource, "incomesource"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_frequency: Mapped[RecurringFrequency] = mapped_column(
        SAEnum(RecurringFrequency),
        default=RecurringFrequency.monthly,
        nullable=False,
    )
    taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_incomes_user_date", "user_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_incomes_amount_positive"),
    )


class SavingsGoal(Base, TimestampMixin):
    __tablename__ = "savings_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    current_amount_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    target_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[GoalCategory] = mapped_column(
        _values_enum(GoalCategory, "goalcategory"),
        default=GoalCategory.other,
        nullable=False,
    )
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_savings_goals_user_created", "user_id", "created_at"),
        CheckConstraint("target_amount_cents > 0", name="ck_goal_target_positive"),
        CheckConstraint("current_amount_cents >= 0", name="ck_goal_current_nonneg"),
    )


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        SAEnum(NotificationType), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_to: Mapped[RelatedTo] = mapped_column(
        SAEnum(RelatedTo), default=RelatedTo.system, nullable=False
    )
    related_id: Mapped[Optional[int]] = mapped_column(Integer)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_priority: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )
