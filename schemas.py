import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from models import (
    ExpenseCategory,
    GoalCategory,
    IncomeSource,
    PaymentMode,
    RecurringFrequency,
)

_MAX_AMOUNT = Decimal("1000000000")


class _CamelIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class SignupIn(_CamelIn):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class LoginIn(_CamelIn):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class TransactionIn(_CamelIn):
    amount: Decimal = Field(..., gt=0, le=_MAX_AMOUNT)
    category: ExpenseCategory
    payment_mode: PaymentMode = Field(..., alias="paymentMode")
    upi_id: Optional[str] = Field(default=None, alias="upiId", max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[dt.datetime] = None


class SyncItemIn(TransactionIn):
    client_id: Optional[str] = Field(default=None, alias="clientId", max_length=64)


class SyncBatchIn(_CamelIn):
    transactions: list[dict] = Field(default_factory=list, max_length=500)


class BudgetLimitIn(_CamelIn):
    category: ExpenseCategory
    amount: Decimal = Field(..., gt=0, le=_MAX_AMOUNT)


class BudgetLimitUpdateIn(_CamelIn):
    amount: Decimal = Field(..., gt=0, le=_MAX_AMOUNT)


class IncomeIn(_CamelIn):
    amount: Decimal = Field(..., gt=0, le=_MAX_AMOUNT)
    source: IncomeSource
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[dt.datetime] = None
    is_recurring: bool = Field(default=False, alias="isRecurring")
    recurring_frequency: Optional[RecurringFrequency] = Field(
        default=None, alias="recurringFrequency"
    )
    taxable: bool = True


class IncomeUpdateIn(_CamelIn):
    amount: Optional[Decimal] = Field(default=None, gt=0, le=_MAX_AMOUNT)
    source: Optional[IncomeSource] = None
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[dt.datetime] = None
    is_recurring: Optional[bool] = Field(default=None, alias="isRecurring")
    recurring_frequency: Optional[RecurringFrequency] = Field(
        default=None, alias="recurringFrequency"
    )
    taxable: Optional[bool] = None


class SavingsGoalIn(_CamelIn):
    name: str = Field(..., min_length=1, max_length=120)
    target_amount: Decimal = Field(..., gt=0, le=_MAX_AMOUNT, alias="targetAmount")
    target_date: dt.date = Field(..., alias="targetDate")
    description: Optional[str] = Field(default=None, max_length=500)
    category: GoalCategory = GoalCategory.other

    @field_validator("target_date", mode="before")
    @classmethod
    def _accept_datetime_strings(cls, value):
        if isinstance(value, str) and "T" in value:
            return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return value


class SavingsGoalUpdateIn(_CamelIn):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    target_amount: Optional[Decimal] = Field(
        default=None, gt=0, le=_MAX_AMOUNT, alias="targetAmount"
    )
    target_date: Optional[dt.date] = Field(default=None, alias="targetDate")
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[GoalCategory] = None

    @field_validator("target_date", mode="before")
    @classmethod
    def _accept_datetime_strings(cls, value):
        if isinstance(value, str) and "T" in value:
            return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return value


class ContributionIn(_CamelIn):
    amount: Decimal = Field(..., gt=0, le=_MAX_AMOUNT)


class UpiVerifyIn(_CamelIn):
    upi_id: str = Field(..., min_length=1, max_length=256, alias="upiId")


class CSVRow(BaseModel):
    date: dt.datetime
    amount: Decimal = Field(..., gt=0, le=_MAX_AMOUNT)
    category: ExpenseCategory
    payment_mode: PaymentMode
    upi_id: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class AdvisorIn(_CamelIn):
    question: Optional[str] = Field(default=None, max_length=500)
