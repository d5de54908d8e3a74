from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from config import get_settings
from models import AccountType, RecurringFrequency, TransactionType

CREDIT_CARD_FIELDS = ("credit_limit_cents", "apr")
LOAN_FIELDS = (
    "loan_amount_cents",
    "remaining_balance_cents",
    "loan_term_months",
    "monthly_payment_cents",
    "apr",
)


def normalize_moment(value: datetime) -> datetime:
    """Naive local time at millisecond resolution, as stored in the ledger."""
    if value.tzinfo is not None:
        tz = ZoneInfo(get_settings().timezone)
        value = value.astimezone(tz).replace(tzinfo=None)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def type_specific_fields(account_type: AccountType) -> tuple[str, ...]:
    if account_type == AccountType.credit_card:
        return CREDIT_CARD_FIELDS
    if account_type == AccountType.loan:
        return LOAN_FIELDS
    return ()


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance_cents: int = 0
    currency: str = Field(default="USD", min_length=3, max_length=3)
    credit_limit_cents: Optional[int] = Field(default=None, gt=0)
    apr: Optional[Decimal] = Field(default=None, ge=0, le=100)
    loan_amount_cents: Optional[int] = Field(default=None, gt=0)
    remaining_balance_cents: Optional[int] = Field(default=None, ge=0)
    loan_term_months: Optional[int] = Field(default=None, gt=0)
    monthly_payment_cents: Optional[int] = Field(default=None, gt=0)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _require_type_fields(self) -> "AccountIn":
        if self.type == AccountType.credit_card:
            required = ("credit_limit_cents", "apr")
        elif self.type == AccountType.loan:
            required = (
                "loan_amount_cents",
                "remaining_balance_cents",
                "loan_term_months",
                "monthly_payment_cents",
            )
        else:
            required = ()
        missing = [name for name in required if getattr(self, name) is None]
        if missing:
            raise ValueError(
                f"{self.type.value} accounts require: {', '.join(missing)}"
            )
        return self


class AccountUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    balance_cents: Optional[int] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    credit_limit_cents: Optional[int] = Field(default=None, gt=0)
    apr: Optional[Decimal] = Field(default=None, ge=0, le=100)
    loan_amount_cents: Optional[int] = Field(default=None, gt=0)
    remaining_balance_cents: Optional[int] = Field(default=None, ge=0)
    loan_term_months: Optional[int] = Field(default=None, gt=0)
    monthly_payment_cents: Optional[int] = Field(default=None, gt=0)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=50)


class TransactionIn(BaseModel):
    account_id: int
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    date: datetime
    description: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_recurring: bool = False
    category_id: Optional[int] = None
    recurring_id: Optional[int] = None

    @field_validator("date")
    @classmethod
    def _normalize_date(cls, value: datetime) -> datetime:
        return normalize_moment(value)


class TransactionUpdateIn(BaseModel):
    """Partial edit; only the fields explicitly set are applied."""

    amount_cents: Optional[int] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    date: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_recurring: Optional[bool] = None
    category_id: Optional[int] = None
    recurring_id: Optional[int] = None

    @field_validator("date")
    @classmethod
    def _normalize_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return normalize_moment(value) if value is not None else None


class RecurringChargeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    account_id: int
    category_id: Optional[int] = None
    amount_cents: int = Field(..., gt=0)
    frequency: RecurringFrequency = RecurringFrequency.monthly
    next_due_date: date


class ExpenseMetricsOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_expenses: int
    interest_paid: int
    recurring_charges: int
    credit_card_spending: int
    loan_payments: int


class ExpenseMetricsComparisonOut(ExpenseMetricsOut):
    total_expenses_change: float
    interest_paid_change: float
    recurring_charges_change: float
    credit_card_spending_change: float
    loan_payments_change: float


class BalancePointOut(BaseModel):
    date: date
    balance_cents: int
