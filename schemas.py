from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    AccountType,
    BillRecurrence,
    BillStatus,
    BillType,
    BudgetPeriod,
    CategoryType,
    InsightType,
    TransactionType,
)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType = CategoryType.expense
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=9)


class BankIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType = AccountType.savings
    account_number_last4: Optional[str] = Field(
        default=None, min_length=4, max_length=4
    )
    balance_cents: int = 0


class CreditCardIn(BaseModel):
    bank_id: int
    card_name: str = Field(..., min_length=1, max_length=100)
    last_four_digits: Optional[str] = Field(default=None, min_length=4, max_length=4)
    billing_cycle_start_day: int = Field(..., ge=1, le=31)
    billing_cycle_end_day: int = Field(..., ge=1, le=31)
    payment_due_day: int = Field(..., ge=1, le=31)
    credit_limit_cents: Optional[int] = Field(default=None, ge=0)


class LabelIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: Optional[str] = Field(default=None, max_length=9)


class TransactionIn(BaseModel):
    bank_id: int
    category_id: int
    type: TransactionType
    amount_cents: int = Field(..., gt=0)
    transaction_date: date
    description: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None
    labels: list[str] = Field(default_factory=list)


class BudgetIn(BaseModel):
    category_id: int
    amount_cents: int = Field(..., gt=0)
    period: BudgetPeriod
    start_date: date
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_dates(self) -> "BudgetIn":
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must be on or after start date")
        return self


class BillIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    bill_type: BillType = BillType.other
    amount_cents: int = Field(..., gt=0)
    category_id: int
    recurrence: BillRecurrence
    start_date: date
    end_date: Optional[date] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    reminder_days_before: int = Field(default=3, ge=0, le=30)
    auto_pay: bool = False
    bank_id: Optional[int] = None
    notes: Optional[str] = None
    is_active: bool = True

    @model_validator(mode="after")
    def _check_dates(self) -> "BillIn":
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must be on or after start date")
        return self


class MarkBillPaidIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    paid_amount_cents: int = Field(..., gt=0)
    paid_date: date
    bank_id: int
    notes: Optional[str] = None


class UnmarkBillPaymentIn(BaseModel):
    delete_transaction: bool = True


class BillPaymentIn(BaseModel):
    due_date: date
    amount_cents: int = Field(..., gt=0)
    notes: Optional[str] = None


class InsightReadIn(BaseModel):
    is_read: bool


class TransactionQuery(BaseModel):
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    bank_id: Optional[int] = None
    label_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    query: Optional[str] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class SpendingQuery(BaseModel):
    start_date: date
    end_date: date
    group_by: Literal["category", "day", "week", "month"] = "category"
    category_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_range(self) -> "SpendingQuery":
        if self.start_date > self.end_date:
            raise ValueError("Start date must be before end date")
        return self


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: CategoryType
    icon: Optional[str]
    color: Optional[str]
    is_system: bool


class CreditCardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bank_id: int
    card_name: str
    last_four_digits: Optional[str]
    billing_cycle_start_day: int
    billing_cycle_end_day: int
    payment_due_day: int
    credit_limit_cents: Optional[int]


class BankOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    account_type: AccountType
    account_number_last4: Optional[str]
    balance_cents: int
    credit_card: Optional[CreditCardOut] = None


class LabelOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    color: Optional[str]


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bank_id: int
    category_id: int
    type: TransactionType
    amount_cents: int
    description: Optional[str]
    notes: Optional[str]
    transaction_date: date
    labels: list[LabelOut] = Field(default_factory=list)


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    amount_cents: int
    period: BudgetPeriod
    start_date: date
    end_date: Optional[date]


class BillPaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bill_id: int
    due_date: date
    amount_cents: int
    status: BillStatus
    paid_date: Optional[date]
    paid_amount_cents: Optional[int]
    transaction_id: Optional[int]
    reminder_sent: bool
    notes: Optional[str]


class BillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    bill_type: BillType
    amount_cents: int
    category_id: int
    bank_id: Optional[int]
    recurrence: BillRecurrence
    start_date: date
    end_date: Optional[date]
    day_of_month: Optional[int]
    reminder_days_before: int
    auto_pay: bool
    is_active: bool
    notes: Optional[str]


class InsightOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: InsightType
    title: str
    description: str
    data: dict[str, Any]
    is_read: bool
    created_at: datetime
    expires_at: Optional[datetime]
