from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class CategoryType(str, Enum):
    income = "income"
    expense = "expense"


class AccountType(str, Enum):
    savings = "savings"
    current = "current"
    credit_card = "credit_card"
    cash = "cash"
    wallet = "wallet"


class BudgetPeriod(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class BudgetStatus(str, Enum):
    on_track = "on_track"
    warning = "warning"
    over_budget = "over_budget"


class BillType(str, Enum):
    utilities = "utilities"
    subscription = "subscription"
    rent_mortgage = "rent_mortgage"
    insurance = "insurance"
    other = "other"


class BillRecurrence(str, Enum):
    one_time = "one_time"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    semi_annual = "semi_annual"
    annual = "annual"


class BillStatus(str, Enum):
    upcoming = "upcoming"
    due_soon = "due_soon"
    overdue = "overdue"
    paid = "paid"
    cancelled = "cancelled"


class InsightType(str, Enum):
    budget_alert = "budget_alert"
    savings_opportunity = "savings_opportunity"
    unusual_spending = "unusual_spending"
    bill_reminder = "bill_reminder"
    bill_overdue = "bill_overdue"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(
        SAEnum(CategoryType), nullable=False, default=CategoryType.expense
    )
    icon: Mapped[Optional[str]] = mapped_column(String(16))
    color: Mapped[Optional[str]] = mapped_column(String(9))
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class Bank(Base, TimestampMixin):
    __tablename__ = "banks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType), nullable=False, default=AccountType.savings
    )
    account_number_last4: Mapped[Optional[str]] = mapped_column(String(4))
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    credit_card: Mapped[Optional["CreditCard"]] = relationship(
        "CreditCard", back_populates="bank", uselist=False
    )

    __table_args__ = (Index("ix_banks_user", "user_id"),)


class CreditCard(Base, TimestampMixin):
    __tablename__ = "credit_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bank_id: Mapped[int] = mapped_column(
        ForeignKey("banks.id"), nullable=False, unique=True
    )
    card_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_four_digits: Mapped[Optional[str]] = mapped_column(String(4))
    billing_cycle_start_day: Mapped[int] = mapped_column(Integer, nullable=False)
    billing_cycle_end_day: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_due_day: Mapped[int] = mapped_column(Integer, nullable=False)
    credit_limit_cents: Mapped[Optional[int]] = mapped_column(Integer)

    bank: Mapped["Bank"] = relationship("Bank", back_populates="credit_card")

    __table_args__ = (
        CheckConstraint(
            "billing_cycle_start_day BETWEEN 1 AND 31", name="ck_card_cycle_start_day"
        ),
        CheckConstraint(
            "billing_cycle_end_day BETWEEN 1 AND 31", name="ck_card_cycle_end_day"
        ),
        CheckConstraint("payment_due_day BETWEEN 1 AND 31", name="ck_card_due_day"),
    )


class Label(Base, TimestampMixin):
    __tablename__ = "labels"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_label_user_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(9))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", secondary="transaction_labels", back_populates="labels"
    )


transaction_labels = Table(
    "transaction_labels",
    Base.metadata,
    Column("transaction_id", Integer, ForeignKey("transactions.id"), primary_key=True),
    Column("label_id", Integer, ForeignKey("labels.id"), primary_key=True),
)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    bank_id: Mapped[int] = mapped_column(ForeignKey("banks.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(200))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )
    bank: Mapped["Bank"] = relationship("Bank")
    labels: Mapped[list["Label"]] = relationship(
        "Label", secondary="transaction_labels", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "transaction_date"),
        Index(
            "ix_transactions_user_category_date",
            "user_id",
            "category_id",
            "transaction_date",
        ),
        Index("ix_transactions_user_bank_date", "user_id", "bank_id", "transaction_date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[BudgetPeriod] = mapped_column(SAEnum(BudgetPeriod), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
        Index("ix_budgets_user_period", "user_id", "period"),
    )


class Bill(Base, TimestampMixin):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    bank_id: Mapped[Optional[int]] = mapped_column(ForeignKey("banks.id"))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    bill_type: Mapped[BillType] = mapped_column(
        SAEnum(BillType), nullable=False, default=BillType.other
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    recurrence: Mapped[BillRecurrence] = mapped_column(
        SAEnum(BillRecurrence), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    reminder_days_before: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3
    )
    auto_pay: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    category: Mapped["Category"] = relationship("Category")
    bank: Mapped[Optional["Bank"]] = relationship("Bank")
    payments: Mapped[list["BillPayment"]] = relationship(
        "BillPayment", back_populates="bill", order_by="BillPayment.due_date"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_bill_amount_positive"),
        CheckConstraint(
            "day_of_month IS NULL OR day_of_month BETWEEN 1 AND 31",
            name="ck_bill_day_of_month",
        ),
        Index("ix_bills_user_active", "user_id", "is_active"),
    )


class BillPayment(Base, TimestampMixin):
    __tablename__ = "bill_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id"), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[BillStatus] = mapped_column(
        SAEnum(BillStatus), nullable=False, default=BillStatus.upcoming
    )
    paid_date: Mapped[Optional[date]] = mapped_column(Date)
    paid_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id"), unique=True
    )
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    bill: Mapped["Bill"] = relationship("Bill", back_populates="payments")
    transaction: Mapped[Optional["Transaction"]] = relationship("Transaction")

    __table_args__ = (
        UniqueConstraint("bill_id", "due_date", name="uq_bill_payment_due_date"),
        Index("ix_bill_payments_status_due", "status", "due_date"),
    )


class Insight(Base, TimestampMixin):
    __tablename__ = "insights"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[InsightType] = mapped_column(SAEnum(InsightType), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    subject_id: Mapped[Optional[int]] = mapped_column(Integer)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_insights_user_type_subject", "user_id", "type", "subject_id"),
    )
