from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session, joinedload

from analytics import (
    aggregate_by_category,
    calculate_category_percentages,
    calculate_mom_growth,
    calculate_trend_direction,
    extreme_month,
    format_period_label,
    group_transactions_by_period,
    month_keys,
)
from billing_cycle import (
    BillingCycleConfig,
    format_billing_cycle,
    generate_upcoming_cycles,
    get_current_billing_cycle,
)
from config import local_today
from csv_utils import export_transactions
from database import atomic
from errors import AlreadyPaidError, InUseError, NotFoundError, NotPaidError
from models import (
    Bank,
    Bill,
    BillPayment,
    BillRecurrence,
    BillStatus,
    BillType,
    Budget,
    BudgetPeriod,
    Category,
    CategoryType,
    CreditCard,
    Insight,
    Label,
    Transaction,
    TransactionType,
    transaction_labels,
)
from periods import (
    add_months,
    calculate_percent_used,
    current_period_dates,
    get_budget_status,
    month_end,
    month_start,
)
from recurrence import (
    RECURRENCE_LABELS,
    UNPAID_STATUSES,
    BillPaymentEngine,
    calculate_annual_due_dates,
    calculate_payment_status,
    days_until_due,
    is_overdue,
)
from schemas import (
    BankIn,
    BankOut,
    BillIn,
    BillOut,
    BillPaymentIn,
    BillPaymentOut,
    BudgetIn,
    BudgetOut,
    CategoryIn,
    CategoryOut,
    CreditCardIn,
    InsightOut,
    LabelIn,
    LabelOut,
    MarkBillPaidIn,
    SpendingQuery,
    TransactionIn,
    TransactionOut,
    TransactionQuery,
)


logger = logging.getLogger(__name__)


DEFAULT_CATEGORIES: list[tuple[str, str, str, CategoryType]] = [
    ("Salary", "💰", "#10B981", CategoryType.income),
    ("Freelance", "💼", "#059669", CategoryType.income),
    ("Investments", "📈", "#34D399", CategoryType.income),
    ("Other Income", "💵", "#6EE7B7", CategoryType.income),
    ("Housing", "🏠", "#EF4444", CategoryType.expense),
    ("Groceries", "🛒", "#F97316", CategoryType.expense),
    ("Utilities", "💡", "#F59E0B", CategoryType.expense),
    ("Transportation", "🚗", "#FBBF24", CategoryType.expense),
    ("Healthcare", "🏥", "#DC2626", CategoryType.expense),
    ("Insurance", "🛡️", "#B91C1C", CategoryType.expense),
    ("Dining Out", "🍽️", "#8B5CF6", CategoryType.expense),
    ("Entertainment", "🎬", "#A78BFA", CategoryType.expense),
    ("Shopping", "🛍️", "#C084FC", CategoryType.expense),
    ("Subscriptions", "📱", "#E9D5FF", CategoryType.expense),
    ("Travel", "✈️", "#06B6D4", CategoryType.expense),
    ("Fitness", "💪", "#0EA5E9", CategoryType.expense),
    ("Savings", "🏦", "#3B82F6", CategoryType.expense),
    ("Investments", "📊", "#2563EB", CategoryType.expense),
    ("Debt Payment", "💳", "#1D4ED8", CategoryType.expense),
    ("Education", "📚", "#EC4899", CategoryType.expense),
    ("Gifts & Donations", "🎁", "#F472B6", CategoryType.expense),
    ("Pets", "🐾", "#FB923C", CategoryType.expense),
    ("Personal Care", "💅", "#FB7185", CategoryType.expense),
    ("Other", "📦", "#94A3B8", CategoryType.expense),
]

DEFAULT_CATEGORY_ICON = "📊"
DEFAULT_CATEGORY_COLOR = "#8884d8"
UPCOMING_WINDOW_DAYS = 30


def revert_payment_to_unpaid(payment: BillPayment, today: date) -> None:
    payment.paid_date = None
    payment.paid_amount_cents = None
    payment.transaction_id = None
    payment.status = (
        BillStatus.overdue if payment.due_date < today else BillStatus.upcoming
    )


def _delete_transaction_rows(session: Session, txn: Transaction) -> None:
    """Remove a transaction together with the rows that reference it."""
    session.execute(
        delete(transaction_labels).where(transaction_labels.c.transaction_id == txn.id)
    )
    session.expire(txn, ["labels"])
    session.delete(txn)


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, type: Optional[CategoryType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if type:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == data.type,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            icon=data.icon,
            color=data.color,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        if category.is_system:
            raise ValueError("System categories cannot be edited")
        category.name = data.name.strip()
        category.type = data.type
        category.icon = data.icon
        category.color = data.color
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if category.is_system:
            raise ValueError("System categories cannot be deleted")
        for model, label in (
            (Transaction, "transactions"),
            (Budget, "budgets"),
            (Bill, "bills"),
        ):
            in_use = self.session.scalar(
                select(func.count(model.id)).where(model.category_id == category.id)
            )
            if in_use:
                raise InUseError(f"Category is used by {in_use} {label}")
        self.session.delete(category)
        self.session.commit()

    def seed_defaults(self) -> int:
        existing = self.session.scalar(
            select(func.count(Category.id)).where(Category.user_id == self.user_id)
        )
        if existing:
            return 0
        for name, icon, color, category_type in DEFAULT_CATEGORIES:
            self.session.add(
                Category(
                    user_id=self.user_id,
                    name=name,
                    icon=icon,
                    color=color,
                    type=category_type,
                )
            )
        self.session.commit()
        return len(DEFAULT_CATEGORIES)


class BankService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Bank]:
        stmt = (
            select(Bank)
            .options(joinedload(Bank.credit_card))
            .where(Bank.user_id == self.user_id)
            .order_by(Bank.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, bank_id: int) -> Bank:
        bank = self.session.get(Bank, bank_id)
        if not bank or bank.user_id != self.user_id:
            raise NotFoundError("Bank not found")
        return bank

    def create(self, data: BankIn) -> Bank:
        bank = Bank(user_id=self.user_id, **data.model_dump())
        self.session.add(bank)
        self.session.commit()
        self.session.refresh(bank)
        return bank

    def update(self, bank_id: int, data: BankIn) -> Bank:
        bank = self.get(bank_id)
        for field, value in data.model_dump().items():
            setattr(bank, field, value)
        self.session.commit()
        self.session.refresh(bank)
        return bank

    def delete(self, bank_id: int) -> None:
        bank = self.get(bank_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(Transaction.bank_id == bank.id)
        )
        if in_use:
            raise InUseError(f"Bank has {in_use} transactions")
        self.session.execute(delete(CreditCard).where(CreditCard.bank_id == bank.id))
        self.session.execute(
            update(Bill)
            .where(Bill.user_id == self.user_id, Bill.bank_id == bank.id)
            .values(bank_id=None)
        )
        self.session.expire(bank, ["credit_card"])
        self.session.delete(bank)
        self.session.commit()


class CreditCardService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[CreditCard]:
        stmt = (
            select(CreditCard)
            .join(Bank, CreditCard.bank_id == Bank.id)
            .options(joinedload(CreditCard.bank))
            .where(Bank.user_id == self.user_id)
            .order_by(CreditCard.card_name)
        )
        return self.session.scalars(stmt).all()

    def get(self, card_id: int) -> CreditCard:
        card = self.session.scalar(
            select(CreditCard)
            .join(Bank, CreditCard.bank_id == Bank.id)
            .options(joinedload(CreditCard.bank))
            .where(CreditCard.id == card_id, Bank.user_id == self.user_id)
        )
        if not card:
            raise NotFoundError("Credit card not found")
        return card

    def create(self, data: CreditCardIn) -> CreditCard:
        bank = BankService(self.session, self.user_id).get(data.bank_id)
        if bank.credit_card is not None:
            raise ValueError("Bank already has a credit card")
        card = CreditCard(**data.model_dump())
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def update(self, card_id: int, data: CreditCardIn) -> CreditCard:
        card = self.get(card_id)
        if data.bank_id != card.bank_id:
            bank = BankService(self.session, self.user_id).get(data.bank_id)
            if bank.credit_card is not None:
                raise ValueError("Bank already has a credit card")
        for field, value in data.model_dump().items():
            setattr(card, field, value)
        self.session.commit()
        self.session.refresh(card)
        return card

    def delete(self, card_id: int) -> None:
        card = self.get(card_id)
        self.session.delete(card)
        self.session.commit()

    def billing_summary(
        self, card_id: int, *, upcoming: int = 6, today: Optional[date] = None
    ) -> dict[str, object]:
        today = today or local_today()
        card = self.get(card_id)
        config = BillingCycleConfig.from_card(card)
        current = get_current_billing_cycle(config, today)
        return {
            "card_id": card.id,
            "current_cycle": current.as_dict(),
            "label": format_billing_cycle(current),
            "days_until_due": (current.due_date - today).days,
            "upcoming_cycles": [
                cycle.as_dict()
                for cycle in generate_upcoming_cycles(config, upcoming, today)
            ],
        }

    def cycle_transactions(
        self, card_id: int, cycle_start: date, cycle_end: date
    ) -> dict[str, object]:
        if cycle_start > cycle_end:
            raise ValueError("Cycle start must be before cycle end")
        card = self.get(card_id)
        transactions = self.session.scalars(
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.labels))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.bank_id == card.bank_id,
                Transaction.type == TransactionType.expense,
                Transaction.transaction_date.between(cycle_start, cycle_end),
            )
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        ).unique().all()
        return {
            "transactions": [
                TransactionOut.model_validate(t).model_dump(mode="json")
                for t in transactions
            ],
            "total_cents": sum(t.amount_cents for t in transactions),
            "cycle_start": cycle_start.isoformat(),
            "cycle_end": cycle_end.isoformat(),
            "credit_card": {
                "id": card.id,
                "card_name": card.card_name,
                "last_four_digits": card.last_four_digits,
                "bank_id": card.bank_id,
                "bank_name": card.bank.name,
            },
        }


class LabelService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Label]:
        stmt = select(Label).where(Label.user_id == self.user_id).order_by(Label.name)
        return self.session.scalars(stmt).all()

    def get(self, label_id: int) -> Label:
        label = self.session.get(Label, label_id)
        if not label or label.user_id != self.user_id:
            raise NotFoundError("Label not found")
        return label

    def _find_by_name(self, name: str, *, exclude_id: Optional[int] = None):
        stmt = select(Label).where(
            Label.user_id == self.user_id, func.lower(Label.name) == name.lower()
        )
        if exclude_id is not None:
            stmt = stmt.where(Label.id != exclude_id)
        return self.session.scalar(stmt)

    def get_or_create(self, name: str) -> Label:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Label name cannot be empty")
        existing = self._find_by_name(clean_name)
        if existing:
            return existing
        label = Label(user_id=self.user_id, name=clean_name)
        self.session.add(label)
        self.session.flush()
        return label

    def create(self, data: LabelIn) -> Label:
        clean_name = data.name.strip()
        if not clean_name:
            raise ValueError("Label name cannot be empty")
        if self._find_by_name(clean_name):
            raise ValueError("Label already exists")
        label = Label(user_id=self.user_id, name=clean_name, color=data.color)
        self.session.add(label)
        self.session.commit()
        self.session.refresh(label)
        return label

    def update(self, label_id: int, data: LabelIn) -> Label:
        label = self.get(label_id)
        clean_name = data.name.strip()
        if not clean_name:
            raise ValueError("Label name cannot be empty")
        if self._find_by_name(clean_name, exclude_id=label.id):
            raise ValueError("Label with this name already exists")
        label.name = clean_name
        label.color = data.color
        self.session.commit()
        self.session.refresh(label)
        return label

    def delete(self, label_id: int) -> None:
        label = self.get(label_id)
        self.session.execute(
            delete(transaction_labels).where(transaction_labels.c.label_id == label.id)
        )
        self.session.expire(label, ["transactions"])
        self.session.delete(label)
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _validate_refs(self, data: TransactionIn) -> None:
        BankService(self.session, self.user_id).get(data.bank_id)
        category = CategoryService(self.session, self.user_id).get(data.category_id)
        if data.type != TransactionType.transfer and category.type.value != data.type.value:
            raise ValueError("Category type mismatch")

    def _resolve_labels(self, names: list[str]) -> list[Label]:
        label_service = LabelService(self.session, self.user_id)
        labels: list[Label] = []
        seen: set[int] = set()
        for name in names:
            label = label_service.get_or_create(name)
            if label.id not in seen:
                labels.append(label)
                seen.add(label.id)
        return labels

    def create(self, data: TransactionIn) -> Transaction:
        self._validate_refs(data)
        txn = Transaction(
            user_id=self.user_id,
            bank_id=data.bank_id,
            category_id=data.category_id,
            type=data.type,
            amount_cents=data.amount_cents,
            description=data.description,
            notes=data.notes,
            transaction_date=data.transaction_date,
        )
        txn.labels = self._resolve_labels(data.labels)
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.labels))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._validate_refs(data)
        txn.bank_id = data.bank_id
        txn.category_id = data.category_id
        txn.type = data.type
        txn.amount_cents = data.amount_cents
        txn.description = data.description
        txn.notes = data.notes
        txn.transaction_date = data.transaction_date
        txn.labels = self._resolve_labels(data.labels)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int, today: Optional[date] = None) -> None:
        today = today or local_today()
        txn = self.get(transaction_id)
        linked = self.session.scalars(
            select(BillPayment).where(BillPayment.transaction_id == txn.id)
        ).all()
        for payment in linked:
            revert_payment_to_unpaid(payment, today)
        self.session.flush()
        _delete_transaction_rows(self.session, txn)
        self.session.commit()

    def list(self, query: TransactionQuery) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.labels))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        )
        if query.type:
            stmt = stmt.where(Transaction.type == query.type)
        if query.category_id:
            stmt = stmt.where(Transaction.category_id == query.category_id)
        if query.bank_id:
            stmt = stmt.where(Transaction.bank_id == query.bank_id)
        if query.label_id:
            stmt = stmt.where(Transaction.labels.any(Label.id == query.label_id))
        if query.start_date:
            stmt = stmt.where(Transaction.transaction_date >= query.start_date)
        if query.end_date:
            stmt = stmt.where(Transaction.transaction_date <= query.end_date)
        if query.query:
            like = f"%{query.query.strip()}%"
            stmt = stmt.where(
                or_(Transaction.description.ilike(like), Transaction.notes.ilike(like))
            )
        stmt = stmt.limit(query.limit).offset(query.offset)
        return self.session.scalars(stmt).unique().all()


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _validate_category(self, category_id: int) -> None:
        category = CategoryService(self.session, self.user_id).get(category_id)
        if category.type != CategoryType.expense:
            raise ValueError("Budgets can only be set for expense categories")

    def list_all(self, period: Optional[BudgetPeriod] = None) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.period, Budget.start_date.desc(), Budget.id)
        )
        if period:
            stmt = stmt.where(Budget.period == period)
        return self.session.scalars(stmt).all()

    def active_budgets(
        self, period: Optional[BudgetPeriod] = None, today: Optional[date] = None
    ) -> list[Budget]:
        today = today or local_today()
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(
                Budget.user_id == self.user_id,
                or_(Budget.end_date.is_(None), Budget.end_date >= today),
            )
            .order_by(Budget.id)
        )
        if period:
            stmt = stmt.where(Budget.period == period)
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        return budget

    def create(self, data: BudgetIn) -> Budget:
        self._validate_category(data.category_id)
        budget = Budget(user_id=self.user_id, **data.model_dump())
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetIn) -> Budget:
        budget = self.get(budget_id)
        if data.category_id != budget.category_id:
            self._validate_category(data.category_id)
        for field, value in data.model_dump().items():
            setattr(budget, field, value)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def calculate_actual_spending(
        self, category_id: int, start: date, end: date
    ) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == self.user_id,
            Transaction.category_id == category_id,
            Transaction.type == TransactionType.expense,
            Transaction.transaction_date.between(start, end),
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def progress(self, budget: Budget, today: Optional[date] = None) -> dict[str, object]:
        window = current_period_dates(budget.period, budget.start_date, today=today)
        effective_end = window.end
        if budget.end_date and budget.end_date < effective_end:
            effective_end = budget.end_date
        actual = self.calculate_actual_spending(
            budget.category_id, window.start, effective_end
        )
        budgeted = budget.amount_cents
        return {
            "budget_id": budget.id,
            "category_id": budget.category_id,
            "category_name": budget.category.name,
            "category_icon": budget.category.icon or DEFAULT_CATEGORY_ICON,
            "category_color": budget.category.color or DEFAULT_CATEGORY_COLOR,
            "period": budget.period.value,
            "period_start": window.start.isoformat(),
            "period_end": effective_end.isoformat(),
            "budgeted_cents": budgeted,
            "actual_cents": actual,
            "difference_cents": budgeted - actual,
            "percent_used": calculate_percent_used(actual, budgeted),
            "status": get_budget_status(actual, budgeted).value,
        }

    def budget_vs_actual(
        self, period: BudgetPeriod = BudgetPeriod.monthly, today: Optional[date] = None
    ) -> dict[str, object]:
        today = today or local_today()
        comparisons = [
            self.progress(budget, today)
            for budget in self.active_budgets(period, today)
        ]
        return {
            "comparisons": comparisons,
            "totals": {
                "total_budgeted_cents": sum(c["budgeted_cents"] for c in comparisons),
                "total_actual_cents": sum(c["actual_cents"] for c in comparisons),
                "total_difference_cents": sum(
                    c["difference_cents"] for c in comparisons
                ),
            },
            "period": period.value,
        }


class BillService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _validate_refs(self, data: BillIn) -> None:
        CategoryService(self.session, self.user_id).get(data.category_id)
        if data.bank_id is not None:
            BankService(self.session, self.user_id).get(data.bank_id)

    def list_all(
        self,
        *,
        bill_type: Optional[BillType] = None,
        recurrence: Optional[BillRecurrence] = None,
        active: Optional[bool] = None,
    ) -> list[Bill]:
        stmt = (
            select(Bill)
            .options(joinedload(Bill.category))
            .where(Bill.user_id == self.user_id)
            .order_by(Bill.name)
        )
        if bill_type:
            stmt = stmt.where(Bill.bill_type == bill_type)
        if recurrence:
            stmt = stmt.where(Bill.recurrence == recurrence)
        if active is not None:
            stmt = stmt.where(Bill.is_active.is_(active))
        return self.session.scalars(stmt).all()

    def get(self, bill_id: int) -> Bill:
        bill = self.session.get(Bill, bill_id)
        if not bill or bill.user_id != self.user_id:
            raise NotFoundError("Bill not found")
        return bill

    def create(self, data: BillIn, today: Optional[date] = None) -> Bill:
        self._validate_refs(data)
        bill = Bill(user_id=self.user_id, **data.model_dump())
        self.session.add(bill)
        self.session.flush()
        if bill.is_active:
            BillPaymentEngine(self.session).ensure_for_bill(bill, today)
        self.session.commit()
        self.session.refresh(bill)
        return bill

    def update(self, bill_id: int, data: BillIn, today: Optional[date] = None) -> Bill:
        bill = self.get(bill_id)
        self._validate_refs(data)
        schedule_fields = (
            "recurrence",
            "day_of_month",
            "start_date",
            "end_date",
            "amount_cents",
        )
        values = data.model_dump()
        schedule_changed = any(getattr(bill, f) != values[f] for f in schedule_fields)
        for field, value in values.items():
            setattr(bill, field, value)
        self.session.flush()
        if schedule_changed and bill.is_active:
            BillPaymentEngine(self.session).regenerate_for_bill(bill, today)
        self.session.commit()
        self.session.refresh(bill)
        return bill

    def delete(self, bill_id: int) -> None:
        bill = self.get(bill_id)
        self.session.execute(delete(BillPayment).where(BillPayment.bill_id == bill.id))
        self.session.expire(bill, ["payments"])
        self.session.delete(bill)
        self.session.commit()

    def payments(self, bill_id: int) -> list[BillPayment]:
        bill = self.get(bill_id)
        stmt = (
            select(BillPayment)
            .where(BillPayment.bill_id == bill.id)
            .order_by(BillPayment.due_date.desc())
        )
        return self.session.scalars(stmt).all()

    def add_payment(
        self, bill_id: int, data: BillPaymentIn, today: Optional[date] = None
    ) -> BillPayment:
        bill = self.get(bill_id)
        existing = self.session.scalar(
            select(BillPayment.id).where(
                BillPayment.bill_id == bill.id, BillPayment.due_date == data.due_date
            )
        )
        if existing:
            raise ValueError("Payment already exists for this due date")
        payment = BillPayment(
            bill_id=bill.id,
            due_date=data.due_date,
            amount_cents=data.amount_cents,
            status=calculate_payment_status(data.due_date, today or local_today()),
            notes=data.notes,
        )
        self.session.add(payment)
        self.session.commit()
        self.session.refresh(payment)
        return payment

    def _active_payments(self):
        return (
            select(BillPayment)
            .join(Bill, BillPayment.bill_id == Bill.id)
            .where(Bill.user_id == self.user_id, Bill.is_active.is_(True))
        )

    def upcoming(
        self,
        days: int = UPCOMING_WINDOW_DAYS,
        statuses: Optional[list[BillStatus]] = None,
        today: Optional[date] = None,
    ) -> dict[str, object]:
        today = today or local_today()
        statuses = statuses or [
            BillStatus.upcoming,
            BillStatus.due_soon,
            BillStatus.overdue,
        ]
        stmt = (
            self._active_payments()
            .options(joinedload(BillPayment.bill))
            .where(
                BillPayment.status.in_(statuses),
                BillPayment.due_date.between(today, today + timedelta(days=days)),
            )
            .order_by(BillPayment.due_date, BillPayment.id)
        )
        payments = self.session.scalars(stmt).all()
        return {
            "payments": [
                {
                    **BillPaymentOut.model_validate(p).model_dump(mode="json"),
                    "bill_name": p.bill.name,
                    "bill_type": p.bill.bill_type.value,
                    "days_until_due": days_until_due(p.due_date, today),
                    "is_overdue": is_overdue(p, today),
                }
                for p in payments
            ],
            "total_cents": sum(p.amount_cents for p in payments),
            "count": len(payments),
            "days": days,
        }

    def upcoming_total_cents(self, start: date, end: date) -> int:
        stmt = (
            select(func.coalesce(func.sum(BillPayment.amount_cents), 0))
            .join(Bill, BillPayment.bill_id == Bill.id)
            .where(
                Bill.user_id == self.user_id,
                Bill.is_active.is_(True),
                BillPayment.status.in_(UNPAID_STATUSES),
                BillPayment.due_date.between(start, end),
            )
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def statistics(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        window_end = today + timedelta(days=UPCOMING_WINDOW_DAYS)

        total_bills = self.session.scalar(
            select(func.count(Bill.id)).where(Bill.user_id == self.user_id)
        )
        active_bills = self.session.scalar(
            select(func.count(Bill.id)).where(
                Bill.user_id == self.user_id, Bill.is_active.is_(True)
            )
        )
        upcoming_count = self.session.scalar(
            select(func.count(BillPayment.id))
            .join(Bill, BillPayment.bill_id == Bill.id)
            .where(
                Bill.user_id == self.user_id,
                Bill.is_active.is_(True),
                BillPayment.status.in_(UNPAID_STATUSES),
                BillPayment.due_date.between(today, window_end),
            )
        )
        overdue_count, overdue_total = self.session.execute(
            select(
                func.count(BillPayment.id),
                func.coalesce(func.sum(BillPayment.amount_cents), 0),
            )
            .join(Bill, BillPayment.bill_id == Bill.id)
            .where(
                Bill.user_id == self.user_id,
                Bill.is_active.is_(True),
                BillPayment.status == BillStatus.overdue,
            )
        ).one()

        by_type = {bill_type.value: 0 for bill_type in BillType}
        for row in self.session.execute(
            select(Bill.bill_type, func.count(Bill.id))
            .where(Bill.user_id == self.user_id, Bill.is_active.is_(True))
            .group_by(Bill.bill_type)
        ):
            by_type[row[0].value] = int(row[1])

        active = self.list_all(active=True)
        annual_cost = sum(
            bill.amount_cents * len(calculate_annual_due_dates(bill, today))
            for bill in active
        )

        return {
            "total_bills": int(total_bills or 0),
            "active_bills": int(active_bills or 0),
            "upcoming_payments": int(upcoming_count or 0),
            "overdue_payments": int(overdue_count or 0),
            "upcoming_total_cents": self.upcoming_total_cents(today, window_end),
            "overdue_total_cents": int(overdue_total or 0),
            "by_type": by_type,
            "annual_cost_cents": annual_cost,
        }

    def generate_payments(self, today: Optional[date] = None) -> dict[str, int]:
        engine = BillPaymentEngine(self.session)
        created = engine.ensure_upcoming_payments(self.user_id, today)
        transitioned = engine.update_payment_statuses(self.user_id, today)
        self.session.commit()
        return {"created": created, "transitioned": transitioned}

    def serialize(self, bill: Bill) -> dict[str, object]:
        return {
            **BillOut.model_validate(bill).model_dump(mode="json"),
            "recurrence_label": RECURRENCE_LABELS[bill.recurrence],
            "category_name": bill.category.name,
        }


class BillPaymentProcessor:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _get_payment(self, payment_id: int) -> BillPayment:
        payment = self.session.scalar(
            select(BillPayment)
            .join(Bill, BillPayment.bill_id == Bill.id)
            .options(joinedload(BillPayment.bill))
            .where(BillPayment.id == payment_id, Bill.user_id == self.user_id)
        )
        if not payment:
            raise NotFoundError("Bill payment not found")
        return payment

    def mark_paid(
        self, payment_id: int, data: MarkBillPaidIn
    ) -> tuple[BillPayment, Transaction]:
        payment = self._get_payment(payment_id)
        if payment.status == BillStatus.paid:
            raise AlreadyPaidError("Bill payment is already marked as paid")
        BankService(self.session, self.user_id).get(data.bank_id)
        bill = payment.bill

        with atomic(self.session):
            txn = Transaction(
                user_id=self.user_id,
                bank_id=data.bank_id,
                category_id=bill.category_id,
                type=TransactionType.expense,
                amount_cents=data.paid_amount_cents,
                description=f"Bill Payment: {bill.name}",
                notes=data.notes or f"Payment for {bill.name} bill",
                transaction_date=data.paid_date,
            )
            self.session.add(txn)
            self.session.flush()

            payment.status = BillStatus.paid
            payment.paid_date = data.paid_date
            payment.paid_amount_cents = data.paid_amount_cents
            payment.transaction_id = txn.id
            if data.notes:
                payment.notes = data.notes
            self.session.flush()

        logger.info(
            f"bill_payment_paid: payment_id={payment.id} bill_id={bill.id} "
            f"transaction_id={txn.id} amount_cents={data.paid_amount_cents}"
        )
        return payment, txn

    def unmark(
        self,
        payment_id: int,
        delete_transaction: bool = True,
        today: Optional[date] = None,
    ) -> BillPayment:
        today = today or local_today()
        payment = self._get_payment(payment_id)
        if payment.status != BillStatus.paid:
            raise NotPaidError("Bill payment is not marked as paid")

        with atomic(self.session):
            linked_id = payment.transaction_id
            revert_payment_to_unpaid(payment, today)
            self.session.flush()
            if delete_transaction and linked_id is not None:
                txn = self.session.get(Transaction, linked_id)
                if txn is not None:
                    _delete_transaction_rows(self.session, txn)
                    self.session.flush()

        logger.info(
            f"bill_payment_unpaid: payment_id={payment.id} status={payment.status.value} "
            f"transaction_deleted={bool(delete_transaction and linked_id)}"
        )
        return payment

    def cancel(self, payment_id: int) -> BillPayment:
        payment = self._get_payment(payment_id)
        if payment.status == BillStatus.paid:
            raise AlreadyPaidError("Bill payment is already marked as paid")
        payment.status = BillStatus.cancelled
        self.session.commit()
        return payment


class AnalyticsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _expenses(
        self, start: date, end: date, category_id: Optional[int] = None
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.transaction_date.between(start, end),
            )
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        )
        if category_id:
            stmt = stmt.where(Transaction.category_id == category_id)
        return self.session.scalars(stmt).all()

    @staticmethod
    def _category_fields(category: Optional[Category]) -> dict[str, object]:
        if category is None:
            return {
                "category_id": None,
                "category_name": "Uncategorized",
                "category_icon": DEFAULT_CATEGORY_ICON,
                "category_color": DEFAULT_CATEGORY_COLOR,
            }
        return {
            "category_id": category.id,
            "category_name": category.name,
            "category_icon": category.icon or DEFAULT_CATEGORY_ICON,
            "category_color": category.color or DEFAULT_CATEGORY_COLOR,
        }

    def _breakdown(self, transactions: list[Transaction]) -> list[dict[str, object]]:
        breakdown = []
        for bucket in aggregate_by_category(transactions).values():
            fields = self._category_fields(bucket["category"])
            breakdown.append(
                {
                    "category_id": fields["category_id"],
                    "category_name": fields["category_name"],
                    "amount_cents": bucket["amount_cents"],
                }
            )
        return breakdown

    def spending(self, query: SpendingQuery) -> dict[str, object]:
        transactions = self._expenses(
            query.start_date, query.end_date, query.category_id
        )
        total = sum(t.amount_cents for t in transactions)
        period = {
            "start_date": query.start_date.isoformat(),
            "end_date": query.end_date.isoformat(),
        }

        if query.group_by == "category":
            aggregated = aggregate_by_category(transactions)
            percentages = calculate_category_percentages(
                {key: bucket["amount_cents"] for key, bucket in aggregated.items()}
            )
            data = [
                {
                    **self._category_fields(bucket["category"]),
                    "total_spent_cents": bucket["amount_cents"],
                    "transaction_count": bucket["count"],
                    "percentage": percentages[key],
                }
                for key, bucket in aggregated.items()
            ]
            data.sort(key=lambda row: row["total_spent_cents"], reverse=True)
            return {"data": data, "total_spent_cents": total, "period": period}

        grouped = group_transactions_by_period(transactions, query.group_by)
        data = [
            {
                "period": key,
                "label": format_period_label(key, query.group_by),
                "total_spent_cents": sum(t.amount_cents for t in rows),
                "category_breakdown": self._breakdown(rows),
            }
            for key, rows in sorted(grouped.items())
        ]
        return {"data": data, "total_spent_cents": total, "period": period}

    def trends(
        self,
        months: int = 6,
        category_id: Optional[int] = None,
        today: Optional[date] = None,
    ) -> dict[str, object]:
        if months < 1 or months > 24:
            raise ValueError("Months must be between 1 and 24")
        today = today or local_today()
        end = month_end(today)
        start = month_start(add_months(today, -(months - 1), desired_day=1))

        grouped = group_transactions_by_period(
            self._expenses(start, end, category_id), "month"
        )
        series = [
            {
                "month": key,
                "total_spent_cents": sum(t.amount_cents for t in grouped.get(key, [])),
                "categories": self._breakdown(grouped.get(key, [])),
            }
            for key in month_keys(start, end)
        ]
        total = sum(m["total_spent_cents"] for m in series)
        average = round(total / len(series)) if series else 0
        mom_growth = 0.0
        if len(series) >= 2:
            mom_growth = round(
                calculate_mom_growth(
                    series[-1]["total_spent_cents"], series[-2]["total_spent_cents"]
                ),
                1,
            )
        direction = calculate_trend_direction(
            [(m["month"], m["total_spent_cents"]) for m in series]
        )
        return {
            "trends": series,
            "insights": {
                "average_monthly_spend_cents": average,
                "highest_month": extreme_month(series, highest=True),
                "lowest_month": extreme_month(series, highest=False),
                "month_over_month_growth": mom_growth,
                "trend": direction.value,
            },
            "period": {
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "months": months,
            },
        }


class ExportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _transactions(self) -> list[Transaction]:
        return self.session.scalars(
            select(Transaction)
            .options(
                joinedload(Transaction.category),
                joinedload(Transaction.bank),
                joinedload(Transaction.labels),
            )
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.transaction_date, Transaction.id)
        ).unique().all()

    def export_data(self) -> dict[str, object]:
        banks = BankService(self.session, self.user_id).list_all()
        bills = BillService(self.session, self.user_id).list_all()
        payments = self.session.scalars(
            select(BillPayment)
            .join(Bill, BillPayment.bill_id == Bill.id)
            .where(Bill.user_id == self.user_id)
            .order_by(BillPayment.due_date)
        ).all()
        insights = self.session.scalars(
            select(Insight).where(Insight.user_id == self.user_id)
        ).all()
        return {
            "export_date": local_today().isoformat(),
            "version": "1.0",
            "user_id": self.user_id,
            "banks": [BankOut.model_validate(b).model_dump(mode="json") for b in banks],
            "categories": [
                CategoryOut.model_validate(c).model_dump(mode="json")
                for c in CategoryService(self.session, self.user_id).list_all()
            ],
            "labels": [
                LabelOut.model_validate(label).model_dump(mode="json")
                for label in LabelService(self.session, self.user_id).list_all()
            ],
            "transactions": [
                TransactionOut.model_validate(t).model_dump(mode="json")
                for t in self._transactions()
            ],
            "budgets": [
                BudgetOut.model_validate(b).model_dump(mode="json")
                for b in BudgetService(self.session, self.user_id).list_all()
            ],
            "bills": [BillOut.model_validate(b).model_dump(mode="json") for b in bills],
            "bill_payments": [
                BillPaymentOut.model_validate(p).model_dump(mode="json")
                for p in payments
            ],
            "insights": [
                InsightOut.model_validate(i).model_dump(mode="json") for i in insights
            ],
        }

    def export_csv(self) -> str:
        return export_transactions(self._transactions())
