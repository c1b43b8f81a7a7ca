from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, joinedload

from config import get_settings, local_today
from errors import NotFoundError
from models import (
    Bill,
    BillPayment,
    BillStatus,
    Insight,
    InsightType,
    Transaction,
    TransactionType,
)
from recurrence import (
    UNPAID_STATUSES,
    BillPaymentEngine,
    days_until_due,
    should_send_reminder,
)
from services import BudgetService


logger = logging.getLogger(__name__)

DEDUPE_WINDOW = timedelta(hours=24)
INSIGHT_TTL = timedelta(days=30)
UNUSUAL_LOOKBACK_DAYS = 7
UNUSUAL_MULTIPLIER = 3
UNUSUAL_TOP_N = 3
SAVINGS_THRESHOLD_PERCENT = 50


@dataclass
class GeneratedInsight:
    type: InsightType
    title: str
    description: str
    subject_id: Optional[int] = None
    data: dict[str, Any] = field(default_factory=dict)


def _money(amount_cents: int) -> str:
    return f"{get_settings().currency} {amount_cents / 100:,.2f}"


def _plural_days(days: int) -> str:
    return f"{days} day" if days == 1 else f"{days} days"


class InsightGenerator:
    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = today or local_today()
        self.now = now or datetime.utcnow()

    def _recently_created(self, insight_type: InsightType, subject_id: int) -> bool:
        existing = self.session.scalar(
            select(Insight.id).where(
                Insight.user_id == self.user_id,
                Insight.type == insight_type,
                Insight.subject_id == subject_id,
                Insight.created_at >= self.now - DEDUPE_WINDOW,
            )
        )
        return existing is not None

    def budget_alerts(self) -> list[GeneratedInsight]:
        budgets = BudgetService(self.session, self.user_id)
        alerts: list[GeneratedInsight] = []
        for budget in budgets.active_budgets(today=self.today):
            if budget.amount_cents <= 0:
                continue
            if self._recently_created(InsightType.budget_alert, budget.id):
                continue
            progress = budgets.progress(budget, self.today)
            actual = progress["actual_cents"]
            budgeted = progress["budgeted_cents"]
            percent = progress["percent_used"]
            name = budget.category.name
            period = budget.period.value

            if actual >= budgeted:
                severity = "critical"
                title = f"{name} budget exceeded"
                description = (
                    f"You've exceeded your {period} budget by {_money(actual - budgeted)}. "
                    f"Current spending: {_money(actual)} ({percent}% of {_money(budgeted)})"
                )
            elif actual * 100 >= 90 * budgeted:
                severity = "high"
                title = f"{name} budget almost exceeded"
                description = (
                    f"You've used {percent}% of your {period} budget. Only "
                    f"{_money(budgeted - actual)} remaining out of {_money(budgeted)}."
                )
            elif actual * 100 >= 75 * budgeted:
                severity = "medium"
                title = f"{name} budget at {percent}%"
                description = (
                    f"You've used {_money(actual)} of your {_money(budgeted)} {period} "
                    f"budget. You have {_money(budgeted - actual)} remaining."
                )
            else:
                continue

            alerts.append(
                GeneratedInsight(
                    type=InsightType.budget_alert,
                    title=title,
                    description=description,
                    subject_id=budget.id,
                    data={
                        "budget_id": budget.id,
                        "category_id": budget.category_id,
                        "category_name": name,
                        "percent_used": percent,
                        "actual_cents": actual,
                        "budgeted_cents": budgeted,
                        "period": period,
                        "severity": severity,
                    },
                )
            )
        return alerts

    def savings_opportunities(self) -> list[GeneratedInsight]:
        budgets = BudgetService(self.session, self.user_id)
        opportunities: list[GeneratedInsight] = []
        for budget in budgets.active_budgets(today=self.today):
            progress = budgets.progress(budget, self.today)
            actual = progress["actual_cents"]
            budgeted = progress["budgeted_cents"]
            if actual <= 0 or actual * 100 >= SAVINGS_THRESHOLD_PERCENT * budgeted:
                continue
            if self._recently_created(InsightType.savings_opportunity, budget.id):
                continue
            potential = (budgeted - actual) // 2
            name = budget.category.name
            opportunities.append(
                GeneratedInsight(
                    type=InsightType.savings_opportunity,
                    title=f"Potential savings in {name}",
                    description=(
                        f"You're only using {progress['percent_used']}% of your {name} "
                        f"budget. Consider reducing it by {_money(potential)} and "
                        "allocating it to savings or other categories."
                    ),
                    subject_id=budget.id,
                    data={
                        "budget_id": budget.id,
                        "category_id": budget.category_id,
                        "category_name": name,
                        "budgeted_cents": budgeted,
                        "actual_cents": actual,
                        "percent_used": progress["percent_used"],
                        "suggested_budget_cents": actual * 6 // 5,
                        "potential_savings_cents": potential,
                    },
                )
            )
        return opportunities

    def unusual_spending(self) -> list[GeneratedInsight]:
        since = self.today - timedelta(days=UNUSUAL_LOOKBACK_DAYS)
        recent = self.session.scalars(
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.transaction_date >= since,
            )
            .order_by(Transaction.amount_cents.desc(), Transaction.id)
        ).all()
        if not recent:
            return []

        total = sum(t.amount_cents for t in recent)
        alerts: list[GeneratedInsight] = []
        for txn in recent[:UNUSUAL_TOP_N]:
            # amount > 3x average, kept in integers
            if txn.amount_cents * len(recent) <= UNUSUAL_MULTIPLIER * total:
                continue
            if self._recently_created(InsightType.unusual_spending, txn.id):
                continue
            category_name = txn.category.name if txn.category else "Uncategorized"
            alerts.append(
                GeneratedInsight(
                    type=InsightType.unusual_spending,
                    title="Unusual transaction detected",
                    description=(
                        f"A large {category_name} expense of {_money(txn.amount_cents)} "
                        "was recorded. This is significantly higher than your average "
                        "spending."
                    ),
                    subject_id=txn.id,
                    data={
                        "transaction_id": txn.id,
                        "category_id": txn.category_id,
                        "category_name": category_name,
                        "amount_cents": txn.amount_cents,
                        "average_cents": round(total / len(recent)),
                        "description": txn.description,
                        "date": txn.transaction_date.isoformat(),
                    },
                )
            )
        return alerts

    def _user_payments(self):
        return (
            select(BillPayment)
            .join(Bill, BillPayment.bill_id == Bill.id)
            .options(joinedload(BillPayment.bill))
            .where(Bill.user_id == self.user_id, Bill.is_active.is_(True))
            .order_by(BillPayment.due_date, BillPayment.id)
        )

    def bill_reminders(self) -> list[GeneratedInsight]:
        engine = BillPaymentEngine(self.session)
        payments = self.session.scalars(
            self._user_payments().where(
                BillPayment.status.in_(UNPAID_STATUSES),
                BillPayment.reminder_sent.is_(False),
            )
        ).all()
        reminders: list[GeneratedInsight] = []
        for payment in payments:
            bill = payment.bill
            if not should_send_reminder(payment, bill.reminder_days_before, self.today):
                continue
            if self._recently_created(InsightType.bill_reminder, payment.id):
                continue
            remaining = days_until_due(payment.due_date, self.today)
            reminders.append(
                GeneratedInsight(
                    type=InsightType.bill_reminder,
                    title=f"{bill.name} bill due in {_plural_days(remaining)}",
                    description=(
                        f"Your {bill.name} bill ({_money(payment.amount_cents)}) is due "
                        f"on {payment.due_date.isoformat()}. Don't forget to pay!"
                    ),
                    subject_id=payment.id,
                    data={
                        "bill_id": bill.id,
                        "payment_id": payment.id,
                        "bill_name": bill.name,
                        "amount_cents": payment.amount_cents,
                        "due_date": payment.due_date.isoformat(),
                        "days_until_due": remaining,
                        "bill_type": bill.bill_type.value,
                    },
                )
            )
            engine.mark_reminder_sent(payment)
        return reminders

    def overdue_alerts(self) -> list[GeneratedInsight]:
        payments = self.session.scalars(
            self._user_payments().where(BillPayment.status == BillStatus.overdue)
        ).all()
        alerts: list[GeneratedInsight] = []
        for payment in payments:
            if self._recently_created(InsightType.bill_overdue, payment.id):
                continue
            bill = payment.bill
            days_overdue = abs(days_until_due(payment.due_date, self.today))
            alerts.append(
                GeneratedInsight(
                    type=InsightType.bill_overdue,
                    title=f"Overdue: {bill.name} bill",
                    description=(
                        f"Your {bill.name} bill ({_money(payment.amount_cents)}) was due "
                        f"on {payment.due_date.isoformat()} and is now "
                        f"{_plural_days(days_overdue)} overdue. Pay now to avoid late fees!"
                    ),
                    subject_id=payment.id,
                    data={
                        "bill_id": bill.id,
                        "payment_id": payment.id,
                        "bill_name": bill.name,
                        "amount_cents": payment.amount_cents,
                        "due_date": payment.due_date.isoformat(),
                        "days_overdue": days_overdue,
                        "bill_type": bill.bill_type.value,
                        "severity": "critical",
                    },
                )
            )
        return alerts

    def save(self, generated: list[GeneratedInsight]) -> None:
        for item in generated:
            self.session.add(
                Insight(
                    user_id=self.user_id,
                    type=item.type,
                    title=item.title,
                    description=item.description,
                    subject_id=item.subject_id,
                    data=item.data,
                    created_at=self.now,
                    updated_at=self.now,
                    expires_at=self.now + INSIGHT_TTL,
                )
            )

    def generate_all(self) -> int:
        engine = BillPaymentEngine(self.session)
        engine.ensure_upcoming_payments(self.user_id, self.today)
        engine.update_payment_statuses(self.user_id, self.today)

        generated = [
            *self.budget_alerts(),
            *self.savings_opportunities(),
            *self.unusual_spending(),
            *self.bill_reminders(),
            *self.overdue_alerts(),
        ]
        self.save(generated)
        self.session.commit()
        logger.info(f"insights_generated: user_id={self.user_id} count={len(generated)}")
        return len(generated)


class InsightService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(
        self,
        *,
        unread_only: bool = False,
        type: Optional[InsightType] = None,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> list[Insight]:
        now = now or datetime.utcnow()
        stmt = (
            select(Insight)
            .where(
                Insight.user_id == self.user_id,
                or_(Insight.expires_at.is_(None), Insight.expires_at > now),
            )
            .order_by(Insight.created_at.desc(), Insight.id.desc())
            .limit(limit)
        )
        if unread_only:
            stmt = stmt.where(Insight.is_read.is_(False))
        if type:
            stmt = stmt.where(Insight.type == type)
        return self.session.scalars(stmt).all()

    def get(self, insight_id: int) -> Insight:
        insight = self.session.get(Insight, insight_id)
        if not insight or insight.user_id != self.user_id:
            raise NotFoundError("Insight not found")
        return insight

    def mark_read(self, insight_id: int, is_read: bool = True) -> Insight:
        insight = self.get(insight_id)
        insight.is_read = is_read
        self.session.commit()
        self.session.refresh(insight)
        return insight

    def delete(self, insight_id: int) -> None:
        insight = self.get(insight_id)
        self.session.delete(insight)
        self.session.commit()
