from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import NotFoundError
from insights import InsightGenerator, InsightService
from models import (
    Bank,
    Bill,
    BillPayment,
    BillRecurrence,
    BillStatus,
    Budget,
    BudgetPeriod,
    Category,
    CategoryType,
    Insight,
    InsightType,
    Transaction,
    TransactionType,
)

TODAY = date(2025, 3, 20)
NOW = datetime(2025, 3, 20, 9, 0)


def _seed(session: Session):
    food = Category(user_id=1, name="Food", type=CategoryType.expense)
    bank = Bank(user_id=1, name="Main")
    session.add_all([food, bank])
    session.flush()
    return food, bank


def _expense(category, bank, amount, day):
    return Transaction(
        user_id=1,
        bank_id=bank.id,
        category_id=category.id,
        type=TransactionType.expense,
        amount_cents=amount,
        transaction_date=day,
    )


def _budget(category, amount):
    return Budget(
        user_id=1,
        category_id=category.id,
        amount_cents=amount,
        period=BudgetPeriod.monthly,
        start_date=date(2025, 1, 1),
    )


def test_budget_alert_severity_and_dedupe():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, bank = _seed(session)
        session.add_all([_budget(food, 10000), _expense(food, bank, 8000, date(2025, 3, 5))])
        session.commit()

        assert InsightGenerator(session, 1, today=TODAY, now=NOW).generate_all() == 1
        alert = session.scalars(select(Insight)).one()
        assert alert.type == InsightType.budget_alert
        assert alert.title == "Food budget at 80%"
        assert alert.data["severity"] == "medium"
        assert alert.data["percent_used"] == 80
        assert alert.expires_at == NOW + timedelta(days=30)

        later = NOW + timedelta(hours=1)
        assert InsightGenerator(session, 1, today=TODAY, now=later).generate_all() == 0

        next_day = NOW + timedelta(hours=25)
        assert InsightGenerator(session, 1, today=TODAY, now=next_day).generate_all() == 1


@pytest.mark.parametrize(
    "spent, severity",
    [(9000, "high"), (10000, "critical"), (12500, "critical")],
)
def test_budget_alert_escalates(spent, severity):
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, bank = _seed(session)
        session.add_all([_budget(food, 10000), _expense(food, bank, spent, date(2025, 3, 5))])
        session.commit()

        alerts = InsightGenerator(session, 1, today=TODAY, now=NOW).budget_alerts()
        assert [a.data["severity"] for a in alerts] == [severity]


def test_savings_opportunity_for_underused_budget():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, bank = _seed(session)
        session.add_all([_budget(food, 10000), _expense(food, bank, 2000, date(2025, 3, 5))])
        session.commit()

        generator = InsightGenerator(session, 1, today=TODAY, now=NOW)
        assert generator.budget_alerts() == []
        (opportunity,) = generator.savings_opportunities()
        assert opportunity.title == "Potential savings in Food"
        assert opportunity.data["potential_savings_cents"] == 4000
        assert opportunity.data["suggested_budget_cents"] == 2400


def test_unusual_spending_flags_outliers_only():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, bank = _seed(session)
        small = [_expense(food, bank, 100, date(2025, 3, 15 + i)) for i in range(4)]
        big = _expense(food, bank, 5000, date(2025, 3, 18))
        stale = _expense(food, bank, 90000, date(2025, 3, 1))
        session.add_all([*small, big, stale])
        session.commit()

        alerts = InsightGenerator(session, 1, today=TODAY, now=NOW).unusual_spending()

        assert [a.subject_id for a in alerts] == [big.id]
        assert alerts[0].data["average_cents"] == 1080


def test_bill_reminders_and_overdue_alerts():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        food, _ = _seed(session)
        bill = Bill(
            user_id=1,
            category_id=food.id,
            name="Electricity",
            amount_cents=50000,
            recurrence=BillRecurrence.monthly,
            start_date=date(2025, 1, 10),
            reminder_days_before=3,
        )
        session.add(bill)
        session.flush()
        soon = BillPayment(
            bill_id=bill.id,
            due_date=date(2025, 3, 22),
            amount_cents=50000,
            status=BillStatus.due_soon,
        )
        far = BillPayment(
            bill_id=bill.id,
            due_date=date(2025, 4, 10),
            amount_cents=50000,
            status=BillStatus.upcoming,
        )
        late = BillPayment(
            bill_id=bill.id,
            due_date=date(2025, 3, 10),
            amount_cents=50000,
            status=BillStatus.overdue,
        )
        session.add_all([soon, far, late])
        session.commit()

        generator = InsightGenerator(session, 1, today=TODAY, now=NOW)
        (reminder,) = generator.bill_reminders()
        assert reminder.subject_id == soon.id
        assert reminder.title == "Electricity bill due in 2 days"
        assert soon.reminder_sent is True
        assert far.reminder_sent is False
        assert generator.bill_reminders() == []

        (overdue,) = generator.overdue_alerts()
        assert overdue.subject_id == late.id
        assert overdue.title == "Overdue: Electricity bill"
        assert overdue.data["days_overdue"] == 10


def test_insight_service_filters_and_ownership():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        fresh = Insight(
            user_id=1,
            type=InsightType.budget_alert,
            title="Fresh",
            description="d",
            data={},
            created_at=NOW,
            expires_at=NOW + timedelta(days=30),
        )
        read = Insight(
            user_id=1,
            type=InsightType.bill_overdue,
            title="Read",
            description="d",
            data={},
            is_read=True,
            created_at=NOW - timedelta(days=1),
            expires_at=NOW + timedelta(days=29),
        )
        expired = Insight(
            user_id=1,
            type=InsightType.budget_alert,
            title="Expired",
            description="d",
            data={},
            created_at=NOW - timedelta(days=40),
            expires_at=NOW - timedelta(days=10),
        )
        session.add_all([fresh, read, expired])
        session.commit()

        service = InsightService(session, 1)
        assert [i.title for i in service.list(now=NOW)] == ["Fresh", "Read"]
        assert [i.title for i in service.list(unread_only=True, now=NOW)] == ["Fresh"]
        assert [
            i.title for i in service.list(type=InsightType.bill_overdue, now=NOW)
        ] == ["Read"]

        assert service.mark_read(fresh.id).is_read is True
        with pytest.raises(NotFoundError):
            InsightService(session, 2).get(fresh.id)

        service.delete(fresh.id)
        assert [i.title for i in service.list(now=NOW)] == ["Read"]
