from datetime import date, timedelta

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from config import local_today
from database import Base
from models import Bill, BillPayment, BillRecurrence, BillStatus, Category, CategoryType
from scheduler import run_bill_maintenance


def test_run_bill_maintenance_covers_each_user_with_active_bills():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    today = local_today()
    with Session(engine) as session:
        for user_id in (1, 2):
            category = Category(user_id=user_id, name="Bills", type=CategoryType.expense)
            session.add(category)
            session.flush()
            session.add(
                Bill(
                    user_id=user_id,
                    category_id=category.id,
                    name=f"Phone {user_id}",
                    amount_cents=59900,
                    recurrence=BillRecurrence.monthly,
                    start_date=today + timedelta(days=40),
                )
            )
        inactive_category = Category(user_id=3, name="Bills", type=CategoryType.expense)
        session.add(inactive_category)
        session.flush()
        session.add(
            Bill(
                user_id=3,
                category_id=inactive_category.id,
                name="Old gym",
                amount_cents=10000,
                recurrence=BillRecurrence.monthly,
                start_date=date(2020, 1, 1),
                is_active=False,
            )
        )
        session.commit()

        result = run_bill_maintenance(session)

        assert result["users"] == 2
        assert result["created"] > 0
        payments = session.scalars(select(BillPayment)).all()
        assert payments
        assert all(p.status == BillStatus.upcoming for p in payments)

        again = run_bill_maintenance(session)
        assert again["created"] == 0


def test_run_bill_maintenance_flags_overdue_payments():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    today = local_today()
    with Session(engine) as session:
        category = Category(user_id=1, name="Bills", type=CategoryType.expense)
        session.add(category)
        session.flush()
        bill = Bill(
            user_id=1,
            category_id=category.id,
            name="Water",
            amount_cents=30000,
            recurrence=BillRecurrence.one_time,
            start_date=today - timedelta(days=3),
        )
        session.add(bill)
        session.flush()
        session.add(
            BillPayment(
                bill_id=bill.id,
                due_date=today - timedelta(days=3),
                amount_cents=30000,
                status=BillStatus.upcoming,
            )
        )
        session.commit()

        result = run_bill_maintenance(session)

        assert result["transitioned"] == 1
        payment = session.scalars(select(BillPayment)).one()
        assert payment.status == BillStatus.overdue
