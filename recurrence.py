import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from config import get_settings, local_today
from models import Bill, BillPayment, BillRecurrence, BillStatus
from periods import add_months, date_with_day


logger = logging.getLogger(__name__)

WEEK_STEPS = {
    BillRecurrence.weekly: 7,
    BillRecurrence.biweekly: 14,
}

MONTH_STEPS = {
    BillRecurrence.monthly: 1,
    BillRecurrence.quarterly: 3,
    BillRecurrence.semi_annual: 6,
    BillRecurrence.annual: 12,
}

RECURRENCE_LABELS = {
    BillRecurrence.one_time: "One-time",
    BillRecurrence.weekly: "Weekly",
    BillRecurrence.biweekly: "Every 2 weeks",
    BillRecurrence.monthly: "Monthly",
    BillRecurrence.quarterly: "Quarterly",
    BillRecurrence.semi_annual: "Every 6 months",
    BillRecurrence.annual: "Annually",
}

UNPAID_STATUSES = (BillStatus.upcoming, BillStatus.due_soon)
STICKY_STATUSES = (BillStatus.paid, BillStatus.cancelled)


def _monthly_due_date(from_date: date, day_of_month: int) -> date:
    due = date_with_day(from_date.year, from_date.month, day_of_month)
    if due < from_date:
        due = add_months(from_date.replace(day=1), 1, desired_day=day_of_month)
    return due


def calculate_next_due_date(bill: Bill, from_date: date) -> Optional[date]:
    start = bill.start_date
    if from_date < start:
        return start
    if bill.end_date and from_date > bill.end_date:
        return None
    if bill.recurrence == BillRecurrence.one_time:
        return start if from_date == start else None

    if bill.recurrence in WEEK_STEPS:
        step = WEEK_STEPS[bill.recurrence]
        periods = -(-(from_date - start).days // step)
        next_date = start + timedelta(days=periods * step)
    elif bill.recurrence == BillRecurrence.monthly and bill.day_of_month:
        next_date = _monthly_due_date(from_date, bill.day_of_month)
    elif bill.recurrence in MONTH_STEPS:
        step = MONTH_STEPS[bill.recurrence]
        months_between = (from_date.year - start.year) * 12 + (
            from_date.month - start.month
        )
        count = max(0, months_between // step)
        next_date = add_months(start, count * step, desired_day=start.day)
        while next_date < from_date:
            count += 1
            next_date = add_months(start, count * step, desired_day=start.day)
    else:
        return None

    if bill.end_date and next_date > bill.end_date:
        return None
    return next_date


def generate_upcoming_payments(
    bill: Bill, count: int = 6, today: Optional[date] = None
) -> list[date]:
    current = today or local_today()
    due_dates: list[date] = []
    for _ in range(count):
        next_due = calculate_next_due_date(bill, current)
        if next_due is None:
            break
        due_dates.append(next_due)
        current = next_due + timedelta(days=1)
    return due_dates


def calculate_annual_due_dates(bill: Bill, today: Optional[date] = None) -> list[date]:
    today = today or local_today()
    horizon = add_months(today, 12)
    due_dates: list[date] = []
    current = today
    while current < horizon:
        next_due = calculate_next_due_date(bill, current)
        if next_due is None or next_due > horizon:
            break
        due_dates.append(next_due)
        current = next_due + timedelta(days=1)
    return due_dates


def days_until_due(due_date: date, today: Optional[date] = None) -> int:
    today = today or local_today()
    return (due_date - today).days


def calculate_payment_status(
    due_date: date,
    today: date,
    current_status: Optional[BillStatus] = None,
    *,
    due_soon_days: Optional[int] = None,
) -> BillStatus:
    if current_status in STICKY_STATUSES:
        return current_status
    if due_soon_days is None:
        due_soon_days = get_settings().due_soon_days
    remaining = days_until_due(due_date, today)
    if remaining < 0:
        return BillStatus.overdue
    if remaining <= due_soon_days:
        return BillStatus.due_soon
    return BillStatus.upcoming


def is_overdue(payment: BillPayment, today: Optional[date] = None) -> bool:
    if payment.status == BillStatus.paid:
        return False
    return days_until_due(payment.due_date, today) < 0


def should_send_reminder(
    payment: BillPayment, reminder_days_before: int, today: Optional[date] = None
) -> bool:
    if payment.status == BillStatus.paid or payment.reminder_sent:
        return False
    remaining = days_until_due(payment.due_date, today)
    return 0 <= remaining <= reminder_days_before


def _user_bill_ids(user_id: int):
    return select(Bill.id).where(Bill.user_id == user_id)


class BillPaymentEngine:
    def __init__(
        self,
        session: Session,
        *,
        due_soon_days: Optional[int] = None,
        lookahead: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.session = session
        self.due_soon_days = (
            settings.due_soon_days if due_soon_days is None else due_soon_days
        )
        self.lookahead = settings.payment_lookahead if lookahead is None else lookahead

    def ensure_upcoming_payments(
        self, user_id: int, today: Optional[date] = None
    ) -> int:
        today = today or local_today()
        bills = self.session.scalars(
            select(Bill)
            .where(Bill.user_id == user_id, Bill.is_active.is_(True))
            .order_by(Bill.id)
        ).all()
        created = sum(self.ensure_for_bill(bill, today) for bill in bills)
        logger.info(
            f"bill_payments_generated: user_id={user_id} bills={len(bills)} created={created}"
        )
        return created

    def ensure_for_bill(self, bill: Bill, today: Optional[date] = None) -> int:
        today = today or local_today()
        existing = set(
            self.session.scalars(
                select(BillPayment.due_date).where(BillPayment.bill_id == bill.id)
            ).all()
        )
        if bill.recurrence == BillRecurrence.one_time and existing:
            return 0
        created = 0
        for due_date in generate_upcoming_payments(bill, self.lookahead, today):
            if due_date in existing:
                continue
            self.session.add(
                BillPayment(
                    bill_id=bill.id,
                    due_date=due_date,
                    amount_cents=bill.amount_cents,
                    status=calculate_payment_status(
                        due_date, today, due_soon_days=self.due_soon_days
                    ),
                )
            )
            existing.add(due_date)
            created += 1
        self.session.flush()
        return created

    def regenerate_for_bill(self, bill: Bill, today: Optional[date] = None) -> int:
        """Drop future unpaid instances and rebuild them from the bill's schedule."""
        today = today or local_today()
        self.session.execute(
            delete(BillPayment)
            .where(
                BillPayment.bill_id == bill.id,
                BillPayment.status.in_(UNPAID_STATUSES),
                BillPayment.due_date >= today,
            )
            .execution_options(synchronize_session="fetch")
        )
        return self.ensure_for_bill(bill, today)

    def update_payment_statuses(
        self, user_id: int, today: Optional[date] = None
    ) -> int:
        today = today or local_today()
        overdue = self.session.execute(
            update(BillPayment)
            .where(
                BillPayment.bill_id.in_(_user_bill_ids(user_id)),
                BillPayment.status.in_(UNPAID_STATUSES),
                BillPayment.due_date < today,
            )
            .values(status=BillStatus.overdue)
            .execution_options(synchronize_session="fetch")
        )
        due_soon = self.session.execute(
            update(BillPayment)
            .where(
                BillPayment.bill_id.in_(_user_bill_ids(user_id)),
                BillPayment.status == BillStatus.upcoming,
                BillPayment.due_date >= today,
                BillPayment.due_date <= today + timedelta(days=self.due_soon_days),
            )
            .values(status=BillStatus.due_soon)
            .execution_options(synchronize_session="fetch")
        )
        changed = (overdue.rowcount or 0) + (due_soon.rowcount or 0)
        logger.info(
            f"bill_payment_statuses: user_id={user_id} overdue={overdue.rowcount} "
            f"due_soon={due_soon.rowcount}"
        )
        return changed

    def cleanup_old_payments(
        self, user_id: int, months_to_keep: int = 12, today: Optional[date] = None
    ) -> int:
        today = today or local_today()
        cutoff = add_months(today, -months_to_keep)
        result = self.session.execute(
            delete(BillPayment)
            .where(
                BillPayment.bill_id.in_(_user_bill_ids(user_id)),
                BillPayment.status == BillStatus.paid,
                BillPayment.paid_date < cutoff,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def mark_reminder_sent(self, payment: BillPayment) -> None:
        payment.reminder_sent = True
        payment.reminder_sent_at = datetime.utcnow()
