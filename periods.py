from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from config import local_today
from errors import InvalidPeriodError
from models import BudgetPeriod, BudgetStatus


WARNING_THRESHOLD_PERCENT = 75
OVER_BUDGET_THRESHOLD_PERCENT = 100


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def date_with_day(year: int, month: int, day: int) -> date:
    """Build a date, snapping ``day`` to the last day of a shorter month."""
    return date(year, month, min(day, days_in_month(year, month)))


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date_with_day(year, month, desired_day or base.day)


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    return date(d.year, d.month, days_in_month(d.year, d.month))


def current_period_dates(
    period: BudgetPeriod,
    start_date: Optional[date] = None,
    *,
    today: Optional[date] = None,
) -> Period:
    """Concrete window for a budget period, relative to today.

    ``start_date`` is the budget's own start; the window is not anchored to it.
    """
    today = today or local_today()
    if period == BudgetPeriod.weekly:
        week_start = today - timedelta(days=today.weekday())
        return Period("weekly", week_start, week_start + timedelta(days=6))
    if period == BudgetPeriod.monthly:
        return Period("monthly", month_start(today), month_end(today))
    if period == BudgetPeriod.yearly:
        return Period("yearly", date(today.year, 1, 1), date(today.year, 12, 31))
    raise InvalidPeriodError(f"Invalid period: {period}")


def next_period_start(period: BudgetPeriod, current_start: date) -> date:
    if period == BudgetPeriod.weekly:
        return current_start + timedelta(weeks=1)
    if period == BudgetPeriod.monthly:
        return add_months(current_start, 1)
    if period == BudgetPeriod.yearly:
        return add_months(current_start, 12)
    raise InvalidPeriodError(f"Invalid period: {period}")


def calculate_percent_used(actual: int, budgeted: int) -> int:
    if budgeted == 0:
        return 0
    percent = Decimal(actual) * Decimal(100) / Decimal(budgeted)
    return int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_budget_status(actual: int, budgeted: int) -> BudgetStatus:
    if budgeted <= 0:
        return BudgetStatus.over_budget if actual > 0 else BudgetStatus.on_track
    # compare actual/budgeted*100 against the thresholds without rounding
    scaled = actual * 100
    if scaled < WARNING_THRESHOLD_PERCENT * budgeted:
        return BudgetStatus.on_track
    if scaled < OVER_BUDGET_THRESHOLD_PERCENT * budgeted:
        return BudgetStatus.warning
    return BudgetStatus.over_budget
