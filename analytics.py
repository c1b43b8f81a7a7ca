from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Optional, Sequence

from models import Transaction


class TrendDirection(str, Enum):
    increasing = "increasing"
    decreasing = "decreasing"
    stable = "stable"


TREND_THRESHOLD_PERCENT = 10
UNCATEGORIZED = "uncategorized"


def period_key(value: date, group_by: str) -> str:
    if group_by == "week":
        monday = value - timedelta(days=value.weekday())
        iso_year, iso_week, _ = monday.isocalendar()
        return f"{iso_year:04d}-W{iso_week:02d}"
    if group_by == "month":
        return f"{value.year:04d}-{value.month:02d}"
    return value.isoformat()


def format_period_label(period: str, group_by: str) -> str:
    try:
        if group_by == "day":
            return f"{date.fromisoformat(period):%b %d}"
        if group_by == "week":
            year, week = period.split("-W")
            return f"Week {int(week)}, {year}"
        if group_by == "month":
            return f"{date.fromisoformat(period + '-01'):%b %Y}"
    except ValueError:
        return period
    return period


def group_transactions_by_period(
    transactions: Iterable[Transaction], group_by: str
) -> dict[str, list[Transaction]]:
    grouped: dict[str, list[Transaction]] = {}
    for txn in transactions:
        grouped.setdefault(period_key(txn.transaction_date, group_by), []).append(txn)
    return grouped


def aggregate_by_category(
    transactions: Iterable[Transaction],
) -> dict[object, dict[str, object]]:
    aggregated: dict[object, dict[str, object]] = {}
    for txn in transactions:
        key = txn.category_id if txn.category_id is not None else UNCATEGORIZED
        bucket = aggregated.setdefault(
            key, {"amount_cents": 0, "count": 0, "category": txn.category}
        )
        bucket["amount_cents"] += txn.amount_cents
        bucket["count"] += 1
    return aggregated


def _round_one_decimal(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def calculate_category_percentages(amounts: dict[object, int]) -> dict[object, float]:
    total = sum(amounts.values())
    percentages: dict[object, float] = {}
    for key, amount in amounts.items():
        if total > 0:
            percentages[key] = _round_one_decimal(
                Decimal(amount) * Decimal(100) / Decimal(total)
            )
        else:
            percentages[key] = 0.0
    return percentages


def calculate_trend_direction(points: Sequence[tuple[str, int]]) -> TrendDirection:
    """Compare the average of the later half of a series to the earlier half."""
    if len(points) < 2:
        return TrendDirection.stable

    ordered = sorted(points, key=lambda p: p[0])
    middle = len(ordered) // 2
    first = [amount for _, amount in ordered[:middle]]
    second = [amount for _, amount in ordered[middle:]]
    first_avg = Decimal(sum(first)) / len(first)
    second_avg = Decimal(sum(second)) / len(second)

    if first_avg == 0:
        return TrendDirection.increasing if second_avg > 0 else TrendDirection.stable

    change = (second_avg - first_avg) / first_avg * 100
    if change > TREND_THRESHOLD_PERCENT:
        return TrendDirection.increasing
    if change < -TREND_THRESHOLD_PERCENT:
        return TrendDirection.decreasing
    return TrendDirection.stable


def calculate_mom_growth(current: int, previous: int) -> float:
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def month_keys(start: date, end: date) -> list[str]:
    keys: list[str] = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        keys.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return keys


def extreme_month(
    months: Sequence[dict[str, object]], *, highest: bool
) -> Optional[dict[str, object]]:
    non_zero = [m for m in months if m["total_spent_cents"] > 0]
    if not non_zero:
        return None
    pick = max if highest else min
    chosen = pick(non_zero, key=lambda m: m["total_spent_cents"])
    return {"month": chosen["month"], "amount_cents": chosen["total_spent_cents"]}
