"""Credit card statement cycle arithmetic.

A card is configured with three days of the month: the day its statement
cycle starts, the day it ends and the day payment is due. An end day lower
than the start day means the cycle crosses into the following month.
Configured days that do not exist in a given month are snapped to that
month's last day.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from config import local_today
from periods import add_months, date_with_day


@dataclass(frozen=True)
class BillingCycleConfig:
    cycle_start_day: int
    cycle_end_day: int
    due_day: int

    def __post_init__(self) -> None:
        for name in ("cycle_start_day", "cycle_end_day", "due_day"):
            value = getattr(self, name)
            if not 1 <= value <= 31:
                raise ValueError(f"{name} must be between 1 and 31")

    @classmethod
    def from_card(cls, card) -> "BillingCycleConfig":
        return cls(
            cycle_start_day=card.billing_cycle_start_day,
            cycle_end_day=card.billing_cycle_end_day,
            due_day=card.payment_due_day,
        )


@dataclass(frozen=True)
class BillingCycle:
    cycle_start: date
    cycle_end: date
    due_date: date

    def as_dict(self) -> dict[str, str]:
        return {
            "cycle_start": self.cycle_start.isoformat(),
            "cycle_end": self.cycle_end.isoformat(),
            "due_date": self.due_date.isoformat(),
        }


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def generate_billing_cycle(
    config: BillingCycleConfig, reference_date: Union[date, datetime]
) -> BillingCycle:
    reference = _as_date(reference_date)
    first_of_month = reference.replace(day=1)

    cycle_start = date_with_day(reference.year, reference.month, config.cycle_start_day)

    if config.cycle_end_day < config.cycle_start_day:
        cycle_end = add_months(first_of_month, 1, desired_day=config.cycle_end_day)
    else:
        cycle_end = date_with_day(reference.year, reference.month, config.cycle_end_day)

    if config.due_day < config.cycle_end_day:
        due_date = add_months(cycle_end, 1, desired_day=config.due_day)
    else:
        candidate = date_with_day(cycle_end.year, cycle_end.month, config.due_day)
        if candidate >= cycle_end:
            due_date = candidate
        else:
            due_date = add_months(cycle_end, 1, desired_day=config.due_day)

    return BillingCycle(cycle_start=cycle_start, cycle_end=cycle_end, due_date=due_date)


def get_current_billing_cycle(
    config: BillingCycleConfig, today: Optional[date] = None
) -> BillingCycle:
    today = today or local_today()
    cycle = generate_billing_cycle(config, today)
    if today < cycle.cycle_start:
        cycle = generate_billing_cycle(config, add_months(today, -1, desired_day=1))
    if today > cycle.cycle_end:
        cycle = generate_billing_cycle(config, add_months(today, 1, desired_day=1))
    return cycle


def generate_upcoming_cycles(
    config: BillingCycleConfig, count: int = 6, today: Optional[date] = None
) -> list[BillingCycle]:
    today = today or local_today()
    return [
        generate_billing_cycle(config, add_months(today, offset, desired_day=1))
        for offset in range(count)
    ]


def is_date_in_cycle(value: Union[date, datetime], cycle: BillingCycle) -> bool:
    check = _as_date(value)
    return cycle.cycle_start <= check <= cycle.cycle_end


def format_billing_cycle(cycle: BillingCycle) -> str:
    start = f"{cycle.cycle_start:%b} {cycle.cycle_start.day}"
    end = f"{cycle.cycle_end:%b} {cycle.cycle_end.day}"
    return f"{start} - {end}"
