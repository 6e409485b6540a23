"""Month boundaries, week numbering and template-week chaining.

Everything here works on date-only values built from local calendar
components; datetimes are truncated with ``.date()`` before use so a time of
day never moves a record into a neighbouring day.
"""

from __future__ import annotations

import calendar
import datetime
from dataclasses import dataclass
from typing import Iterator, Optional, Union

from .errors import NoActiveContractError
from .types import Contract, WEEK_START_MONDAY, WEEK_START_SATURDAY

DateLike = Union[datetime.date, datetime.datetime]


@dataclass(frozen=True)
class MonthPeriod:
    first_day: datetime.date
    last_day: datetime.date
    total_days: int
    start_of_month: datetime.date
    end_of_month: datetime.date


@dataclass(frozen=True)
class WeekAndDay:
    calendar_week_number: int
    template_week_number: int
    day_number: int


def to_date_only(value: DateLike) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    return value


def date_key(value: DateLike) -> str:
    return to_date_only(value).isoformat()


def format_date_only(value: Optional[DateLike]) -> str:
    if value is None:
        return ""
    return to_date_only(value).strftime("%d.%m.%Y")


def month_bounds(selected_date: DateLike) -> tuple:
    day = to_date_only(selected_date)
    last = calendar.monthrange(day.year, day.month)[1]
    return datetime.date(day.year, day.month, 1), datetime.date(day.year, day.month, last)


def month_period(
    selected_date: DateLike,
    contract_start: Optional[DateLike] = None,
    contract_finish: Optional[DateLike] = None,
) -> MonthPeriod:
    start_of_month, end_of_month = month_bounds(selected_date)
    first_day = start_of_month
    last_day = end_of_month
    if contract_start is not None and to_date_only(contract_start) > first_day:
        first_day = to_date_only(contract_start)
    if contract_finish is not None and to_date_only(contract_finish) < last_day:
        last_day = to_date_only(contract_finish)
    if first_day > last_day:
        raise NoActiveContractError(
            f"Contract period does not overlap {start_of_month:%B %Y}."
        )
    return MonthPeriod(
        first_day=first_day,
        last_day=last_day,
        total_days=(last_day - first_day).days + 1,
        start_of_month=start_of_month,
        end_of_month=end_of_month,
    )


def iter_days(period: MonthPeriod) -> Iterator[datetime.date]:
    for offset in range(period.total_days):
        yield period.first_day + datetime.timedelta(days=offset)


def is_contract_active(contract: Contract, first: datetime.date, last: datetime.date) -> bool:
    if contract.deleted:
        return False
    if contract.start_date is not None and to_date_only(contract.start_date) > last:
        return False
    if contract.finish_date is not None and to_date_only(contract.finish_date) < first:
        return False
    return True


def js_weekday(value: datetime.date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (value.weekday() + 1) % 7


def day_number(value: DateLike) -> int:
    """1=Monday .. 7=Sunday."""
    return to_date_only(value).weekday() + 1


def _adjusted_first_day(start_of_month: datetime.date, week_start_day: int) -> int:
    first = js_weekday(start_of_month)
    if week_start_day == WEEK_START_MONDAY:
        return 6 if first == 0 else first - 1
    if week_start_day == WEEK_START_SATURDAY:
        return (first + 1) % 7
    return first


def resolve_template_week(calendar_week_number: int, template_week_count: int) -> int:
    if template_week_count <= 1:
        return 1
    if template_week_count == 2:
        return (calendar_week_number - 1) % 2 + 1
    if template_week_count == 3:
        return (calendar_week_number - 1) % 3 + 1
    if template_week_count == 4:
        # Weeks 5 and 6 reuse week 4.
        return min(calendar_week_number, 4)
    return (calendar_week_number - 1) % template_week_count + 1


def describe_chaining(template_week_count: int) -> str:
    if template_week_count <= 1:
        return "Single week template - repeat for all weeks (1,1,1,1)"
    if template_week_count == 2:
        return "Two week templates - alternate pattern (1,2,1,2)"
    if template_week_count == 3:
        return "Three week templates - cycle pattern (1,2,3,1,2,3,...)"
    if template_week_count == 4:
        return "Four week templates - full month cycle (1,2,3,4), later weeks reuse week 4"
    return f"{template_week_count} week templates - custom cycle pattern"


def week_and_day(
    value: DateLike,
    start_of_month: DateLike,
    week_start_day: int,
    template_week_count: int,
) -> WeekAndDay:
    day = to_date_only(value)
    adjusted_first_day = _adjusted_first_day(to_date_only(start_of_month), week_start_day)
    calendar_week_number = (day.day - 1 + adjusted_first_day) // 7 + 1
    return WeekAndDay(
        calendar_week_number=calendar_week_number,
        template_week_number=resolve_template_week(calendar_week_number, template_week_count),
        day_number=day_number(day),
    )
