from __future__ import annotations

import datetime
from typing import Dict, Iterable, List, Optional

from .periods import DateLike, date_key, to_date_only
from .types import Holiday, LeavePeriod


class HolidayLeaveIndex:
    """Date-only lookups for holidays and leave periods of one fill run."""

    def __init__(self, holidays: Iterable[Holiday] = (), leaves: Iterable[LeavePeriod] = ()) -> None:
        self._holidays: Dict[str, Holiday] = {}
        for holiday in holidays:
            self._holidays[date_key(holiday.date)] = holiday
        # Declaration order is kept: the first matching period wins.
        self.leaves: List[LeavePeriod] = [leave for leave in leaves if not leave.deleted]

    @property
    def holidays(self) -> List[Holiday]:
        return [self._holidays[key] for key in sorted(self._holidays)]

    def is_holiday(self, value: DateLike) -> bool:
        return date_key(value) in self._holidays

    def holiday_for(self, value: DateLike) -> Optional[Holiday]:
        return self._holidays.get(date_key(value))

    def leave_for(self, value: DateLike) -> Optional[LeavePeriod]:
        day = to_date_only(value)
        for leave in self.leaves:
            start = to_date_only(leave.start_date)
            end = to_date_only(leave.end_date) if leave.end_date is not None else datetime.date.max
            if start <= day <= end:
                return leave
        return None

    def is_on_leave(self, value: DateLike) -> bool:
        return self.leave_for(value) is not None
