"""Convert template wall-clock times into the times stored on schedule records.

Weekly templates hold times as entered by the manager. Records are stored
with the site timezone bias subtracted, so 09:00 at a site with ``bias=-60``
is saved as 10:00. Bias follows the Windows/SharePoint convention (minutes,
positive west of UTC) plus a daylight or standard component by season.
"""

from __future__ import annotations

import datetime
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
UTC = datetime.timezone.utc


@dataclass(frozen=True)
class TimeZoneDescriptor:
    description: str = "UTC"
    id: int = 0
    bias: int = 0
    daylight_bias: int = 0
    standard_bias: int = 0


def shift_minutes(hours: int, minutes: int, offset: int) -> Tuple[int, int]:
    """Subtract ``offset`` minutes from a wall-clock time, wrapping into [00:00, 23:59]."""
    total = (int(hours) * 60 + int(minutes) - int(offset)) % MINUTES_PER_DAY
    return divmod(total, 60)


def _minutes_west(moment: datetime.datetime) -> int:
    offset = moment.utcoffset() or datetime.timedelta(0)
    return -int(offset.total_seconds() // 60)


class TimeZoneAdjuster:
    def __init__(
        self,
        provider: Callable[[], TimeZoneDescriptor],
        local_tz: Optional[datetime.tzinfo] = None,
    ) -> None:
        self._provider = provider
        self._local_tz = local_tz
        self._descriptor: Optional[TimeZoneDescriptor] = None
        self._lock = threading.Lock()

    def descriptor(self) -> TimeZoneDescriptor:
        cached = self._descriptor
        if cached is not None:
            return cached
        with self._lock:
            if self._descriptor is None:
                self._descriptor = self._provider()
                logger.info(
                    "Cached site timezone %s (bias=%s, daylight=%s, standard=%s)",
                    self._descriptor.description,
                    self._descriptor.bias,
                    self._descriptor.daylight_bias,
                    self._descriptor.standard_bias,
                )
            return self._descriptor

    def invalidate(self) -> None:
        with self._lock:
            self._descriptor = None

    def _local_noon(self, value: datetime.date) -> datetime.datetime:
        naive = datetime.datetime(value.year, value.month, value.day, 12, 0)
        if self._local_tz is None:
            return naive.astimezone()
        return naive.replace(tzinfo=self._local_tz)

    def is_daylight_saving(self, reference_date: datetime.date) -> bool:
        january = self._local_noon(datetime.date(reference_date.year, 1, 1))
        july = self._local_noon(datetime.date(reference_date.year, 7, 1))
        standard_offset = max(_minutes_west(january), _minutes_west(july))
        return _minutes_west(self._local_noon(reference_date)) < standard_offset

    def effective_bias(self, reference_date: datetime.date) -> int:
        info = self.descriptor()
        seasonal = info.daylight_bias if self.is_daylight_saving(reference_date) else info.standard_bias
        return info.bias + seasonal

    def adjust(self, hours: int, minutes: int, reference_date: datetime.date) -> Tuple[int, int]:
        return shift_minutes(hours, minutes, self.effective_bias(reference_date))

    def to_absolute(self, value: datetime.date, hours: int, minutes: int) -> datetime.datetime:
        """Adjusted instant for a template time on ``value``, rolling into the neighbouring day when needed."""
        wall = datetime.datetime(value.year, value.month, value.day, int(hours), int(minutes), tzinfo=UTC)
        return wall - datetime.timedelta(minutes=self.effective_bias(value))
