from __future__ import annotations

import datetime
import sys
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from timezone_utils import TimeZoneAdjuster, TimeZoneDescriptor, shift_minutes  # noqa: E402

UTC_ZONE = ZoneInfo("UTC")


def _adjuster(descriptor: TimeZoneDescriptor, local_tz=UTC_ZONE):
    calls = []

    def provider() -> TimeZoneDescriptor:
        calls.append(descriptor)
        return descriptor

    return TimeZoneAdjuster(provider, local_tz), calls


@pytest.mark.parametrize(
    "hours, minutes, offset, expected",
    [
        (9, 0, -60, (10, 0)),
        (9, 0, 0, (9, 0)),
        (23, 30, -60, (0, 30)),
        (0, 30, 60, (23, 30)),
        (12, 15, 330, (6, 45)),
    ],
)
def test_shift_minutes_wraps_around_midnight(hours, minutes, offset, expected):
    assert shift_minutes(hours, minutes, offset) == expected


def test_adjust_subtracts_bias_and_standard_component():
    adjuster, _ = _adjuster(TimeZoneDescriptor(description="CET", bias=-60, daylight_bias=-60, standard_bias=0))
    assert adjuster.effective_bias(datetime.date(2024, 1, 15)) == -60
    assert adjuster.adjust(9, 0, datetime.date(2024, 1, 15)) == (10, 0)


def test_daylight_component_applies_in_summer():
    berlin = ZoneInfo("Europe/Berlin")
    adjuster, _ = _adjuster(
        TimeZoneDescriptor(description="CET", bias=-60, daylight_bias=-60, standard_bias=0),
        berlin,
    )
    assert adjuster.is_daylight_saving(datetime.date(2024, 7, 1))
    assert not adjuster.is_daylight_saving(datetime.date(2024, 1, 1))
    assert adjuster.adjust(9, 0, datetime.date(2024, 7, 1)) == (11, 0)
    assert adjuster.adjust(9, 0, datetime.date(2024, 1, 8)) == (10, 0)


def test_dst_reference_is_the_record_date_not_today():
    berlin = ZoneInfo("Europe/Berlin")
    adjuster, _ = _adjuster(TimeZoneDescriptor(bias=-60, daylight_bias=-60), berlin)
    # Clocks move forward on 31 March 2024.
    assert adjuster.adjust(9, 0, datetime.date(2024, 3, 30)) == (10, 0)
    assert adjuster.adjust(9, 0, datetime.date(2024, 4, 1)) == (11, 0)


def test_round_trip_across_midnight():
    adjuster, _ = _adjuster(TimeZoneDescriptor(bias=-60))
    day = datetime.date(2024, 4, 1)
    hours, minutes = adjuster.adjust(23, 30, day)
    assert (hours, minutes) == (0, 30)
    assert shift_minutes(hours, minutes, -adjuster.effective_bias(day)) == (23, 30)


def test_to_absolute_rolls_into_next_day():
    adjuster, _ = _adjuster(TimeZoneDescriptor(bias=-60))
    moment = adjuster.to_absolute(datetime.date(2024, 4, 1), 23, 30)
    assert moment == datetime.datetime(2024, 4, 2, 0, 30, tzinfo=datetime.timezone.utc)


def test_descriptor_is_cached_until_invalidated():
    adjuster, calls = _adjuster(TimeZoneDescriptor(description="UTC"))
    adjuster.adjust(8, 0, datetime.date(2024, 4, 1))
    adjuster.adjust(9, 0, datetime.date(2024, 4, 2))
    assert len(calls) == 1
    adjuster.invalidate()
    adjuster.adjust(9, 0, datetime.date(2024, 4, 2))
    assert len(calls) == 2
