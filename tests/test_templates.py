from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from fill.templates import (  # noqa: E402
    TemplateIndex,
    expand_row,
    normalize_time,
    parse_time,
    week_day_order,
)
from fill.types import TemplateRow  # noqa: E402


def _row(
    row_id: str,
    week: int = 1,
    shift: int = 1,
    *,
    days: Optional[Dict[int, tuple]] = None,
    creator: Optional[str] = "M1",
    group: Optional[str] = "G1",
    deleted: bool = False,
    lunch: int = 30,
) -> TemplateRow:
    if days is None:
        days = {day: ("09:00", "17:00") for day in range(1, 6)}
    return TemplateRow(
        id=row_id,
        contract_id="C1",
        week_number=week,
        shift_number=shift,
        lunch_minutes=lunch,
        deleted=deleted,
        creator_id=creator,
        group_id=group,
        days=days,
    )


class FakeTemplateRepository:
    def __init__(self, rows: List[TemplateRow]) -> None:
        self.rows = rows
        self.calls = []

    def templates_for_contract(self, contract_id: str, week_start_day: int = 7) -> List[TemplateRow]:
        self.calls.append((contract_id, week_start_day))
        return list(self.rows)


@pytest.mark.parametrize(
    "value, expected",
    [("09:00", (9, 0)), ("9:5", (9, 5)), (" 7 ", (7, 0)), ("24:00", None), ("12:60", None), ("abc", None), (None, None)],
)
def test_parse_time(value, expected):
    assert parse_time(value) == expected


def test_normalize_time_pads_components():
    assert normalize_time("7:5") == "07:05"
    assert normalize_time("") is None


def test_week_day_order_follows_week_start():
    assert week_day_order(2) == [1, 2, 3, 4, 5, 6, 7]
    assert week_day_order(6) == [6, 7, 1, 2, 3, 4, 5]
    assert week_day_order(7) == [7, 1, 2, 3, 4, 5, 6]


def test_expand_row_skips_non_working_and_unparseable_days():
    row = _row(
        "1",
        days={
            1: ("08:00", "16:00"),
            2: ("00:00", "00:00"),
            3: (None, None),
            4: ("bad", "16:00"),
            5: ("22:00", "06:00"),
        },
    )
    templates = expand_row(row)
    assert [template.day_of_week for template in templates] == [1, 5]
    assert templates[1].start_time == "22:00"
    assert templates[0].day_name == "Monday"


def test_load_filters_creator_group_and_deleted_rows():
    repository = FakeTemplateRepository(
        [
            _row("1", week=1),
            _row("2", week=2),
            _row("3", week=3, creator="M2"),
            _row("4", week=3, group="G9"),
            _row("5", week=4, deleted=True),
            _row("6", week=4, group=None),
        ]
    )
    index = TemplateIndex.load(repository, "C1", 7, "M1", "G1")

    assert repository.calls == [("C1", 7)]
    assert index.rows_from_server == 6
    assert index.after_manager_filter == 4
    assert index.after_deleted_filter == 3
    assert index.week_numbers == [1, 2, 4]
    assert index.template_week_count == 3
    assert len(index.for_day(1, 1)) == 1
    assert index.for_day(1, 6) == []
    assert any("Items after deleted filter: 3" in line for line in index.filtering_details)


def test_load_with_no_matching_rows_is_empty():
    index = TemplateIndex.load(FakeTemplateRepository([_row("1", creator="M2")]), "C1", 7, "M1", "G1")
    assert index.is_empty
    assert index.template_week_count == 1


def test_for_day_returns_every_shift():
    index = TemplateIndex.load(
        FakeTemplateRepository([_row("1", shift=2), _row("2", shift=1)]), "C1", 7, "M1", "G1"
    )
    assert [template.shift_number for template in index.for_day(1, 3)] == [1, 2]
    assert index.shift_numbers == [1, 2]


def test_validate_reports_duplicates_and_long_lunch():
    index = TemplateIndex.load(
        FakeTemplateRepository(
            [
                _row("1", days={1: ("09:00", "10:00")}, lunch=90),
                _row("2", days={2: ("09:00", "17:00")}),
                _row("3", days={2: ("10:00", "18:00")}),
            ]
        ),
        "C1",
        7,
        "M1",
        "G1",
    )
    report = index.validate()
    assert not report["is_valid"]
    assert any("exceeds shift length" in issue for issue in report["issues"])
    assert any("defined 2 times" in issue for issue in report["issues"])
    assert report["statistics"]["total_templates"] == 3
