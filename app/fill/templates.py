from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .periods import describe_chaining
from .types import DAY_NAMES, ScheduleTemplate, TemplateRow, has_id

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^\s*(?P<hours>\d{1,2})(?::(?P<minutes>\d{1,2}))?\s*$")
NON_WORKING = ("00:00", "00:00")


def parse_time(value: Optional[str]) -> Optional[Tuple[int, int]]:
    if value is None:
        return None
    match = TIME_PATTERN.match(str(value))
    if not match:
        return None
    hours = int(match.group("hours"))
    minutes = int(match.group("minutes") or 0)
    if hours > 23 or minutes > 59:
        return None
    return hours, minutes


def normalize_time(value: Optional[str]) -> Optional[str]:
    parsed = parse_time(value)
    if parsed is None:
        return None
    return f"{parsed[0]:02d}:{parsed[1]:02d}"


def week_day_order(week_start_day: int) -> List[int]:
    """Day numbers (1=Monday) in display order for the configured week start."""
    first = {2: 1, 6: 6}.get(week_start_day, 7)
    return [((first - 1 + offset) % 7) + 1 for offset in range(7)]


def expand_row(row: TemplateRow, week_start_day: int = 7) -> List[ScheduleTemplate]:
    templates: List[ScheduleTemplate] = []
    for day in week_day_order(week_start_day):
        start_raw, end_raw = row.days.get(day, (None, None))
        start = normalize_time(start_raw)
        end = normalize_time(end_raw)
        if start is None or end is None:
            continue
        if (start, end) == NON_WORKING:
            continue
        templates.append(
            ScheduleTemplate(
                contract_id=row.contract_id,
                week_number=row.week_number or 1,
                shift_number=row.shift_number or 1,
                day_of_week=day,
                start_time=start,
                end_time=end,
                lunch_minutes=max(0, int(row.lunch_minutes or 0)),
                deleted=row.deleted,
                row_id=row.id,
            )
        )
    return templates


class TemplateIndex:
    """Active weekly templates for one contract, indexed by (week, day)."""

    def __init__(
        self,
        templates: Iterable[ScheduleTemplate],
        filtering_details: Optional[List[str]] = None,
        row_weeks: Optional[Iterable[int]] = None,
    ) -> None:
        self.templates: List[ScheduleTemplate] = sorted(
            templates, key=lambda item: (item.week_number, item.day_of_week, item.shift_number)
        )
        self.by_week_and_day: Dict[Tuple[int, int], List[ScheduleTemplate]] = defaultdict(list)
        for template in self.templates:
            self.by_week_and_day[(template.week_number, template.day_of_week)].append(template)
        self.filtering_details: List[str] = list(filtering_details or [])
        # Week numbers of the source rows, including weeks made only of days off.
        if row_weeks is None:
            row_weeks = (template.week_number for template in self.templates)
        self._week_numbers: List[int] = sorted(set(row_weeks))
        self.rows_from_server = 0
        self.after_manager_filter = 0
        self.after_deleted_filter = 0

    @classmethod
    def load(
        cls,
        repository,
        contract_id: str,
        week_start_day: int,
        manager_id: Optional[str],
        group_id: Optional[str],
    ) -> "TemplateIndex":
        rows: List[TemplateRow] = list(repository.templates_for_contract(contract_id, week_start_day))
        details = [
            f"Contract ID: {contract_id}",
            f"Manager ID: {manager_id or 'N/A'}",
            f"Group ID: {group_id or 'N/A'}",
            f"Total items from server: {len(rows)}",
        ]
        scoped = [row for row in rows if cls._in_scope(row, manager_id, group_id)]
        details.append(f"Items after creator filter: {len(scoped)} (filtered out {len(rows) - len(scoped)})")
        active = [row for row in scoped if not row.deleted]
        details.append(f"Items after deleted filter: {len(active)} (filtered out {len(scoped) - len(active)})")
        templates: List[ScheduleTemplate] = []
        for row in active:
            templates.extend(expand_row(row, week_start_day))
        details.append(f"Day templates with working time: {len(templates)}")
        index = cls(templates, details, row_weeks=[row.week_number or 1 for row in active])
        index.rows_from_server = len(rows)
        index.after_manager_filter = len(scoped)
        index.after_deleted_filter = len(active)
        if index.is_empty:
            logger.warning("No active templates for contract %s", contract_id)
        else:
            index.filtering_details.append(f"Weeks in schedule: {index.week_numbers}")
            index.filtering_details.append(f"Week chaining logic: {describe_chaining(index.template_week_count)}")
        return index

    @staticmethod
    def _in_scope(row: TemplateRow, manager_id: Optional[str], group_id: Optional[str]) -> bool:
        if str(row.creator_id or "0") != str(manager_id or "0"):
            return False
        if has_id(row.group_id) and has_id(group_id) and str(row.group_id) != str(group_id):
            return False
        return True

    @property
    def is_empty(self) -> bool:
        return not self.templates

    @property
    def week_numbers(self) -> List[int]:
        return list(self._week_numbers)

    @property
    def shift_numbers(self) -> List[int]:
        return sorted({template.shift_number for template in self.templates})

    @property
    def template_week_count(self) -> int:
        return len(self.week_numbers) or 1

    def for_day(self, week_number: int, day_number: int) -> List[ScheduleTemplate]:
        return list(self.by_week_and_day.get((week_number, day_number), []))

    def validate(self) -> Dict[str, Any]:
        issues: List[str] = []
        seen: Dict[Tuple[int, int, int], int] = defaultdict(int)
        for template in self.templates:
            seen[(template.week_number, template.day_of_week, template.shift_number)] += 1
            if not 1 <= template.day_of_week <= 7:
                issues.append(f"Unknown day number {template.day_of_week} in week {template.week_number}")
                continue
            start = parse_time(template.start_time)
            end = parse_time(template.end_time)
            if start and end:
                length = (end[0] * 60 + end[1]) - (start[0] * 60 + start[1])
                if length <= 0:
                    length += 24 * 60
                if template.lunch_minutes >= length:
                    issues.append(
                        f"Week {template.week_number} {DAY_NAMES[template.day_of_week]} shift "
                        f"{template.shift_number}: lunch {template.lunch_minutes}m exceeds shift length"
                    )
        for (week, day, shift), count in sorted(seen.items()):
            if count > 1:
                issues.append(f"Week {week} day {day} shift {shift} defined {count} times")
        return {
            "is_valid": not issues,
            "issues": issues,
            "statistics": {
                "total_templates": len(self.templates),
                "unique_weeks": len(self.week_numbers),
                "unique_shifts": len(self.shift_numbers),
                "unique_days": len({template.day_of_week for template in self.templates}),
            },
        }
