from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .analysis import AnalysisRecorder, DayInfo
from .calendar_index import HolidayLeaveIndex
from .periods import format_date_only, iter_days, month_period, week_and_day
from .templates import TemplateIndex, parse_time
from .types import DAY_NAMES, Contract, FillParams, GeneratedRecord, Holiday, LeavePeriod, ScheduleTemplate

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    records: List[GeneratedRecord]
    analysis: AnalysisRecorder
    skipped_days: List[datetime.date] = field(default_factory=list)


class RecordGenerator:
    """Turns one contract's weekly templates into dated records for a month."""

    def __init__(self, adjuster) -> None:
        self.adjuster = adjuster

    def generate(
        self,
        params: FillParams,
        contract: Contract,
        holidays: Iterable[Holiday],
        leaves: Iterable[LeavePeriod],
        templates: TemplateIndex,
        analysis: Optional[AnalysisRecorder] = None,
    ) -> GenerationResult:
        analysis = analysis or AnalysisRecorder()
        period = month_period(params.selected_date, contract.start_date, contract.finish_date)
        calendar_index = HolidayLeaveIndex(holidays, leaves)
        week_count = templates.template_week_count
        analysis.start_generation(period.first_day, period.last_day)
        logger.info(
            "Generating records for contract %s from %s to %s (%s week template(s), week start %s)",
            contract.id,
            format_date_only(period.first_day),
            format_date_only(period.last_day),
            week_count,
            params.week_start_day,
        )

        records: List[GeneratedRecord] = []
        skipped: List[datetime.date] = []
        for day in iter_days(period):
            position = week_and_day(day, period.start_of_month, params.week_start_day, week_count)
            day_templates = sorted(
                templates.for_day(position.template_week_number, position.day_number),
                key=lambda item: item.shift_number,
            )
            holiday = calendar_index.holiday_for(day)
            leave = calendar_index.leave_for(day)
            info = DayInfo(
                date=format_date_only(day),
                day_name=DAY_NAMES[position.day_number],
                calendar_week=position.calendar_week_number,
                template_week=position.template_week_number,
                template_found=bool(day_templates),
                shifts=len(day_templates),
                is_holiday=holiday is not None,
                is_leave=leave is not None,
                leave_type=leave.type_of_leave if leave else None,
            )
            if not day_templates:
                info.skip_reason = (
                    f"No template for week {position.template_week_number}, {info.day_name}"
                )
                skipped.append(day)
                analysis.add_day(info)
                continue
            info.working_hours = ", ".join(f"{item.start_time}-{item.end_time}" for item in day_templates)
            for template in day_templates:
                records.append(
                    self._build_record(
                        day,
                        template,
                        contract,
                        is_holiday=holiday is not None,
                        leave_type=leave.type_of_leave if leave else None,
                    )
                )
            analysis.add_day(info)

        analysis.finish_generation(len(records))
        logger.info("Generated %s record(s), skipped %s day(s)", len(records), len(skipped))
        return GenerationResult(records=records, analysis=analysis, skipped_days=skipped)

    def _build_record(
        self,
        day: datetime.date,
        template: ScheduleTemplate,
        contract: Contract,
        *,
        is_holiday: bool,
        leave_type: Optional[str],
    ) -> GeneratedRecord:
        start_hours, start_minutes = parse_time(template.start_time) or (0, 0)
        end_hours, end_minutes = parse_time(template.end_time) or (0, 0)
        adjusted_start = self.adjuster.adjust(start_hours, start_minutes, day)
        adjusted_end = self.adjuster.adjust(end_hours, end_minutes, day)
        end_day = day
        if (end_hours, end_minutes) < (start_hours, start_minutes):
            end_day = day + datetime.timedelta(days=1)
        return GeneratedRecord(
            date=day,
            shift_start=self.adjuster.to_absolute(day, start_hours, start_minutes),
            shift_end=self.adjuster.to_absolute(end_day, end_hours, end_minutes),
            start_hours=adjusted_start[0],
            start_minutes=adjusted_start[1],
            end_hours=adjusted_end[0],
            end_minutes=adjusted_end[1],
            lunch_minutes=template.lunch_minutes,
            contract_id=contract.id,
            contract_title=contract.template or "",
            week_number=template.week_number,
            shift_number=template.shift_number,
            is_holiday=is_holiday,
            leave_type=leave_type,
        )


def validate_records(records: List[GeneratedRecord]) -> Dict[str, Any]:
    issues: List[str] = []
    for index, record in enumerate(records):
        if record.date is None:
            issues.append(f"Record {index + 1}: missing date")
            continue
        if (record.start_hours, record.start_minutes) == (record.end_hours, record.end_minutes):
            issues.append(
                f"Record {index + 1} ({format_date_only(record.date)}): start and end times are equal"
            )
    return {"is_valid": not issues, "issues": issues, "total": len(records)}
