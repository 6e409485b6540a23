"""Step-by-step analysis of a fill run, rendered into the audit log message."""

from __future__ import annotations

import datetime
import json
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .periods import describe_chaining
from .types import Contract, WEEK_START_DAYS

LEVEL_SUMMARY = "summary"
LEVEL_DETAILED = "detailed"
LEVEL_DEBUG = "debug"


@dataclass
class ContractsAnalysis:
    total_found: int
    active_in_period: int
    selected_contract_id: Optional[str]
    selected_contract_name: str
    selection_reason: str


@dataclass
class TemplatesAnalysis:
    contract_id: str
    contract_name: str
    total_items_from_server: int = 0
    after_manager_filter: int = 0
    after_deleted_filter: int = 0
    final_templates_count: int = 0
    weeks_in_schedule: List[int] = field(default_factory=list)
    shifts_available: List[int] = field(default_factory=list)
    number_of_week_templates: int = 0
    week_start_day: int = 7
    filtering_details: List[str] = field(default_factory=list)

    @property
    def week_start_day_name(self) -> str:
        return WEEK_START_DAYS.get(self.week_start_day, "Sunday")


@dataclass
class DayInfo:
    date: str
    day_name: str
    calendar_week: int
    template_week: int
    template_found: bool
    shifts: int = 0
    is_holiday: bool = False
    is_leave: bool = False
    leave_type: Optional[str] = None
    working_hours: str = ""
    skip_reason: str = ""


@dataclass
class GenerationAnalysis:
    total_days_in_period: int
    days_generated: int = 0
    days_skipped: int = 0
    holidays_detected: int = 0
    leaves_detected: int = 0
    records_generated: int = 0
    daily_info: List[DayInfo] = field(default_factory=list)
    weekly_stats: Dict[int, Dict[str, int]] = field(default_factory=OrderedDict)

    @property
    def success_rate(self) -> float:
        if self.total_days_in_period <= 0:
            return 0.0
        return round(self.days_generated / self.total_days_in_period * 100, 2)


class AnalysisRecorder:
    def __init__(self) -> None:
        self.contracts: Optional[ContractsAnalysis] = None
        self.templates: Optional[TemplatesAnalysis] = None
        self.generation: Optional[GenerationAnalysis] = None
        self.deleted_records = 0
        self.saved_records = 0
        self.total_records = 0
        self.save_errors: List[str] = []

    @property
    def has_data(self) -> bool:
        return any((self.contracts, self.templates, self.generation))

    def record_contracts(
        self,
        all_contracts: List[Contract],
        active_contracts: List[Contract],
        selected: Optional[Contract],
    ) -> ContractsAnalysis:
        if len(active_contracts) == 1:
            reason = "Only one active contract found for the period"
        elif len(active_contracts) > 1:
            reason = f"Selected first of {len(active_contracts)} active contracts"
        else:
            reason = "No active contracts found"
        self.contracts = ContractsAnalysis(
            total_found=len(all_contracts),
            active_in_period=len(active_contracts),
            selected_contract_id=selected.id if selected else None,
            selected_contract_name=(selected.template if selected else "") or "No name",
            selection_reason=reason,
        )
        return self.contracts

    def record_templates(self, contract: Contract, index, week_start_day: int) -> TemplatesAnalysis:
        self.templates = TemplatesAnalysis(
            contract_id=contract.id,
            contract_name=contract.template or "No name",
            total_items_from_server=index.rows_from_server,
            after_manager_filter=index.after_manager_filter,
            after_deleted_filter=index.after_deleted_filter,
            final_templates_count=len(index.templates),
            weeks_in_schedule=index.week_numbers,
            shifts_available=index.shift_numbers,
            number_of_week_templates=len(index.week_numbers),
            week_start_day=week_start_day,
            filtering_details=list(index.filtering_details),
        )
        return self.templates

    def start_generation(self, first_day: datetime.date, last_day: datetime.date) -> GenerationAnalysis:
        self.generation = GenerationAnalysis(total_days_in_period=(last_day - first_day).days + 1)
        return self.generation

    def add_day(self, info: DayInfo) -> None:
        if self.generation is None:
            return
        generation = self.generation
        generation.daily_info.append(info)
        stats = generation.weekly_stats.setdefault(info.calendar_week, {"total": 0, "generated": 0, "skipped": 0})
        stats["total"] += 1
        if info.template_found:
            stats["generated"] += 1
            generation.days_generated += 1
        else:
            stats["skipped"] += 1
            generation.days_skipped += 1
        if info.is_holiday:
            generation.holidays_detected += 1
        if info.is_leave:
            generation.leaves_detected += 1

    def finish_generation(self, records_generated: int) -> None:
        if self.generation is not None:
            self.generation.records_generated = records_generated

    def record_save(self, saved: int, total: int, errors: List[str]) -> None:
        self.saved_records = saved
        self.total_records = total
        self.save_errors = list(errors)

    def validate(self) -> Dict[str, Any]:
        issues: List[str] = []
        warnings: List[str] = []
        if self.contracts and self.contracts.total_found < self.contracts.active_in_period:
            issues.append("Active contracts count exceeds total contracts count")
        if self.templates and self.templates.number_of_week_templates == 0 and self.templates.final_templates_count:
            issues.append("No week templates found despite having final templates")
        if self.generation:
            processed = self.generation.days_generated + self.generation.days_skipped
            if processed != self.generation.total_days_in_period:
                issues.append(
                    f"Processed days ({processed}) doesn't match total days "
                    f"({self.generation.total_days_in_period})"
                )
        return {"is_valid": not issues, "issues": issues, "warnings": warnings}

    def report(self, level: str = LEVEL_DETAILED) -> str:
        lines: List[str] = ["=== FILL GENERATION ANALYSIS ===", ""]
        if self.contracts:
            lines.append("--- CONTRACTS ---")
            lines.append(f"Total contracts found: {self.contracts.total_found}")
            lines.append(f"Active in period: {self.contracts.active_in_period}")
            lines.append(
                f"Selected contract: {self.contracts.selected_contract_id} - {self.contracts.selected_contract_name}"
            )
            lines.append(f"Selection reason: {self.contracts.selection_reason}")
            lines.append("")
        if self.templates:
            templates = self.templates
            lines.append("--- TEMPLATES ---")
            lines.append(f"Contract: {templates.contract_name} ({templates.contract_id})")
            if level != LEVEL_SUMMARY:
                lines.append(f"Rows from server: {templates.total_items_from_server}")
                lines.append(f"After manager filter: {templates.after_manager_filter}")
                lines.append(f"After deleted filter: {templates.after_deleted_filter}")
            lines.append(f"Final templates: {templates.final_templates_count}")
            lines.append(f"Weeks in schedule: {templates.weeks_in_schedule}")
            lines.append(f"Shifts available: {templates.shifts_available}")
            lines.append(f"Week chaining: {describe_chaining(templates.number_of_week_templates)}")
            lines.append(f"Week start day: {templates.week_start_day_name}")
            lines.append("")
            if level == LEVEL_DEBUG and templates.filtering_details:
                lines.append("--- FILTERING DETAILS ---")
                lines.extend(templates.filtering_details)
                lines.append("")
        if self.generation:
            generation = self.generation
            lines.append("--- GENERATION ---")
            lines.append(f"Total days in period: {generation.total_days_in_period}")
            lines.append(f"Days generated: {generation.days_generated}")
            lines.append(f"Days skipped: {generation.days_skipped}")
            lines.append(f"Holidays detected: {generation.holidays_detected}")
            lines.append(f"Leaves detected: {generation.leaves_detected}")
            lines.append(f"Records generated: {generation.records_generated}")
            lines.append(f"Success rate: {generation.success_rate}%")
            lines.append("")
            if level != LEVEL_SUMMARY and generation.weekly_stats:
                lines.append("--- WEEKLY BREAKDOWN ---")
                for week, stats in generation.weekly_stats.items():
                    lines.append(
                        f"Week {week}: {stats['generated']}/{stats['total']} generated, {stats['skipped']} skipped"
                    )
                lines.append("")
            if level == LEVEL_DEBUG:
                lines.append("--- DAILY DETAILS ---")
                for day in generation.daily_info:
                    status = "Generated" if day.template_found else "Skipped"
                    if day.is_holiday:
                        status += " (Holiday)"
                    if day.is_leave:
                        status += f" (Leave: {day.leave_type})"
                    lines.append(f"{day.date} {day.day_name}: {status}")
                    if day.skip_reason:
                        lines.append(f"  Reason: {day.skip_reason}")
                    if day.working_hours:
                        lines.append(f"  Hours: {day.working_hours}")
                lines.append("")
        if self.deleted_records:
            lines.append(f"Deleted existing records: {self.deleted_records}")
        if self.total_records:
            lines.append(f"Saved records: {self.saved_records}/{self.total_records}")
            for error in self.save_errors[:10]:
                lines.append(f"  {error}")
        lines.append("=== END OF REPORT ===")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        generation = None
        if self.generation:
            generation = asdict(self.generation)
            generation["weekly_stats"] = {str(key): value for key, value in self.generation.weekly_stats.items()}
            generation["success_rate"] = self.generation.success_rate
        templates = None
        if self.templates:
            templates = asdict(self.templates)
            templates["week_start_day_name"] = self.templates.week_start_day_name
        return {
            "contracts": asdict(self.contracts) if self.contracts else None,
            "templates": templates,
            "generation": generation,
            "deleted_records": self.deleted_records,
            "saved_records": self.saved_records,
            "total_records": self.total_records,
            "save_errors": list(self.save_errors),
        }

    def to_json(self) -> str:
        payload = self.to_dict()
        payload["timestamp"] = datetime.datetime.now(datetime.timezone.utc).isoformat()
        return json.dumps(payload, indent=2)
