from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

WEEK_START_MONDAY = 2
WEEK_START_SATURDAY = 6
WEEK_START_SUNDAY = 7
WEEK_START_DAYS = {WEEK_START_MONDAY: "Monday", WEEK_START_SATURDAY: "Saturday", WEEK_START_SUNDAY: "Sunday"}
DEFAULT_WEEK_START_DAY = WEEK_START_SUNDAY
DAY_NAMES = ["", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
MISSING_IDS = {"", "0"}


def has_id(value: Optional[str]) -> bool:
    return value is not None and str(value).strip() not in MISSING_IDS


@dataclass(frozen=True)
class StaffMember:
    id: str
    name: str
    employee_id: str
    auto_schedule: bool = False
    deleted: bool = False


@dataclass(frozen=True)
class Contract:
    id: str
    template: str = ""
    contracted_hours: int = 0
    start_date: Optional[datetime.date] = None
    finish_date: Optional[datetime.date] = None
    deleted: bool = False
    staff_member_id: Optional[str] = None
    manager_id: Optional[str] = None
    group_id: Optional[str] = None


@dataclass(frozen=True)
class TemplateRow:
    """Weekly-table row as stored: one row per contract/week/shift with 7 start/end pairs."""

    id: str
    contract_id: str
    week_number: int
    shift_number: int
    lunch_minutes: int
    deleted: bool
    creator_id: Optional[str]
    group_id: Optional[str]
    days: Dict[int, tuple]


@dataclass(frozen=True)
class ScheduleTemplate:
    contract_id: str
    week_number: int
    shift_number: int
    day_of_week: int
    start_time: str
    end_time: str
    lunch_minutes: int
    deleted: bool = False
    row_id: Optional[str] = None

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week] if 1 <= self.day_of_week <= 7 else "Unknown"


@dataclass(frozen=True)
class Holiday:
    date: datetime.date
    title: str = ""


@dataclass(frozen=True)
class LeavePeriod:
    start_date: datetime.date
    end_date: Optional[datetime.date] = None
    type_of_leave: str = ""
    title: str = ""
    deleted: bool = False


@dataclass(frozen=True)
class ExistingRecord:
    id: str
    date: datetime.date
    deleted: bool = False
    checked: int = 0
    export_result: str = ""
    contract_id: Optional[str] = None


@dataclass(frozen=True)
class GeneratedRecord:
    date: datetime.date
    shift_start: datetime.datetime
    shift_end: datetime.datetime
    start_hours: int
    start_minutes: int
    end_hours: int
    end_minutes: int
    lunch_minutes: int
    contract_id: str
    contract_title: str
    week_number: int
    shift_number: int
    is_holiday: bool = False
    leave_type: Optional[str] = None

    @property
    def title(self) -> str:
        return f"Template={self.contract_id} Week={self.week_number} Shift={self.shift_number}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "date": self.date.isoformat(),
            "shift_start": self.shift_start.isoformat(),
            "shift_end": self.shift_end.isoformat(),
            "start": f"{self.start_hours:02d}:{self.start_minutes:02d}",
            "end": f"{self.end_hours:02d}:{self.end_minutes:02d}",
            "lunch_minutes": self.lunch_minutes,
            "contract_id": self.contract_id,
            "shift_number": self.shift_number,
            "holiday": self.is_holiday,
            "leave_type": self.leave_type,
        }


@dataclass
class FillParams:
    selected_date: datetime.date
    staff_member: StaffMember
    manager_id: Optional[str] = None
    group_id: Optional[str] = None
    week_start_day: int = DEFAULT_WEEK_START_DAY


# Dialog outcomes


@dataclass(frozen=True)
class EmptySchedule:
    kind: str = field(default="empty", init=False)


@dataclass(frozen=True)
class UnprocessedRecordsReplace:
    count: int
    kind: str = field(default="unprocessed_replace", init=False)


@dataclass(frozen=True)
class ProcessedRecordsBlock:
    processed_count: int
    total_count: int
    kind: str = field(default="processed_block", init=False)


DialogOutcome = Union[EmptySchedule, UnprocessedRecordsReplace, ProcessedRecordsBlock]


def outcome_to_dict(outcome: Optional[DialogOutcome]) -> Optional[Dict[str, Any]]:
    if outcome is None:
        return None
    if isinstance(outcome, UnprocessedRecordsReplace):
        return {"kind": outcome.kind, "count": outcome.count}
    if isinstance(outcome, ProcessedRecordsBlock):
        return {
            "kind": outcome.kind,
            "processed_count": outcome.processed_count,
            "total_count": outcome.total_count,
        }
    return {"kind": outcome.kind}


class FillState(str, Enum):
    IDLE = "idle"
    VALIDATING_PARAMS = "validating_params"
    ANALYZING_CONTRACTS = "analyzing_contracts"
    RESOLVING_TEMPLATES = "resolving_templates"
    CLASSIFYING_CONFLICTS = "classifying_conflicts"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    GENERATING = "generating"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class EligibilityResult:
    eligible: bool
    reason: str = ""
    contract_id: Optional[str] = None
    has_processed_records: bool = False
    outcome: Optional[DialogOutcome] = None


@dataclass
class FillCheckResult:
    requires_dialog: bool
    dialog_outcome: Optional[DialogOutcome]
    can_proceed: bool
    contract_id: Optional[str] = None
    message: str = ""


@dataclass
class SaveResult:
    success_count: int
    total_records: int
    errors: List[str] = field(default_factory=list)


@dataclass
class FillResult:
    success: bool
    message: str
    created_count: int = 0
    deleted_count: int = 0
    log_result: int = 1
    state: FillState = FillState.IDLE
    states: List[FillState] = field(default_factory=list)
    contract_id: Optional[str] = None
    outcome: Optional[DialogOutcome] = None
    analysis: Optional[Dict[str, Any]] = None


@dataclass
class AutoFillResult:
    success: bool
    message: str
    created_count: int = 0
    skipped: bool = False
    skip_reason: Optional[str] = None
    log_result: int = 1
