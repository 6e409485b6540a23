from __future__ import annotations

import datetime
import sys
from pathlib import Path
from typing import Dict, List

import pytest
from sqlalchemy import create_engine, select, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database as db  # noqa: E402
from database import (  # noqa: E402
    Base,
    ContractRow,
    HolidayRow,
    LeaveDayRow,
    ScheduleLogRow,
    SiteTimeZoneRow,
    StaffMemberRow,
    StaffRecordRow,
    WeeklyTimeTableRow,
)
from fill.errors import PersistenceError, ValidationError  # noqa: E402
from fill.service import FillOrchestrator, log_title, validate_params  # noqa: E402
from fill.types import (  # noqa: E402
    EmptySchedule,
    FillParams,
    FillState,
    ProcessedRecordsBlock,
    StaffMember,
    UnprocessedRecordsReplace,
)
from repositories import build_fill_services  # noqa: E402
from settings import load_active_settings  # noqa: E402

APRIL = datetime.date(2024, 4, 1)
WORKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")


@pytest.fixture()
def memory_db(monkeypatch):
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Session = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(db, "SessionLocal", Session)
    Base.metadata.create_all(engine)
    yield Session
    engine.dispose()


def _weekly_row(contract_id: int, week: int, start: str, end: str, *, creator: str = "M1") -> WeeklyTimeTableRow:
    row = WeeklyTimeTableRow(
        contract_id=contract_id,
        week_number=week,
        shift_number=1,
        lunch_minutes=30,
        creator_id=creator,
        group_id="G1",
    )
    for day in WORKDAYS:
        setattr(row, f"{day}_start", start)
        setattr(row, f"{day}_end", end)
    return row


def _seed(Session, *, creator: str = "M1", with_contract: bool = True) -> Dict[str, str]:
    """Two-week alternating templates, a holiday on the third Monday and leave on the 10th-12th."""
    with Session() as session:
        staff = StaffMemberRow(name="Alex Nguyen", employee_id="E1", manager_id="M1", group_id="G1", auto_schedule=1)
        session.add(staff)
        session.add(SiteTimeZoneRow(description="(UTC+01:00) Amsterdam", zone_id=4, bias=-60))
        session.add(HolidayRow(date=datetime.date(2024, 4, 15), title="Spring holiday"))
        session.add(
            LeaveDayRow(
                employee_id="E1",
                manager_id="M1",
                group_id="G1",
                start_date=datetime.date(2024, 4, 10),
                end_date=datetime.date(2024, 4, 12),
                type_of_leave="Annual",
                title="Vacation",
            )
        )
        contract_id = None
        if with_contract:
            contract = ContractRow(
                template="Full time",
                contracted_hours=40,
                start_date=datetime.date(2023, 1, 1),
                employee_id="E1",
                manager_id="M1",
                group_id="G1",
            )
            session.add(contract)
            session.flush()
            session.add(_weekly_row(contract.id, 1, "08:00", "16:00", creator=creator))
            session.add(_weekly_row(contract.id, 2, "12:00", "20:00", creator=creator))
            contract_id = str(contract.id)
        session.commit()
        return {"staff_id": str(staff.id), "contract_id": contract_id}


def _orchestrator(Session, **overrides):
    settings = load_active_settings(None)
    settings.update({"record_pause_ms": 5, "local_timezone": "UTC"})
    settings.update(overrides)
    sleeps: List[float] = []
    orchestrator = FillOrchestrator(build_fill_services(Session, settings), settings, sleep=sleeps.append)
    return orchestrator, sleeps


def _params(auto: bool = True, **kwargs) -> FillParams:
    values = dict(
        selected_date=APRIL,
        staff_member=StaffMember(id="1", name="Alex Nguyen", employee_id="E1", auto_schedule=auto),
        manager_id="M1",
        group_id="G1",
        week_start_day=7,
    )
    values.update(kwargs)
    return FillParams(**values)


def _logs(Session) -> List[ScheduleLogRow]:
    with Session() as session:
        return list(session.scalars(select(ScheduleLogRow).order_by(ScheduleLogRow.id)))


def _live_records(Session) -> List[StaffRecordRow]:
    with Session() as session:
        stmt = select(StaffRecordRow).where(StaffRecordRow.deleted == 0).order_by(StaffRecordRow.date)
        return list(session.scalars(stmt))


def test_fill_empty_month_creates_records(memory_db):
    _seed(memory_db)
    orchestrator, sleeps = _orchestrator(memory_db)

    result = orchestrator.perform_fill(_params())

    assert result.success, result.message
    assert result.created_count == 22
    assert result.deleted_count == 0
    assert result.log_result == 2
    assert result.states == [
        FillState.IDLE,
        FillState.VALIDATING_PARAMS,
        FillState.ANALYZING_CONTRACTS,
        FillState.RESOLVING_TEMPLATES,
        FillState.CLASSIFYING_CONFLICTS,
        FillState.GENERATING,
        FillState.PERSISTING,
        FillState.DONE,
    ]
    assert sleeps == [0.005] * 21
    assert result.analysis["generation"]["holidays_detected"] == 1
    assert result.analysis["generation"]["leaves_detected"] == 3

    records = {row.date.day: row for row in _live_records(memory_db)}
    assert len(records) == 22
    assert (records[1].start_hours, records[1].end_hours) == (9, 17)
    assert (records[8].start_hours, records[8].end_hours) == (13, 21)
    assert records[15].holiday == 1
    assert [day for day, row in sorted(records.items()) if row.type_of_leave] == [10, 11, 12]

    logs = _logs(memory_db)
    assert len(logs) == 1
    assert logs[0].result == 2
    assert logs[0].title == "Fill Operation - Alex Nguyen (01.04.2024)"
    assert "Spring holiday" in logs[0].message
    assert "=== FILL GENERATION ANALYSIS ===" in logs[0].message


def test_existing_unprocessed_records_wait_for_confirmation(memory_db):
    _seed(memory_db)
    orchestrator, _ = _orchestrator(memory_db)
    orchestrator.perform_fill(_params())

    waiting = orchestrator.perform_fill(_params())
    assert not waiting.success
    assert waiting.state == FillState.AWAITING_CONFIRMATION
    assert waiting.outcome == UnprocessedRecordsReplace(count=22)
    assert waiting.log_result == 3
    assert len(_logs(memory_db)) == 1

    replaced = orchestrator.perform_fill(_params(), replace_existing=True)
    assert replaced.success
    assert replaced.deleted_count == 22
    assert replaced.created_count == 22
    assert len(_live_records(memory_db)) == 22
    assert "Replaced 22 existing record(s)." in replaced.message


def test_processed_records_block_the_fill(memory_db):
    _seed(memory_db)
    orchestrator, _ = _orchestrator(memory_db)
    orchestrator.perform_fill(_params())
    with memory_db() as session:
        first = session.scalars(select(StaffRecordRow).order_by(StaffRecordRow.id)).first()
        session.execute(update(StaffRecordRow).where(StaffRecordRow.id == first.id).values(checked=1))
        session.commit()

    result = orchestrator.perform_fill(_params(), replace_existing=True)
    assert not result.success
    assert result.state == FillState.FAILED
    assert result.log_result == 3
    assert result.outcome == ProcessedRecordsBlock(processed_count=1, total_count=22)
    assert _logs(memory_db)[-1].result == 3
    assert len(_live_records(memory_db)) == 22

    eligibility = orchestrator.check_eligibility(_params())
    assert not eligibility.eligible
    assert eligibility.has_processed_records

    check = orchestrator.check_for_fill(_params())
    assert check.requires_dialog
    assert not check.can_proceed


def test_check_for_fill_on_empty_month(memory_db):
    ids = _seed(memory_db)
    orchestrator, _ = _orchestrator(memory_db)
    check = orchestrator.check_for_fill(_params())
    assert not check.requires_dialog
    assert check.can_proceed
    assert check.dialog_outcome == EmptySchedule()
    assert check.contract_id == ids["contract_id"]
    assert orchestrator.check_eligibility(_params()).eligible


def test_missing_contract_is_logged_as_error(memory_db):
    _seed(memory_db, with_contract=False)
    orchestrator, _ = _orchestrator(memory_db)
    result = orchestrator.perform_fill(_params())
    assert not result.success
    assert result.states[-2:] == [FillState.ANALYZING_CONTRACTS, FillState.FAILED]
    assert "No active contracts found" in result.message
    logs = _logs(memory_db)
    assert len(logs) == 1 and logs[0].result == 1


def test_templates_of_other_managers_are_ignored(memory_db):
    _seed(memory_db, creator="M2")
    orchestrator, _ = _orchestrator(memory_db)
    result = orchestrator.perform_fill(_params())
    assert not result.success
    assert "No active weekly templates" in result.message
    assert FillState.RESOLVING_TEMPLATES in result.states
    assert _live_records(memory_db) == []


def test_invalid_parameters_fail_without_log(memory_db):
    _seed(memory_db)
    orchestrator, _ = _orchestrator(memory_db)
    result = orchestrator.perform_fill(_params(manager_id="", week_start_day=3))
    assert not result.success
    assert "Manager id is required." in result.message
    assert "Unsupported week start day 3." in result.message
    assert _logs(memory_db) == []

    with pytest.raises(ValidationError) as excinfo:
        validate_params(_params(group_id="0"))
    assert excinfo.value.errors == ["Group id is required."]


def test_skip_policy_drops_holiday_and_leave_days(memory_db):
    _seed(memory_db)
    orchestrator, _ = _orchestrator(memory_db, skip_holidays=True, skip_leave_days=True)
    result = orchestrator.perform_fill(_params())
    assert result.created_count == 18


def test_failed_writes_are_counted(memory_db, monkeypatch):
    _seed(memory_db)
    orchestrator, _ = _orchestrator(memory_db)
    original = orchestrator.services.records.create
    calls = {"n": 0}

    def flaky_create(record, *args):
        calls["n"] += 1
        if calls["n"] == 3:
            raise PersistenceError("disk full", calls["n"] - 1)
        return original(record, *args)

    monkeypatch.setattr(orchestrator.services.records, "create", flaky_create)
    result = orchestrator.perform_fill(_params())
    assert result.success
    assert result.created_count == 21
    assert result.analysis["save_errors"] == ["disk full"]


def test_auto_fill_skips_disabled_and_processed_staff(memory_db):
    _seed(memory_db)
    orchestrator, _ = _orchestrator(memory_db)

    disabled = orchestrator.perform_auto_fill(_params(auto=False))
    assert disabled.skipped and disabled.skip_reason == "auto_schedule_disabled"
    assert _logs(memory_db) == []

    created = orchestrator.perform_auto_fill(_params())
    assert created.success and created.created_count == 22

    # Unprocessed records are replaced without a dialog in auto mode.
    again = orchestrator.perform_auto_fill(_params())
    assert again.success and again.created_count == 22
    assert len(_live_records(memory_db)) == 22

    with memory_db() as session:
        session.execute(update(StaffRecordRow).values(export_result="Exported"))
        session.commit()
    blocked = orchestrator.perform_auto_fill(_params())
    assert blocked.skipped and blocked.skip_reason == "processed_records"
    assert blocked.log_result == 3
    assert "AUTO FILL OPERATION" in _logs(memory_db)[-1].message


def test_user_refusal_is_logged_as_info(memory_db):
    ids = _seed(memory_db)
    orchestrator, _ = _orchestrator(memory_db)
    log_id = orchestrator.log_user_refusal(_params(), UnprocessedRecordsReplace(count=4), ids["contract_id"])
    logs = _logs(memory_db)
    assert log_id == str(logs[0].id)
    assert logs[0].result == 3
    assert logs[0].contract_id == ids["contract_id"]
    assert "User cancelled" in logs[0].message
    assert logs[0].title == log_title(_params())
