"""SQLAlchemy-backed repositories for the fill engine.

Rows are converted to the frozen entities of ``fill.types`` here and nowhere
else; storage failures surface as ``PlatformError``.
"""

from __future__ import annotations

import datetime
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from database import (
    DAY_FIELD_PREFIXES,
    ContractRow,
    HolidayRow,
    LeaveDayRow,
    ScheduleLogRow,
    SiteTimeZoneRow,
    StaffMemberRow,
    StaffRecordRow,
    WeeklyTimeTableRow,
    record_schedule_log,
    schedule_log_to_dict,
)
from fill.errors import PlatformError
from fill.periods import is_contract_active, month_bounds
from fill.types import (
    Contract,
    ExistingRecord,
    GeneratedRecord,
    Holiday,
    LeavePeriod,
    StaffMember,
    TemplateRow,
)
from settings import default_timezone, load_active_settings, resolve_local_timezone
from timezone_utils import TimeZoneAdjuster, TimeZoneDescriptor

logger = logging.getLogger(__name__)


def _str_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _int_id(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


class _Repository:
    def __init__(self, session_factory: Callable) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self, action: str) -> Iterator[Any]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("%s failed: %s", action, exc)
            raise PlatformError(f"{action} failed: {exc}", original=exc) from exc


class ContractRepository(_Repository):
    @staticmethod
    def _to_entity(row: ContractRow) -> Contract:
        return Contract(
            id=str(row.id),
            template=row.template or "",
            contracted_hours=int(row.contracted_hours or 0),
            start_date=row.start_date,
            finish_date=row.finish_date,
            deleted=bool(row.deleted),
            staff_member_id=row.employee_id,
            manager_id=row.manager_id,
            group_id=row.group_id,
        )

    def contracts_for_staff(self, employee_id: str, manager_id: str, group_id: str) -> List[Contract]:
        with self._session("Loading contracts") as session:
            stmt = (
                select(ContractRow)
                .where(
                    ContractRow.employee_id == str(employee_id),
                    ContractRow.manager_id == str(manager_id),
                    ContractRow.group_id == str(group_id),
                )
                .order_by(ContractRow.start_date, ContractRow.id)
            )
            return [self._to_entity(row) for row in session.scalars(stmt)]

    def active_contracts(
        self,
        employee_id: str,
        manager_id: str,
        group_id: str,
        month: datetime.date,
    ) -> List[Contract]:
        first, last = month_bounds(month)
        return [
            contract
            for contract in self.contracts_for_staff(employee_id, manager_id, group_id)
            if is_contract_active(contract, first, last)
        ]


class TemplateRepository(_Repository):
    @staticmethod
    def _to_entity(row: WeeklyTimeTableRow) -> TemplateRow:
        pairs = row.day_pairs()
        return TemplateRow(
            id=str(row.id),
            contract_id=str(row.contract_id),
            week_number=int(row.week_number or 1),
            shift_number=int(row.shift_number or 1),
            lunch_minutes=int(row.lunch_minutes or 0),
            deleted=bool(row.deleted),
            creator_id=row.creator_id,
            group_id=row.group_id,
            days={index + 1: pairs[prefix] for index, prefix in enumerate(DAY_FIELD_PREFIXES)},
        )

    def templates_for_contract(self, contract_id: str, week_start_day: int = 7) -> List[TemplateRow]:
        """Raw weekly rows, deleted ones included; scope filtering happens in the index."""
        contract_pk = _int_id(contract_id)
        if contract_pk is None:
            return []
        with self._session("Loading weekly templates") as session:
            stmt = (
                select(WeeklyTimeTableRow)
                .where(WeeklyTimeTableRow.contract_id == contract_pk)
                .order_by(WeeklyTimeTableRow.week_number, WeeklyTimeTableRow.shift_number, WeeklyTimeTableRow.id)
            )
            rows = [self._to_entity(row) for row in session.scalars(stmt)]
        logger.debug("Loaded %s weekly rows for contract %s (week start %s)", len(rows), contract_id, week_start_day)
        return rows


class HolidayRepository(_Repository):
    def holidays_for_month(self, month: datetime.date) -> List[Holiday]:
        first, last = month_bounds(month)
        with self._session("Loading holidays") as session:
            stmt = (
                select(HolidayRow)
                .where(HolidayRow.date >= first, HolidayRow.date <= last, HolidayRow.deleted == 0)
                .order_by(HolidayRow.date)
            )
            return [Holiday(date=row.date, title=row.title or "") for row in session.scalars(stmt)]


class LeaveRepository(_Repository):
    def leaves_for_month(
        self,
        month: datetime.date,
        employee_id: str,
        manager_id: str,
        group_id: str,
    ) -> List[LeavePeriod]:
        first, last = month_bounds(month)
        with self._session("Loading leave days") as session:
            stmt = (
                select(LeaveDayRow)
                .where(
                    LeaveDayRow.employee_id == str(employee_id),
                    LeaveDayRow.manager_id == str(manager_id),
                    LeaveDayRow.group_id == str(group_id),
                    LeaveDayRow.start_date <= last,
                    or_(LeaveDayRow.end_date.is_(None), LeaveDayRow.end_date >= first),
                )
                .order_by(LeaveDayRow.id)
            )
            return [
                LeavePeriod(
                    start_date=row.start_date,
                    end_date=row.end_date,
                    type_of_leave=row.type_of_leave or "",
                    title=row.title or "",
                    deleted=bool(row.deleted),
                )
                for row in session.scalars(stmt)
            ]


class RecordRepository(_Repository):
    def existing_records(
        self,
        employee_id: str,
        manager_id: str,
        group_id: str,
        first: datetime.date,
        last: datetime.date,
    ) -> List[ExistingRecord]:
        with self._session("Loading existing records") as session:
            stmt = (
                select(StaffRecordRow)
                .where(
                    StaffRecordRow.employee_id == str(employee_id),
                    StaffRecordRow.manager_id == str(manager_id),
                    StaffRecordRow.group_id == str(group_id),
                    StaffRecordRow.date >= first,
                    StaffRecordRow.date <= last,
                )
                .order_by(StaffRecordRow.date, StaffRecordRow.shift_number)
            )
            return [
                ExistingRecord(
                    id=str(row.id),
                    date=row.date,
                    deleted=bool(row.deleted),
                    checked=int(row.checked or 0),
                    export_result=row.export_result or "",
                    contract_id=row.contract_id,
                )
                for row in session.scalars(stmt)
            ]

    def create(self, record: GeneratedRecord, employee_id: str, manager_id: str, group_id: str) -> Optional[str]:
        with self._session("Saving schedule record") as session:
            row = StaffRecordRow(
                title=record.title,
                date=record.date,
                employee_id=str(employee_id),
                manager_id=str(manager_id),
                group_id=str(group_id),
                shift_start=record.shift_start,
                shift_end=record.shift_end,
                start_hours=record.start_hours,
                start_minutes=record.start_minutes,
                end_hours=record.end_hours,
                end_minutes=record.end_minutes,
                lunch_minutes=record.lunch_minutes,
                shift_number=record.shift_number,
                contract_id=record.contract_id,
                contract_title=record.contract_title,
                holiday=1 if record.is_holiday else 0,
                type_of_leave=record.leave_type,
            )
            session.add(row)
            session.commit()
            return _str_id(row.id)

    def mark_deleted(self, record_id: str) -> bool:
        pk = _int_id(record_id)
        if pk is None:
            return False
        with self._session("Deleting schedule record") as session:
            row = session.get(StaffRecordRow, pk)
            if row is None:
                return False
            row.deleted = 1
            session.commit()
            return True

    def records_for_staff(
        self,
        employee_id: str,
        first: datetime.date,
        last: datetime.date,
        *,
        include_deleted: bool = False,
    ) -> List[Dict[str, Any]]:
        with self._session("Loading schedule records") as session:
            stmt = select(StaffRecordRow).where(
                StaffRecordRow.employee_id == str(employee_id),
                StaffRecordRow.date >= first,
                StaffRecordRow.date <= last,
            )
            if not include_deleted:
                stmt = stmt.where(StaffRecordRow.deleted == 0)
            stmt = stmt.order_by(StaffRecordRow.date, StaffRecordRow.shift_number)
            return [
                {
                    "id": row.id,
                    "title": row.title,
                    "date": row.date.isoformat(),
                    "start": f"{row.start_hours:02d}:{row.start_minutes:02d}",
                    "end": f"{row.end_hours:02d}:{row.end_minutes:02d}",
                    "lunch_minutes": row.lunch_minutes,
                    "shift_number": row.shift_number,
                    "contract_id": row.contract_id,
                    "holiday": bool(row.holiday),
                    "type_of_leave": row.type_of_leave,
                    "checked": row.checked,
                    "export_result": row.export_result,
                    "deleted": bool(row.deleted),
                }
                for row in session.scalars(stmt)
            ]


class AuditSink(_Repository):
    """Writes and reads the ``schedule_logs`` audit trail."""

    def write_log(
        self,
        title: str,
        result: int,
        message: str,
        date: datetime.date,
        manager_id: Optional[str] = None,
        staff_member_id: Optional[str] = None,
        group_id: Optional[str] = None,
        contract_id: Optional[str] = None,
    ) -> Optional[str]:
        with self._session("Writing schedule log") as session:
            log = record_schedule_log(
                session,
                title,
                result,
                message,
                date,
                manager_id=_str_id(manager_id),
                staff_member_id=_str_id(staff_member_id),
                group_id=_str_id(group_id),
                contract_id=_str_id(contract_id),
            )
            return _str_id(log.id)

    def logs_for_staff(
        self,
        staff_member_id: str,
        manager_id: Optional[str] = None,
        group_id: Optional[str] = None,
        period: Optional[datetime.date] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        with self._session("Loading schedule logs") as session:
            stmt = select(ScheduleLogRow).where(ScheduleLogRow.staff_member_id == str(staff_member_id))
            if manager_id is not None:
                stmt = stmt.where(ScheduleLogRow.manager_id == str(manager_id))
            if group_id is not None:
                stmt = stmt.where(ScheduleLogRow.group_id == str(group_id))
            if period is not None:
                first, last = month_bounds(period)
                stmt = stmt.where(ScheduleLogRow.date >= first, ScheduleLogRow.date <= last)
            stmt = stmt.order_by(ScheduleLogRow.created_at.desc(), ScheduleLogRow.id.desc()).limit(limit)
            return [schedule_log_to_dict(log) for log in session.scalars(stmt)]

    def latest_log(
        self,
        staff_member_id: str,
        manager_id: Optional[str] = None,
        group_id: Optional[str] = None,
        period: Optional[datetime.date] = None,
    ) -> Optional[Dict[str, Any]]:
        logs = self.logs_for_staff(staff_member_id, manager_id, group_id, period, limit=1)
        return logs[0] if logs else None


class TimeZoneRepository(_Repository):
    def __init__(self, session_factory: Callable, default: Optional[TimeZoneDescriptor] = None) -> None:
        super().__init__(session_factory)
        self._default = default or TimeZoneDescriptor()

    def site_timezone(self) -> TimeZoneDescriptor:
        with self._session("Loading site timezone") as session:
            row = session.scalars(select(SiteTimeZoneRow).order_by(SiteTimeZoneRow.id)).first()
            if row is None:
                logger.warning("No site timezone configured; using %s", self._default.description)
                return self._default
            return TimeZoneDescriptor(
                description=row.description or "",
                id=int(row.zone_id or 0),
                bias=int(row.bias or 0),
                daylight_bias=int(row.daylight_bias or 0),
                standard_bias=int(row.standard_bias or 0),
            )


class StaffRepository(_Repository):
    @staticmethod
    def _to_entity(row: StaffMemberRow) -> StaffMember:
        return StaffMember(
            id=str(row.id),
            name=row.name,
            employee_id=row.employee_id,
            auto_schedule=bool(row.auto_schedule),
            deleted=bool(row.deleted),
        )

    def staff_for_group(self, manager_id: str, group_id: str) -> List[StaffMember]:
        with self._session("Loading staff members") as session:
            stmt = (
                select(StaffMemberRow)
                .where(
                    StaffMemberRow.manager_id == str(manager_id),
                    StaffMemberRow.group_id == str(group_id),
                    StaffMemberRow.deleted == 0,
                )
                .order_by(StaffMemberRow.name, StaffMemberRow.id)
            )
            return [self._to_entity(row) for row in session.scalars(stmt)]

    def get(self, staff_member_id: str) -> Optional[StaffMember]:
        pk = _int_id(staff_member_id)
        if pk is None:
            return None
        with self._session("Loading staff member") as session:
            row = session.get(StaffMemberRow, pk)
            return self._to_entity(row) if row is not None else None


@dataclass
class FillServices:
    contracts: ContractRepository
    templates: TemplateRepository
    holidays: HolidayRepository
    leaves: LeaveRepository
    records: RecordRepository
    audit: AuditSink
    timezones: TimeZoneRepository
    staff: StaffRepository
    adjuster: TimeZoneAdjuster


def build_fill_services(session_factory: Callable, settings: Optional[Dict[str, Any]] = None) -> FillServices:
    """Wire every repository against one session factory."""
    if settings is None:
        settings = load_active_settings(session_factory)
    timezones = TimeZoneRepository(session_factory, default_timezone(settings))
    return FillServices(
        contracts=ContractRepository(session_factory),
        templates=TemplateRepository(session_factory),
        holidays=HolidayRepository(session_factory),
        leaves=LeaveRepository(session_factory),
        records=RecordRepository(session_factory),
        audit=AuditSink(session_factory),
        timezones=timezones,
        staff=StaffRepository(session_factory),
        adjuster=TimeZoneAdjuster(timezones.site_timezone, resolve_local_timezone(settings)),
    )
