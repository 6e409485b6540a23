from __future__ import annotations

import datetime
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker

from fill.errors import RESULT_ERROR, RESULT_INFO, RESULT_SUCCESS


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
FILL_DATABASE_URL = os.environ.get("FILL_DATABASE_URL") or f"sqlite:///{(DATA_DIR / 'fill.db').as_posix()}"
LOG_RESULT_CHOICES = {RESULT_ERROR, RESULT_SUCCESS, RESULT_INFO}
DAY_FIELD_PREFIXES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for every table living in fill.db."""

    pass


class StaffMemberRow(Base):
    __tablename__ = "staff_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    employee_id: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    manager_id: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    group_id: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    auto_schedule: Mapped[bool] = mapped_column(Integer, nullable=False, default=0)
    deleted: Mapped[bool] = mapped_column(Integer, nullable=False, default=0)


class ContractRow(Base):
    __tablename__ = "contracts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    contracted_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    finish_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    deleted: Mapped[bool] = mapped_column(Integer, nullable=False, default=0)
    employee_id: Mapped[str] = mapped_column(String(40), nullable=False)
    manager_id: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    group_id: Mapped[str] = mapped_column(String(40), nullable=False, default="")

    weekly_rows: Mapped[List["WeeklyTimeTableRow"]] = relationship(
        back_populates="contract", cascade="all, delete-orphan"
    )


class WeeklyTimeTableRow(Base):
    """One template row: contract x week x shift with a start/end pair per weekday."""

    __tablename__ = "weekly_time_tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contract_id: Mapped[int] = mapped_column(ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False)
    week_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    shift_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    lunch_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    deleted: Mapped[bool] = mapped_column(Integer, nullable=False, default=0)
    creator_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    group_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    monday_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    monday_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    tuesday_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    tuesday_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    wednesday_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    wednesday_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    thursday_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    thursday_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    friday_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    friday_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    saturday_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    saturday_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    sunday_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    sunday_end: Mapped[str | None] = mapped_column(String(5), nullable=True)

    contract: Mapped[ContractRow] = relationship(back_populates="weekly_rows")

    def day_pairs(self) -> Dict[str, tuple]:
        return {
            prefix: (getattr(self, f"{prefix}_start"), getattr(self, f"{prefix}_end"))
            for prefix in DAY_FIELD_PREFIXES
        }


class HolidayRow(Base):
    __tablename__ = "holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    deleted: Mapped[bool] = mapped_column(Integer, nullable=False, default=0)


class LeaveDayRow(Base):
    __tablename__ = "leave_days"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[str] = mapped_column(String(40), nullable=False)
    manager_id: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    group_id: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    type_of_leave: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    title: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    deleted: Mapped[bool] = mapped_column(Integer, nullable=False, default=0)


class StaffRecordRow(Base):
    __tablename__ = "staff_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    employee_id: Mapped[str] = mapped_column(String(40), nullable=False)
    manager_id: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    group_id: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    shift_start: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shift_end: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    end_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    end_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lunch_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shift_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    contract_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    contract_title: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    holiday: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    type_of_leave: Mapped[str | None] = mapped_column(String(40), nullable=True)
    checked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    export_result: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    deleted: Mapped[bool] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ScheduleLogRow(Base):
    __tablename__ = "schedule_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    result: Mapped[int] = mapped_column(Integer, nullable=False, default=RESULT_INFO)
    message: Mapped[str] = mapped_column(String(20000), nullable=False, default="")
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    manager_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    staff_member_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    group_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    contract_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class SiteTimeZoneRow(Base):
    __tablename__ = "site_timezone"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    description: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    zone_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bias: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daylight_bias: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    standard_bias: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class FillSettingsRow(Base):
    __tablename__ = "fill_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("name", name="uq_fill_settings_name"),)

    def params_dict(self) -> Dict:
        try:
            value = json.loads(self.paramsJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


engine = create_engine(
    FILL_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database() -> None:
    Base.metadata.create_all(engine)
    with engine.begin() as conn:
        if engine.dialect.name != "sqlite":
            return
        columns = {row[1]: True for row in conn.execute(text("PRAGMA table_info(staff_records)"))}
        if "export_result" not in columns:
            conn.execute(text("ALTER TABLE staff_records ADD COLUMN export_result VARCHAR(80) NOT NULL DEFAULT ''"))
        if "type_of_leave" not in columns:
            conn.execute(text("ALTER TABLE staff_records ADD COLUMN type_of_leave VARCHAR(40)"))


def get_fill_settings(session) -> List[FillSettingsRow]:
    stmt = select(FillSettingsRow).order_by(FillSettingsRow.name)
    return list(session.scalars(stmt))


def upsert_fill_settings(session, name: str, params_dict: Dict, *, edited_by: str = "system") -> FillSettingsRow:
    stmt = select(FillSettingsRow).where(FillSettingsRow.name == name)
    row = session.scalars(stmt).first()
    payload = json.dumps(params_dict)
    if row:
        row.paramsJSON = payload
        row.lastEditedBy = edited_by or "system"
        row.lastEditedAt = _utcnow()
    else:
        row = FillSettingsRow(name=name, paramsJSON=payload, lastEditedBy=edited_by or "system")
        session.add(row)
    session.commit()
    session.refresh(row)
    return row


def get_active_settings(session) -> Optional[FillSettingsRow]:
    stmt = select(FillSettingsRow).order_by(FillSettingsRow.lastEditedAt.desc(), FillSettingsRow.id.desc())
    return session.scalars(stmt).first()


def record_schedule_log(
    session,
    title: str,
    result: int,
    message: str,
    date: datetime.date,
    *,
    manager_id: Optional[str] = None,
    staff_member_id: Optional[str] = None,
    group_id: Optional[str] = None,
    contract_id: Optional[str] = None,
) -> ScheduleLogRow:
    if result not in LOG_RESULT_CHOICES:
        raise ValueError(f"Unsupported log result '{result}'.")
    log = ScheduleLogRow(
        title=title[:255],
        result=result,
        message=message or "",
        date=date,
        manager_id=manager_id,
        staff_member_id=staff_member_id,
        group_id=group_id,
        contract_id=contract_id,
    )
    session.add(log)
    session.commit()
    return log


def schedule_log_to_dict(log: ScheduleLogRow) -> Dict[str, Any]:
    return {
        "id": log.id,
        "title": log.title,
        "result": log.result,
        "message": log.message,
        "date": log.date.isoformat() if log.date else None,
        "manager_id": log.manager_id,
        "staff_member_id": log.staff_member_id,
        "group_id": log.group_id,
        "contract_id": log.contract_id,
        "created_at": log.created_at.isoformat() if log.created_at else None,
    }
