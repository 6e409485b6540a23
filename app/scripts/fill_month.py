from __future__ import annotations

import argparse
import datetime
import json
import logging
import sys
from pathlib import Path

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import (  # noqa: E402
    ContractRow,
    HolidayRow,
    LeaveDayRow,
    SessionLocal,
    SiteTimeZoneRow,
    StaffMemberRow,
    WeeklyTimeTableRow,
    init_database,
)
from fill.batch import AutoFillProgress, perform_batch_auto_fill  # noqa: E402
from fill.service import FillOrchestrator  # noqa: E402
from repositories import build_fill_services  # noqa: E402
from settings import ensure_default_settings, load_active_settings  # noqa: E402

DEMO_MANAGER_ID = "1"
DEMO_GROUP_ID = "10"
DEMO_STAFF = [
    ("Alex Nguyen", "101", [("08:00", "16:00")]),
    ("Maya Thompson", "102", [("09:00", "17:00"), ("12:00", "20:00")]),
    ("Jordan Ellis", "103", [("07:00", "15:00")]),
]
WORKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")


def seed_demo(month: datetime.date) -> int:
    """Create a small group with two-week templates, a holiday and a leave block."""
    init_database()
    created = 0
    first = month.replace(day=1)
    with SessionLocal() as session:
        if session.scalars(select(SiteTimeZoneRow)).first() is None:
            session.add(SiteTimeZoneRow(description="(UTC) Coordinated Universal Time", zone_id=0))
        for name, employee_id, weeks in DEMO_STAFF:
            exists = session.scalars(
                select(StaffMemberRow).where(StaffMemberRow.employee_id == employee_id)
            ).first()
            if exists:
                continue
            session.add(
                StaffMemberRow(
                    name=name,
                    employee_id=employee_id,
                    manager_id=DEMO_MANAGER_ID,
                    group_id=DEMO_GROUP_ID,
                    auto_schedule=1,
                )
            )
            contract = ContractRow(
                template=f"{name} standard",
                contracted_hours=40,
                start_date=first - datetime.timedelta(days=90),
                employee_id=employee_id,
                manager_id=DEMO_MANAGER_ID,
                group_id=DEMO_GROUP_ID,
            )
            session.add(contract)
            session.flush()
            for week_number, (start, end) in enumerate(weeks, start=1):
                row = WeeklyTimeTableRow(
                    contract_id=contract.id,
                    week_number=week_number,
                    shift_number=1,
                    lunch_minutes=30,
                    creator_id=DEMO_MANAGER_ID,
                    group_id=DEMO_GROUP_ID,
                )
                for day in WORKDAYS:
                    setattr(row, f"{day}_start", start)
                    setattr(row, f"{day}_end", end)
                session.add(row)
            session.add(
                LeaveDayRow(
                    employee_id=employee_id,
                    manager_id=DEMO_MANAGER_ID,
                    group_id=DEMO_GROUP_ID,
                    start_date=first + datetime.timedelta(days=9),
                    end_date=first + datetime.timedelta(days=11),
                    type_of_leave="Annual",
                    title="Annual leave",
                )
            )
            created += 1
        holiday_date = first + datetime.timedelta(days=14)
        if session.scalars(select(HolidayRow).where(HolidayRow.date == holiday_date)).first() is None:
            session.add(HolidayRow(date=holiday_date, title="Demo holiday"))
        session.commit()
    print(f"[seed] Created {created} demo staff member(s) in group {DEMO_GROUP_ID}.")
    return created


def _print_progress(snapshot: AutoFillProgress) -> None:
    if snapshot.is_paused:
        return
    if snapshot.is_processing:
        print(f"[fill] {snapshot.completed + 1}/{snapshot.total} {snapshot.current_staff_name} ...")
    elif not snapshot.is_active:
        print(
            f"[fill] Done: {snapshot.success_count} ok, {snapshot.skipped_count} skipped, "
            f"{snapshot.error_count} error(s) in {snapshot.elapsed_ms} ms"
        )


def run_fill(
    month: datetime.date,
    manager_id: str,
    group_id: str,
    *,
    pause_ms: int | None = None,
    as_json: bool = False,
) -> int:
    ensure_default_settings(SessionLocal)
    settings = load_active_settings(SessionLocal)
    services = build_fill_services(SessionLocal, settings)
    orchestrator = FillOrchestrator(services, settings)
    staff = services.staff.staff_for_group(manager_id, group_id)
    if not staff:
        print(f"[fill] No staff found for manager {manager_id}, group {group_id}.")
        return 1
    result = perform_batch_auto_fill(
        orchestrator,
        staff,
        selected_date=month,
        manager_id=manager_id,
        group_id=group_id,
        week_start_day=settings["week_start_day"],
        progress_callback=None if as_json else _print_progress,
        pause_ms=settings["batch_pause_ms"] if pause_ms is None else pause_ms,
        tick_ms=settings["pause_tick_ms"],
    )
    if as_json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        for item in result.results:
            status = "skipped" if item.result.skipped else ("ok" if item.result.success else "error")
            print(f"  - {item.staff_name}: {status} ({item.result.message})")
    return 0 if result.error_count == 0 else 2


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fill a month of schedule records for every auto-schedule staff member of a group."
    )
    parser.add_argument("--month", help="Any ISO date (YYYY-MM-DD) inside the target month. Defaults to next month.")
    parser.add_argument("--manager-id", default=DEMO_MANAGER_ID, help="Manager id owning the templates.")
    parser.add_argument("--group-id", default=DEMO_GROUP_ID, help="Staff group id to fill.")
    parser.add_argument("--pause-ms", type=int, help="Pause between staff members (defaults to settings).")
    parser.add_argument("--seed-demo", action="store_true", help="Insert demo staff, templates and leave first.")
    parser.add_argument("--json", action="store_true", help="Print the batch result as JSON.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def _next_month(today: datetime.date | None = None) -> datetime.date:
    base = (today or datetime.date.today()).replace(day=1)
    return (base + datetime.timedelta(days=32)).replace(day=1)


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    init_database()
    if args.month:
        try:
            month = datetime.date.fromisoformat(args.month)
        except ValueError as exc:
            raise SystemExit(f"Invalid --month value: {exc}") from exc
    else:
        month = _next_month()
    if args.seed_demo:
        seed_demo(month)
    print(f"[fill] Target month: {month:%B %Y}")
    raise SystemExit(run_fill(month, args.manager_id, args.group_id, pause_ms=args.pause_ms, as_json=args.json))


if __name__ == "__main__":
    main()
