"""FastAPI wrapper around the fill engine.

Endpoints resolve the staff member from the database, run one orchestrator
operation and return its result as JSON. Services are built once per session
factory so the site timezone and log cache survive between requests.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure absolute imports (e.g., "import database") still resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database  # noqa: E402
from database import get_active_settings, init_database  # noqa: E402
from fill.batch import perform_batch_auto_fill  # noqa: E402
from fill.logs import LogCache, LogRefresher  # noqa: E402
from fill.periods import month_bounds  # noqa: E402
from fill.service import FillOrchestrator  # noqa: E402
from fill.types import (  # noqa: E402
    EmptySchedule,
    FillParams,
    ProcessedRecordsBlock,
    StaffMember,
    UnprocessedRecordsReplace,
    outcome_to_dict,
)
from repositories import FillServices, build_fill_services  # noqa: E402
from settings import ensure_default_settings, load_active_settings, upsert_settings  # noqa: E402

logger = logging.getLogger(__name__)

_SERVICES: Dict[Any, Tuple[FillServices, Dict[str, Any], LogRefresher]] = {}


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    ensure_default_settings(database.SessionLocal)
    yield


app = FastAPI(title="Schedule Fill API", version="0.1", lifespan=lifespan)


def reset_services() -> None:
    _SERVICES.clear()


def _bundle() -> Tuple[FillServices, Dict[str, Any], LogRefresher]:
    factory = database.SessionLocal
    bundle = _SERVICES.get(factory)
    if bundle is None:
        settings = load_active_settings(factory)
        services = build_fill_services(factory, settings)
        refresher = LogRefresher(services.audit, LogCache(settings["log_cache_ttl_seconds"]))
        bundle = (services, settings, refresher)
        _SERVICES[factory] = bundle
    return bundle


def get_db():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_services() -> FillServices:
    return _bundle()[0]


def get_settings() -> Dict[str, Any]:
    return _bundle()[1]


def get_log_refresher() -> LogRefresher:
    return _bundle()[2]


def get_orchestrator(
    services: FillServices = Depends(get_services),
    settings: Dict[str, Any] = Depends(get_settings),
) -> FillOrchestrator:
    return FillOrchestrator(services, settings)


def _parse_date(value: Any, field: str = "selected_date") -> datetime.date:
    if not value:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be YYYY-MM-DD")


def _required(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None or str(value).strip() == "":
        raise HTTPException(status_code=400, detail=f"{key} is required")
    return str(value).strip()


def _staff(services: FillServices, payload: Dict[str, Any]) -> StaffMember:
    staff_id = _required(payload, "staff_member_id")
    staff = services.staff.get(staff_id)
    if staff is None:
        raise HTTPException(status_code=404, detail="Staff member not found")
    return staff


def _week_start_day(settings: Dict[str, Any], payload: Dict[str, Any]) -> int:
    value = payload.get("week_start_day")
    if value is None:
        value = settings.get("week_start_day", 7)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="week_start_day must be 2, 6 or 7")


def _pause_ms(settings: Dict[str, Any], payload: Dict[str, Any]) -> int:
    try:
        return max(0, int(payload.get("pause_ms", settings["batch_pause_ms"])))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="pause_ms must be a whole number of milliseconds")


def _params(services: FillServices, settings: Dict[str, Any], payload: Dict[str, Any]) -> FillParams:
    week_start_day = _week_start_day(settings, payload)
    return FillParams(
        selected_date=_parse_date(payload.get("selected_date")),
        staff_member=_staff(services, payload),
        manager_id=_required(payload, "manager_id"),
        group_id=_required(payload, "group_id"),
        week_start_day=week_start_day,
    )


def _outcome_from_payload(payload: Dict[str, Any]):
    outcome = payload.get("outcome") or {}
    kind = outcome.get("kind") if isinstance(outcome, dict) else outcome
    if kind == "processed_block":
        return ProcessedRecordsBlock(
            processed_count=int(outcome.get("processed_count") or 0),
            total_count=int(outcome.get("total_count") or 0),
        )
    if kind == "unprocessed_replace":
        return UnprocessedRecordsReplace(count=int(outcome.get("count") or 0))
    if kind in (None, "", "empty"):
        return EmptySchedule()
    raise HTTPException(status_code=400, detail=f"Unknown outcome kind '{kind}'")


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/v1/fill/eligibility")
def fill_eligibility(
    payload: Dict[str, Any],
    services: FillServices = Depends(get_services),
    settings: Dict[str, Any] = Depends(get_settings),
    orchestrator: FillOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    params = _params(services, settings, payload)
    result = orchestrator.check_eligibility(params)
    return JSONResponse(
        content=jsonable_encoder(
            {
                "eligible": result.eligible,
                "reason": result.reason,
                "contract_id": result.contract_id,
                "has_processed_records": result.has_processed_records,
                "outcome": outcome_to_dict(result.outcome),
            }
        )
    )


@app.post("/api/v1/fill/check")
def fill_check(
    payload: Dict[str, Any],
    services: FillServices = Depends(get_services),
    settings: Dict[str, Any] = Depends(get_settings),
    orchestrator: FillOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    params = _params(services, settings, payload)
    result = orchestrator.check_for_fill(params)
    return JSONResponse(
        content=jsonable_encoder(
            {
                "requires_dialog": result.requires_dialog,
                "dialog_outcome": outcome_to_dict(result.dialog_outcome),
                "can_proceed": result.can_proceed,
                "contract_id": result.contract_id,
                "message": result.message,
            }
        )
    )


@app.post("/api/v1/fill/perform")
def fill_perform(
    payload: Dict[str, Any],
    services: FillServices = Depends(get_services),
    settings: Dict[str, Any] = Depends(get_settings),
    orchestrator: FillOrchestrator = Depends(get_orchestrator),
    refresher: LogRefresher = Depends(get_log_refresher),
) -> JSONResponse:
    params = _params(services, settings, payload)
    result = orchestrator.perform_fill(
        params,
        contract_id=payload.get("contract_id"),
        replace_existing=bool(payload.get("replace_existing")),
    )
    refresher.invalidate(params.staff_member.employee_id)
    return JSONResponse(
        content=jsonable_encoder(
            {
                "success": result.success,
                "message": result.message,
                "created_count": result.created_count,
                "deleted_count": result.deleted_count,
                "log_result": result.log_result,
                "state": result.state.value,
                "states": [state.value for state in result.states],
                "contract_id": result.contract_id,
                "outcome": outcome_to_dict(result.outcome),
                "analysis": result.analysis,
            }
        )
    )


@app.post("/api/v1/fill/auto")
def fill_auto(
    payload: Dict[str, Any],
    services: FillServices = Depends(get_services),
    settings: Dict[str, Any] = Depends(get_settings),
    orchestrator: FillOrchestrator = Depends(get_orchestrator),
    refresher: LogRefresher = Depends(get_log_refresher),
) -> JSONResponse:
    params = _params(services, settings, payload)
    result = orchestrator.perform_auto_fill(params)
    refresher.invalidate(params.staff_member.employee_id)
    return JSONResponse(content=jsonable_encoder(result))


@app.post("/api/v1/fill/batch")
def fill_batch(
    payload: Dict[str, Any],
    services: FillServices = Depends(get_services),
    settings: Dict[str, Any] = Depends(get_settings),
    orchestrator: FillOrchestrator = Depends(get_orchestrator),
    refresher: LogRefresher = Depends(get_log_refresher),
) -> JSONResponse:
    selected_date = _parse_date(payload.get("selected_date"))
    manager_id = _required(payload, "manager_id")
    group_id = _required(payload, "group_id")
    staff_list = services.staff.staff_for_group(manager_id, group_id)
    snapshots = []
    result = perform_batch_auto_fill(
        orchestrator,
        staff_list,
        selected_date=selected_date,
        manager_id=manager_id,
        group_id=group_id,
        week_start_day=_week_start_day(settings, payload),
        progress_callback=snapshots.append,
        pause_ms=_pause_ms(settings, payload),
        tick_ms=settings["pause_tick_ms"],
    )
    refresher.invalidate()
    body = result.to_dict()
    body["final_progress"] = snapshots[-1].to_dict() if snapshots else None
    return JSONResponse(content=jsonable_encoder(body))


@app.post("/api/v1/fill/refusal")
def fill_refusal(
    payload: Dict[str, Any],
    services: FillServices = Depends(get_services),
    settings: Dict[str, Any] = Depends(get_settings),
    orchestrator: FillOrchestrator = Depends(get_orchestrator),
    refresher: LogRefresher = Depends(get_log_refresher),
) -> JSONResponse:
    params = _params(services, settings, payload)
    outcome = _outcome_from_payload(payload)
    log_id = orchestrator.log_user_refusal(params, outcome, payload.get("contract_id"))
    refresher.invalidate(params.staff_member.employee_id)
    return JSONResponse(content=jsonable_encoder({"log_id": log_id, "result": 3}))


@app.get("/api/v1/logs/{employee_id}")
def latest_log(
    employee_id: str,
    manager_id: Optional[str] = Query(None),
    group_id: Optional[str] = Query(None),
    period: Optional[str] = Query(None),
    refresh: bool = Query(False),
    refresher: LogRefresher = Depends(get_log_refresher),
) -> JSONResponse:
    period_date = _parse_date(period, "period") if period else None
    entry = refresher.refresh(employee_id, manager_id, group_id, period_date, use_cache=not refresh)
    if entry is None:
        raise HTTPException(status_code=404, detail="No schedule log found")
    return JSONResponse(content=jsonable_encoder(entry))


@app.get("/api/v1/records/{employee_id}")
def staff_records(
    employee_id: str,
    period: str = Query(...),
    include_deleted: bool = Query(False),
    services: FillServices = Depends(get_services),
) -> JSONResponse:
    first, last = month_bounds(_parse_date(period, "period"))
    records = services.records.records_for_staff(employee_id, first, last, include_deleted=include_deleted)
    return JSONResponse(content=jsonable_encoder({"employee_id": employee_id, "records": records}))


@app.get("/api/v1/settings/active")
def active_settings(db=Depends(get_db)) -> JSONResponse:
    row = get_active_settings(db)
    if not row:
        raise HTTPException(status_code=404, detail="No active settings found")
    payload = {
        "id": row.id,
        "name": row.name,
        "params": load_active_settings(db),
        "lastEditedBy": row.lastEditedBy,
        "lastEditedAt": row.lastEditedAt.isoformat() if row.lastEditedAt else None,
    }
    return JSONResponse(content=jsonable_encoder(payload))


@app.put("/api/v1/settings/active")
def set_active_settings(payload: Dict[str, Any]) -> JSONResponse:
    params = payload.get("params") or {}
    actor = (payload.get("actor") or "api").strip() or "api"
    if not isinstance(params, dict):
        raise HTTPException(status_code=400, detail="params must be an object")
    updated = upsert_settings(database.SessionLocal, params, edited_by=actor)
    reset_services()
    logger.info("Fill settings updated by %s", actor)
    return JSONResponse(content=jsonable_encoder({"params": updated, "lastEditedBy": actor}))
