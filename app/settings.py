from __future__ import annotations

import copy
import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from database import get_active_settings, upsert_fill_settings
from timezone_utils import TimeZoneDescriptor


VALID_WEEK_START_DAYS = (2, 6, 7)

DEFAULT_TIMEZONE: Dict[str, Any] = {
    "description": "(UTC) Coordinated Universal Time",
    "id": 0,
    "bias": 0,
    "daylight_bias": 0,
    "standard_bias": 0,
}

BASELINE_SETTINGS: Dict[str, Any] = {
    "name": "Default Fill Settings",
    "description": "Seeded settings for monthly schedule fills.",
    "week_start_day": 7,
    "record_pause_ms": 100,
    "batch_pause_ms": 3000,
    "pause_tick_ms": 100,
    "skip_holidays": False,
    "skip_leave_days": False,
    "log_cache_ttl_seconds": 300,
    "local_timezone": None,
    "default_timezone": DEFAULT_TIMEZONE,
}


def build_default_settings() -> Dict[str, Any]:
    """Return a deepcopy so callers can mutate the settings safely."""
    return copy.deepcopy(BASELINE_SETTINGS)


def ensure_default_settings(session_factory) -> None:
    """Seed the baseline settings exactly once so fills can run end-to-end."""

    with session_factory() as session:
        if get_active_settings(session):
            return
        defaults = build_default_settings()
        name = defaults.get("name", "Default Fill Settings")
        params = {key: value for key, value in defaults.items() if key != "name"}
        upsert_fill_settings(session, name, params, edited_by="system")


def load_active_settings(conn) -> Dict[str, Any]:
    """Return the active settings payload as a dict, defaults applied."""
    if conn is None:
        return _normalize_settings({})
    if callable(conn):
        with conn() as session:
            row = get_active_settings(session)
            return _normalize_settings(row.params_dict() if row else {})
    row = get_active_settings(conn)
    return _normalize_settings(row.params_dict() if row else {})


def upsert_settings(session_factory, overrides: Dict[str, Any], *, edited_by: str = "system") -> Dict[str, Any]:
    current = load_active_settings(session_factory)
    current.update(overrides or {})
    normalized = _normalize_settings(current)
    with session_factory() as session:
        row = get_active_settings(session)
        name = row.name if row else BASELINE_SETTINGS["name"]
        upsert_fill_settings(session, name, normalized, edited_by=edited_by)
    return normalized


def _as_int(value: Any, default: int, minimum: int = 0) -> int:
    try:
        return max(minimum, int(value))
    except (TypeError, ValueError):
        return default


def _normalize_settings(settings: Dict) -> Dict[str, Any]:
    """Apply defaults and clamp values so runtime matches code expectations."""
    if not isinstance(settings, dict):
        settings = {}
    normalized = build_default_settings()
    normalized.pop("name", None)
    normalized.update(copy.deepcopy(settings))
    if normalized.get("week_start_day") not in VALID_WEEK_START_DAYS:
        normalized["week_start_day"] = _as_int(normalized.get("week_start_day"), 7)
        if normalized["week_start_day"] not in VALID_WEEK_START_DAYS:
            normalized["week_start_day"] = BASELINE_SETTINGS["week_start_day"]
    for key in ("record_pause_ms", "batch_pause_ms", "pause_tick_ms", "log_cache_ttl_seconds"):
        normalized[key] = _as_int(normalized.get(key), BASELINE_SETTINGS[key])
    # A zero tick would spin forever in the batch countdown.
    normalized["pause_tick_ms"] = max(1, normalized["pause_tick_ms"])
    normalized["skip_holidays"] = bool(normalized.get("skip_holidays"))
    normalized["skip_leave_days"] = bool(normalized.get("skip_leave_days"))
    tz_cfg = normalized.get("default_timezone")
    merged_tz = copy.deepcopy(DEFAULT_TIMEZONE)
    if isinstance(tz_cfg, dict):
        merged_tz.update({key: value for key, value in tz_cfg.items() if key in DEFAULT_TIMEZONE})
    for key in ("id", "bias", "daylight_bias", "standard_bias"):
        merged_tz[key] = _as_int(merged_tz.get(key), 0, minimum=-24 * 60)
    normalized["default_timezone"] = merged_tz
    local_tz = normalized.get("local_timezone")
    normalized["local_timezone"] = str(local_tz) if local_tz else None
    return normalized


def default_timezone(settings: Dict[str, Any]) -> TimeZoneDescriptor:
    cfg = settings.get("default_timezone") or DEFAULT_TIMEZONE
    return TimeZoneDescriptor(
        description=str(cfg.get("description") or DEFAULT_TIMEZONE["description"]),
        id=int(cfg.get("id") or 0),
        bias=int(cfg.get("bias") or 0),
        daylight_bias=int(cfg.get("daylight_bias") or 0),
        standard_bias=int(cfg.get("standard_bias") or 0),
    )


def resolve_local_timezone(settings: Dict[str, Any]) -> Optional[datetime.tzinfo]:
    """Configured IANA zone for DST detection; ``None`` means the process local zone."""
    name = settings.get("local_timezone")
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown local_timezone '{name}'.") from exc
