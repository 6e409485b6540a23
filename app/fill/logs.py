from __future__ import annotations

import datetime
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .batch import CancellationToken
from .periods import to_date_only

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


def period_key(value: Optional[datetime.date]) -> str:
    if value is None:
        return "*"
    day = to_date_only(value)
    return f"{day.year:04d}-{day.month:02d}"


def scope_key(manager_id: Optional[str], group_id: Optional[str]) -> str:
    return f"{manager_id or '*'}/{group_id or '*'}"


class LogCache:
    """Latest schedule log per (staff, month, manager/group scope), expiring after a TTL."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple[str, str, str], Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, period: str, scope: str = "*/*") -> Optional[Any]:
        with self._lock:
            item = self._entries.get((key, period, scope))
            if item is None:
                return None
            expires_at, entry = item
            if self._clock() >= expires_at:
                del self._entries[(key, period, scope)]
                return None
            return entry

    def put(self, key: str, period: str, entry: Any, ttl: Optional[int] = None, scope: str = "*/*") -> None:
        lifetime = self.ttl_seconds if ttl is None else ttl
        with self._lock:
            self._entries[(key, period, scope)] = (self._clock() + lifetime, entry)

    def invalidate(self, key: Optional[str] = None, period: Optional[str] = None) -> int:
        with self._lock:
            if key is None and period is None:
                dropped = len(self._entries)
                self._entries.clear()
                return dropped
            doomed = [
                cache_key
                for cache_key in self._entries
                if (key is None or cache_key[0] == key) and (period is None or cache_key[1] == period)
            ]
            for cache_key in doomed:
                del self._entries[cache_key]
            return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)


class LogRefresher:
    """Reloads the latest log for a staff member; a newer refresh supersedes an older one."""

    def __init__(self, audit, cache: Optional[LogCache] = None) -> None:
        self.audit = audit
        self.cache = cache or LogCache()
        self._inflight: Dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def _begin(self, staff_member_id: str) -> CancellationToken:
        token = CancellationToken()
        with self._lock:
            previous = self._inflight.get(staff_member_id)
            if previous is not None:
                previous.cancel()
            self._inflight[staff_member_id] = token
        return token

    def _finish(self, staff_member_id: str, token: CancellationToken) -> None:
        with self._lock:
            if self._inflight.get(staff_member_id) is token:
                del self._inflight[staff_member_id]

    def refresh(
        self,
        staff_member_id: str,
        manager_id: Optional[str] = None,
        group_id: Optional[str] = None,
        period: Optional[datetime.date] = None,
        *,
        use_cache: bool = True,
    ) -> Optional[Dict[str, Any]]:
        staff_key = str(staff_member_id)
        month = period_key(period)
        scope = scope_key(manager_id, group_id)
        if use_cache:
            cached = self.cache.get(staff_key, month, scope)
            if cached is not None:
                return cached
        token = self._begin(staff_key)
        try:
            entry = self.audit.latest_log(staff_key, manager_id, group_id, period)
            if token.cancelled:
                logger.debug("Dropped superseded log refresh for %s", staff_key)
                return None
            if entry is not None:
                self.cache.put(staff_key, month, entry, scope=scope)
            return entry
        finally:
            self._finish(staff_key, token)

    def invalidate(self, staff_member_id: Optional[str] = None, period: Optional[datetime.date] = None) -> int:
        return self.cache.invalidate(
            str(staff_member_id) if staff_member_id is not None else None,
            period_key(period) if period is not None else None,
        )
