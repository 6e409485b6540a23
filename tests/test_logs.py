from __future__ import annotations

import datetime
import sys
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from fill.logs import LogCache, LogRefresher, period_key, scope_key  # noqa: E402


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeAudit:
    def __init__(self) -> None:
        self.calls = []
        self.on_call = None

    def latest_log(self, staff_member_id, manager_id=None, group_id=None, period=None):
        self.calls.append(staff_member_id)
        entry = {"id": str(len(self.calls)), "staff_member_id": staff_member_id}
        if self.on_call is not None:
            hook, self.on_call = self.on_call, None
            hook()
        return entry


def test_period_key():
    assert period_key(datetime.date(2024, 4, 17)) == "2024-04"
    assert period_key(datetime.datetime(2024, 12, 31, 23, 59)) == "2024-12"
    assert period_key(None) == "*"


def test_cache_entries_expire_after_ttl():
    clock = FakeClock()
    cache = LogCache(ttl_seconds=300, clock=clock)
    cache.put("E1", "2024-04", {"id": "1"})
    clock.now += 299
    assert cache.get("E1", "2024-04") == {"id": "1"}
    clock.now += 1
    assert cache.get("E1", "2024-04") is None
    assert len(cache) == 0


def test_cache_invalidation_by_staff_and_period():
    cache = LogCache(clock=FakeClock())
    cache.put("E1", "2024-04", {"id": "1"})
    cache.put("E1", "2024-05", {"id": "2"})
    cache.put("E2", "2024-04", {"id": "3"})
    assert cache.invalidate("E1", "2024-04") == 1
    assert cache.invalidate(period="2024-04") == 1
    assert cache.get("E1", "2024-05") == {"id": "2"}
    assert cache.invalidate() == 1


def test_refresh_uses_cache_until_forced():
    audit = FakeAudit()
    refresher = LogRefresher(audit, LogCache(clock=FakeClock()))
    first = refresher.refresh("E1", period=datetime.date(2024, 4, 1))
    second = refresher.refresh("E1", period=datetime.date(2024, 4, 20))
    forced = refresher.refresh("E1", period=datetime.date(2024, 4, 1), use_cache=False)

    assert first == second == {"id": "1", "staff_member_id": "E1"}
    assert forced["id"] == "2"
    assert audit.calls == ["E1", "E1"]


def test_newer_refresh_supersedes_older_one():
    audit = FakeAudit()
    refresher = LogRefresher(audit, LogCache(clock=FakeClock()))
    inner = {}
    audit.on_call = lambda: inner.update(result=refresher.refresh("E1", use_cache=False))

    outer = refresher.refresh("E1", use_cache=False)

    assert outer is None
    assert inner["result"]["id"] == "2"
    assert refresher.refresh("E1") == inner["result"]


def test_invalidate_drops_cached_staff_entry():
    audit = FakeAudit()
    refresher = LogRefresher(audit, LogCache(clock=FakeClock()))
    refresher.refresh("E1")
    assert refresher.invalidate("E1") == 1
    refresher.refresh("E1")
    assert audit.calls == ["E1", "E1"]


def test_cached_log_is_not_shared_across_manager_or_group():
    audit = FakeAudit()
    refresher = LogRefresher(audit, LogCache(clock=FakeClock()))
    april = datetime.date(2024, 4, 1)
    first = refresher.refresh("E1", "M1", "G1", april)
    other_manager = refresher.refresh("E1", "M2", "G1", april)
    other_group = refresher.refresh("E1", "M1", "G2", april)
    again = refresher.refresh("E1", "M1", "G1", april)

    assert [first["id"], other_manager["id"], other_group["id"]] == ["1", "2", "3"]
    assert again is first
    assert scope_key("M1", None) == "M1/*"
    assert refresher.invalidate("E1", april) == 3
