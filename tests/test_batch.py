from __future__ import annotations

import datetime
import sys
from pathlib import Path
from typing import List

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from fill.batch import BatchAutoFill, CancellationToken, perform_batch_auto_fill  # noqa: E402
from fill.types import AutoFillResult, StaffMember  # noqa: E402

MONTH = datetime.date(2024, 4, 1)


class FakeOrchestrator:
    def __init__(self, outcomes=None, on_call=None) -> None:
        self.outcomes = outcomes or {}
        self.on_call = on_call
        self.calls: List[str] = []

    def perform_auto_fill(self, params):
        name = params.staff_member.name
        self.calls.append(name)
        if self.on_call is not None:
            self.on_call(params)
        outcome = self.outcomes.get(name)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome or AutoFillResult(success=True, message=f"Created 20 record(s) for {name}.", created_count=20, log_result=2)


def _staff(name: str, *, auto: bool = True, deleted: bool = False) -> StaffMember:
    return StaffMember(id=name.lower(), name=name, employee_id=name.upper(), auto_schedule=auto, deleted=deleted)


def _run(orchestrator, staff, **kwargs):
    snapshots = []
    result = perform_batch_auto_fill(
        orchestrator,
        staff,
        selected_date=MONTH,
        manager_id="M1",
        group_id="G1",
        week_start_day=7,
        progress_callback=snapshots.append,
        **kwargs,
    )
    return result, snapshots


def test_only_auto_schedule_staff_are_processed():
    orchestrator = FakeOrchestrator()
    staff = [_staff("Ana"), _staff("Ben", auto=False), _staff("Cy", deleted=True), _staff("Dee")]
    result, snapshots = _run(orchestrator, staff, pause_ms=0)

    assert orchestrator.calls == ["Ana", "Dee"]
    assert result.total_processed == 2
    assert result.success_count == 2
    assert not result.cancelled
    assert snapshots[0].is_active and snapshots[0].total == 2 and snapshots[0].completed == 0
    assert snapshots[0].next_staff_name == "Dee"
    assert not snapshots[-1].is_active
    assert snapshots[-1].completed == 2


def test_counts_split_success_skipped_and_errors():
    orchestrator = FakeOrchestrator(
        outcomes={
            "Ben": AutoFillResult(success=False, message="processed", skipped=True, skip_reason="processed_records", log_result=3),
            "Cy": RuntimeError("store offline"),
            "Dee": AutoFillResult(success=False, message="No active contracts found", log_result=1),
        }
    )
    result, _ = _run(orchestrator, [_staff("Ana"), _staff("Ben"), _staff("Cy"), _staff("Dee")], pause_ms=0)

    assert (result.success_count, result.skipped_count, result.error_count) == (1, 1, 2)
    crashed = next(item for item in result.results if item.staff_name == "Cy")
    assert crashed.result.message == "store offline"
    assert crashed.result.log_result == 1
    payload = result.to_dict()
    assert payload["results"][1]["skip_reason"] == "processed_records"


def test_pause_counts_down_between_staff_only():
    result, snapshots = _run(FakeOrchestrator(), [_staff("Ana"), _staff("Ben")], pause_ms=30, tick_ms=10)

    paused = [snapshot.remaining_pause_ms for snapshot in snapshots if snapshot.is_paused]
    assert paused == [30, 20, 10]
    processing = [snapshot.current_staff_name for snapshot in snapshots if snapshot.is_processing]
    assert processing == ["Ana", "Ben"]
    assert result.total_processed == 2


def test_cancellation_stops_before_next_staff():
    token = CancellationToken()
    orchestrator = FakeOrchestrator(on_call=lambda params: token.cancel())
    result, snapshots = _run(
        orchestrator, [_staff("Ana"), _staff("Ben"), _staff("Cy")], pause_ms=5000, tick_ms=100, cancel_token=token
    )

    assert orchestrator.calls == ["Ana"]
    assert result.cancelled
    assert result.total_processed == 1
    assert not snapshots[-1].is_active


def test_run_exposes_result_after_exhaustion():
    batch = BatchAutoFill(
        FakeOrchestrator(), [_staff("Ana")], selected_date=MONTH, manager_id="M1", group_id="G1", pause_ms=0
    )
    snapshots = list(batch.run())
    assert len(snapshots) == 4
    assert batch.result.success_count == 1
    assert snapshots[-1].to_dict()["success_count"] == 1


def test_empty_staff_list_completes_immediately():
    result, snapshots = _run(FakeOrchestrator(), [], pause_ms=0)
    assert result.total_processed == 0
    assert [snapshot.is_active for snapshot in snapshots] == [True, False]
