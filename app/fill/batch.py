"""Sequential auto-fill over a staff group with progress snapshots and a cancellable pause."""

from __future__ import annotations

import datetime
import logging
import threading
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import RESULT_ERROR
from .types import DEFAULT_WEEK_START_DAY, AutoFillResult, FillParams, StaffMember

logger = logging.getLogger(__name__)

DEFAULT_BATCH_PAUSE_MS = 3000
DEFAULT_TICK_MS = 100


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if cancelled meanwhile."""
        return self._event.wait(seconds)


@dataclass(frozen=True)
class AutoFillProgress:
    is_active: bool = False
    completed: int = 0
    total: int = 0
    success_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    current_staff_name: Optional[str] = None
    next_staff_name: Optional[str] = None
    is_paused: bool = False
    remaining_pause_ms: int = 0
    elapsed_ms: int = 0
    is_processing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StaffAutoFillOutcome:
    staff_id: str
    staff_name: str
    result: AutoFillResult


@dataclass
class BatchResult:
    total_processed: int = 0
    success_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    execution_ms: int = 0
    cancelled: bool = False
    results: List[StaffAutoFillOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["results"] = [
            {
                "staff_id": item.staff_id,
                "staff_name": item.staff_name,
                "success": item.result.success,
                "skipped": item.result.skipped,
                "skip_reason": item.result.skip_reason,
                "created_count": item.result.created_count,
                "message": item.result.message,
                "log_result": item.result.log_result,
            }
            for item in self.results
        ]
        return payload


class BatchAutoFill:
    """Runs ``perform_auto_fill`` for each auto-schedule staff member, one at a time.

    ``run()`` yields a progress snapshot when each staff member starts and
    finishes, on every pause tick, and once at completion. The final totals
    are available on ``result`` after the generator is exhausted.
    """

    def __init__(
        self,
        orchestrator,
        staff_list: List[StaffMember],
        *,
        selected_date: datetime.date,
        manager_id: str,
        group_id: str,
        week_start_day: int = DEFAULT_WEEK_START_DAY,
        pause_ms: int = DEFAULT_BATCH_PAUSE_MS,
        tick_ms: int = DEFAULT_TICK_MS,
        cancel_token: Optional[CancellationToken] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.orchestrator = orchestrator
        self.staff = [staff for staff in staff_list if staff.auto_schedule and not staff.deleted]
        self.selected_date = selected_date
        self.manager_id = manager_id
        self.group_id = group_id
        self.week_start_day = week_start_day
        self.pause_ms = max(0, int(pause_ms))
        self.tick_ms = max(1, int(tick_ms))
        self.cancel_token = cancel_token or CancellationToken()
        self._clock = clock
        self.result = BatchResult()

    def _params(self, staff: StaffMember) -> FillParams:
        return FillParams(
            selected_date=self.selected_date,
            staff_member=staff,
            manager_id=self.manager_id,
            group_id=self.group_id,
            week_start_day=self.week_start_day,
        )

    def _fill_one(self, staff: StaffMember) -> AutoFillResult:
        try:
            return self.orchestrator.perform_auto_fill(self._params(staff))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Auto fill crashed for %s", staff.name)
            return AutoFillResult(success=False, message=str(exc), log_result=RESULT_ERROR)

    def run(self) -> Iterator[AutoFillProgress]:
        started = self._clock()
        total = len(self.staff)
        result = self.result = BatchResult()

        def elapsed() -> int:
            return int((self._clock() - started) * 1000)

        progress = AutoFillProgress(
            is_active=True,
            total=total,
            current_staff_name=self.staff[0].name if self.staff else None,
            next_staff_name=self.staff[1].name if total > 1 else None,
        )
        logger.info("Batch auto fill started for %s staff member(s)", total)
        yield progress

        for index, staff in enumerate(self.staff):
            if self.cancel_token.cancelled:
                result.cancelled = True
                break
            next_name = self.staff[index + 1].name if index + 1 < total else None
            progress = replace(
                progress,
                current_staff_name=staff.name,
                next_staff_name=next_name,
                is_processing=True,
                is_paused=False,
                remaining_pause_ms=0,
                elapsed_ms=elapsed(),
            )
            yield progress

            outcome = self._fill_one(staff)
            result.results.append(StaffAutoFillOutcome(staff_id=staff.id, staff_name=staff.name, result=outcome))
            result.total_processed += 1
            if outcome.skipped:
                result.skipped_count += 1
            elif outcome.success:
                result.success_count += 1
            else:
                result.error_count += 1
            logger.info("[%s] auto fill finished: %s", staff.name, outcome.message)
            progress = replace(
                progress,
                completed=index + 1,
                success_count=result.success_count,
                skipped_count=result.skipped_count,
                error_count=result.error_count,
                is_processing=False,
                elapsed_ms=elapsed(),
            )
            yield progress

            if next_name is None or self.pause_ms <= 0:
                continue
            remaining = self.pause_ms
            while remaining > 0:
                progress = replace(progress, is_paused=True, remaining_pause_ms=remaining, elapsed_ms=elapsed())
                yield progress
                step = min(self.tick_ms, remaining)
                if self.cancel_token.wait(step / 1000.0):
                    break
                remaining -= step
            progress = replace(progress, is_paused=False, remaining_pause_ms=0)

        if self.cancel_token.cancelled:
            result.cancelled = True
        result.execution_ms = elapsed()
        logger.info(
            "Batch auto fill done: %s processed, %s success, %s skipped, %s error(s)%s",
            result.total_processed,
            result.success_count,
            result.skipped_count,
            result.error_count,
            " (cancelled)" if result.cancelled else "",
        )
        yield replace(
            progress,
            is_active=False,
            is_processing=False,
            is_paused=False,
            remaining_pause_ms=0,
            current_staff_name=None,
            next_staff_name=None,
            elapsed_ms=result.execution_ms,
        )


def perform_batch_auto_fill(
    orchestrator,
    staff_list: List[StaffMember],
    *,
    selected_date: datetime.date,
    manager_id: str,
    group_id: str,
    week_start_day: int = DEFAULT_WEEK_START_DAY,
    progress_callback: Optional[Callable[[AutoFillProgress], None]] = None,
    pause_ms: int = DEFAULT_BATCH_PAUSE_MS,
    tick_ms: int = DEFAULT_TICK_MS,
    cancel_token: Optional[CancellationToken] = None,
) -> BatchResult:
    batch = BatchAutoFill(
        orchestrator,
        staff_list,
        selected_date=selected_date,
        manager_id=manager_id,
        group_id=group_id,
        week_start_day=week_start_day,
        pause_ms=pause_ms,
        tick_ms=tick_ms,
        cancel_token=cancel_token,
    )
    for snapshot in batch.run():
        if progress_callback is not None:
            progress_callback(snapshot)
    return batch.result
