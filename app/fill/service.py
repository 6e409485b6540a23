"""Fill orchestration: validate, analyse, classify, generate and persist one staff month."""

from __future__ import annotations

import datetime
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .analysis import AnalysisRecorder, LEVEL_DETAILED
from .conflicts import classify, describe_outcome, filter_existing
from .errors import (
    FillError,
    NoActiveContractError,
    NoTemplatesError,
    PersistenceError,
    PlatformError,
    ProcessedRecordsConflict,
    RESULT_ERROR,
    RESULT_INFO,
    RESULT_SUCCESS,
    ValidationError,
)
from .periods import MonthPeriod, format_date_only, month_period, to_date_only
from .records import RecordGenerator, validate_records
from .templates import TemplateIndex
from .types import (
    WEEK_START_DAYS,
    AutoFillResult,
    Contract,
    DialogOutcome,
    EligibilityResult,
    EmptySchedule,
    ExistingRecord,
    FillCheckResult,
    FillParams,
    FillResult,
    FillState,
    GeneratedRecord,
    Holiday,
    LeavePeriod,
    ProcessedRecordsBlock,
    SaveResult,
    UnprocessedRecordsReplace,
    has_id,
)

logger = logging.getLogger(__name__)

DEFAULT_RECORD_PAUSE_MS = 100


@dataclass
class FillContext:
    """Everything resolved for one staff month before generation starts."""

    contract: Contract
    period: MonthPeriod
    templates: TemplateIndex
    existing: List[ExistingRecord]
    outcome: DialogOutcome
    analysis: AnalysisRecorder


class _StateTrail:
    def __init__(self, staff_name: str) -> None:
        self.staff_name = staff_name
        self.states: List[FillState] = [FillState.IDLE]

    @property
    def current(self) -> FillState:
        return self.states[-1]

    def enter(self, state: FillState) -> None:
        logger.debug("[%s] %s -> %s", self.staff_name, self.current.value, state.value)
        self.states.append(state)


def validate_params(params: FillParams) -> None:
    errors: List[str] = []
    if params is None:
        raise ValidationError("Fill parameters are required.")
    if not isinstance(params.selected_date, datetime.date):
        errors.append("Selected date is required.")
    staff = params.staff_member
    if staff is None:
        errors.append("Staff member is required.")
    else:
        if not has_id(staff.employee_id):
            errors.append(f"Staff member '{staff.name}' has no employee id.")
        if staff.deleted:
            errors.append(f"Staff member '{staff.name}' is deleted.")
    if not has_id(params.manager_id):
        errors.append("Manager id is required.")
    if not has_id(params.group_id):
        errors.append("Group id is required.")
    if params.week_start_day not in WEEK_START_DAYS:
        errors.append(f"Unsupported week start day {params.week_start_day}.")
    if errors:
        raise ValidationError("; ".join(errors), errors)


def log_title(params: FillParams) -> str:
    return f"Fill Operation - {params.staff_member.name} ({format_date_only(params.selected_date)})"


class FillOrchestrator:
    def __init__(
        self,
        services,
        settings: Optional[Dict[str, Any]] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.services = services
        self.settings = dict(settings or {})
        self.generator = RecordGenerator(services.adjuster)
        self._sleep = sleep

    @property
    def record_pause_ms(self) -> int:
        return int(self.settings.get("record_pause_ms", DEFAULT_RECORD_PAUSE_MS))

    # Analysis

    def _select_contract(
        self,
        params: FillParams,
        contract_id: Optional[str],
        analysis: AnalysisRecorder,
    ) -> Contract:
        staff = params.staff_member
        repository = self.services.contracts
        all_contracts = repository.contracts_for_staff(staff.employee_id, params.manager_id, params.group_id)
        active = repository.active_contracts(
            staff.employee_id, params.manager_id, params.group_id, params.selected_date
        )
        if contract_id is not None:
            active = [contract for contract in active if contract.id == str(contract_id)]
        selected = active[0] if active else None
        analysis.record_contracts(all_contracts, active, selected)
        if selected is None:
            raise NoActiveContractError(
                f"No active contracts found for {staff.name} in {params.selected_date:%B %Y}."
            )
        if len(active) > 1:
            logger.warning(
                "%s has %s active contracts in %s; using %s",
                staff.name,
                len(active),
                format_date_only(params.selected_date),
                selected.id,
            )
        return selected

    def _resolve(
        self,
        params: FillParams,
        contract_id: Optional[str],
        trail: _StateTrail,
        analysis: AnalysisRecorder,
    ) -> FillContext:
        trail.enter(FillState.ANALYZING_CONTRACTS)
        contract = self._select_contract(params, contract_id, analysis)
        period = month_period(params.selected_date, contract.start_date, contract.finish_date)

        trail.enter(FillState.RESOLVING_TEMPLATES)
        templates = TemplateIndex.load(
            self.services.templates,
            contract.id,
            params.week_start_day,
            params.manager_id,
            params.group_id,
        )
        analysis.record_templates(contract, templates, params.week_start_day)
        if templates.is_empty:
            raise NoTemplatesError(
                f"No active weekly templates for contract {contract.id} ({contract.template or 'No name'})."
            )
        report = templates.validate()
        for issue in report["issues"]:
            logger.warning("Template issue for contract %s: %s", contract.id, issue)

        trail.enter(FillState.CLASSIFYING_CONFLICTS)
        staff = params.staff_member
        existing = self.services.records.existing_records(
            staff.employee_id, params.manager_id, params.group_id, period.first_day, period.last_day
        )
        existing = filter_existing(existing, contract.id)
        outcome = classify(existing)
        logger.info("[%s] %s", staff.name, describe_outcome(outcome))
        return FillContext(contract, period, templates, existing, outcome, analysis)

    # Public checks

    def check_eligibility(self, params: FillParams) -> EligibilityResult:
        analysis = AnalysisRecorder()
        try:
            validate_params(params)
            context = self._resolve(params, None, _StateTrail(params.staff_member.name), analysis)
        except FillError as exc:
            return EligibilityResult(eligible=False, reason=exc.message)
        outcome = context.outcome
        if isinstance(outcome, ProcessedRecordsBlock):
            return EligibilityResult(
                eligible=False,
                reason=describe_outcome(outcome),
                contract_id=context.contract.id,
                has_processed_records=True,
                outcome=outcome,
            )
        return EligibilityResult(
            eligible=True,
            reason=describe_outcome(outcome),
            contract_id=context.contract.id,
            outcome=outcome,
        )

    def check_for_fill(self, params: FillParams) -> FillCheckResult:
        analysis = AnalysisRecorder()
        try:
            validate_params(params)
            context = self._resolve(params, None, _StateTrail(params.staff_member.name), analysis)
        except FillError as exc:
            return FillCheckResult(requires_dialog=False, dialog_outcome=None, can_proceed=False, message=exc.message)
        outcome = context.outcome
        return FillCheckResult(
            requires_dialog=not isinstance(outcome, EmptySchedule),
            dialog_outcome=outcome,
            can_proceed=not isinstance(outcome, ProcessedRecordsBlock),
            contract_id=context.contract.id,
            message=describe_outcome(outcome),
        )

    # Fill

    def perform_fill(
        self,
        params: FillParams,
        contract_id: Optional[str] = None,
        replace_existing: bool = False,
    ) -> FillResult:
        trail = _StateTrail(params.staff_member.name if params and params.staff_member else "?")
        analysis = AnalysisRecorder()
        trail.enter(FillState.VALIDATING_PARAMS)
        try:
            validate_params(params)
        except ValidationError as exc:
            logger.warning("Fill rejected: %s", exc.message)
            return self._failed(trail, exc.message, log_result=RESULT_ERROR)

        try:
            context = self._resolve(params, contract_id, trail, analysis)
        except FillError as exc:
            logger.warning("[%s] Fill stopped: %s", params.staff_member.name, exc.message)
            self._write_log(params, exc.log_result, self._message(params, exc.message, analysis), contract_id)
            return self._failed(trail, exc.message, log_result=exc.log_result, analysis=analysis)

        outcome = context.outcome
        if isinstance(outcome, ProcessedRecordsBlock):
            conflict = ProcessedRecordsConflict(outcome.processed_count, outcome.total_count)
            self._write_log(
                params, conflict.log_result, self._message(params, conflict.message, analysis), context.contract.id
            )
            result = self._failed(trail, conflict.message, log_result=conflict.log_result, analysis=analysis)
            result.contract_id = context.contract.id
            result.outcome = outcome
            return result
        if isinstance(outcome, UnprocessedRecordsReplace) and not replace_existing:
            trail.enter(FillState.AWAITING_CONFIRMATION)
            return FillResult(
                success=False,
                message=describe_outcome(outcome),
                log_result=RESULT_INFO,
                state=trail.current,
                states=list(trail.states),
                contract_id=context.contract.id,
                outcome=outcome,
                analysis=analysis.to_dict(),
            )
        return self._generate_and_save(params, context, trail)

    def _generate_and_save(self, params: FillParams, context: FillContext, trail: _StateTrail) -> FillResult:
        staff = params.staff_member
        analysis = context.analysis
        try:
            trail.enter(FillState.GENERATING)
            holidays = self.services.holidays.holidays_for_month(params.selected_date)
            leaves = self.services.leaves.leaves_for_month(
                params.selected_date, staff.employee_id, params.manager_id, params.group_id
            )
            generated = self.generator.generate(params, context.contract, holidays, leaves, context.templates, analysis)
            records = self._apply_skip_policy(generated.records)
            check = validate_records(records)
            for issue in check["issues"]:
                logger.warning("[%s] %s", staff.name, issue)

            trail.enter(FillState.PERSISTING)
            deleted = self._delete_existing(context.existing)
            analysis.deleted_records = deleted
            saved = self.save_records(records, params)
            analysis.record_save(saved.success_count, saved.total_records, saved.errors)
        except FillError as exc:
            logger.error("[%s] Fill failed: %s", staff.name, exc.message)
            self._write_log(params, RESULT_ERROR, self._message(params, exc.message, analysis), context.contract.id)
            result = self._failed(trail, exc.message, log_result=RESULT_ERROR, analysis=analysis)
            result.contract_id = context.contract.id
            return result

        success = saved.success_count > 0
        if success:
            message = f"Created {saved.success_count} of {saved.total_records} record(s) for {staff.name}."
        elif not records:
            message = f"No records were generated for {staff.name}."
        else:
            message = f"Failed to save any of {saved.total_records} record(s) for {staff.name}."
        if deleted:
            message += f" Replaced {deleted} existing record(s)."
        log_result = RESULT_SUCCESS if success else RESULT_ERROR
        self._write_log(
            params,
            log_result,
            self._message(params, message, analysis, holidays=holidays, leaves=leaves),
            context.contract.id,
        )
        trail.enter(FillState.DONE if success else FillState.FAILED)
        return FillResult(
            success=success,
            message=message,
            created_count=saved.success_count,
            deleted_count=deleted,
            log_result=log_result,
            state=trail.current,
            states=list(trail.states),
            contract_id=context.contract.id,
            outcome=context.outcome,
            analysis=analysis.to_dict(),
        )

    def _apply_skip_policy(self, records: List[GeneratedRecord]) -> List[GeneratedRecord]:
        skip_holidays = bool(self.settings.get("skip_holidays"))
        skip_leave = bool(self.settings.get("skip_leave_days"))
        if not (skip_holidays or skip_leave):
            return records
        kept = [
            record
            for record in records
            if not (skip_holidays and record.is_holiday) and not (skip_leave and record.leave_type)
        ]
        if len(kept) != len(records):
            logger.info("Skip policy dropped %s record(s)", len(records) - len(kept))
        return kept

    def _delete_existing(self, existing: List[ExistingRecord]) -> int:
        deleted = 0
        for record in existing:
            if self.services.records.mark_deleted(record.id):
                deleted += 1
            else:
                logger.warning("Existing record %s could not be marked deleted", record.id)
        return deleted

    def save_records(self, records: List[GeneratedRecord], params: FillParams) -> SaveResult:
        """Persist records one by one in date order, pausing between writes."""
        staff = params.staff_member
        ordered = sorted(records, key=lambda item: (item.date, item.shift_number))
        pause = self.record_pause_ms / 1000.0
        saved = 0
        errors: List[str] = []
        for index, record in enumerate(ordered):
            try:
                record_id = self.services.records.create(record, staff.employee_id, params.manager_id, params.group_id)
                if not record_id:
                    raise PersistenceError(f"Record {index + 1} ({record.date.isoformat()}) returned no id", index)
                saved += 1
            except PersistenceError as exc:
                errors.append(exc.message)
                logger.error("[%s] %s", staff.name, exc.message)
            except PlatformError as exc:
                message = f"Record {index + 1} ({record.date.isoformat()}): {exc.message}"
                errors.append(message)
                logger.error("[%s] %s", staff.name, message)
            if pause > 0 and index < len(ordered) - 1:
                self._sleep(pause)
        logger.info("[%s] Saved %s of %s record(s)", staff.name, saved, len(ordered))
        return SaveResult(success_count=saved, total_records=len(ordered), errors=errors)

    # Auto fill

    def perform_auto_fill(self, params: FillParams) -> AutoFillResult:
        staff = params.staff_member if params else None
        if staff is not None and not staff.auto_schedule:
            return AutoFillResult(
                success=False,
                message=f"Auto schedule is disabled for {staff.name}.",
                skipped=True,
                skip_reason="auto_schedule_disabled",
                log_result=RESULT_INFO,
            )
        trail = _StateTrail(staff.name if staff else "?")
        analysis = AnalysisRecorder()
        trail.enter(FillState.VALIDATING_PARAMS)
        try:
            validate_params(params)
            context = self._resolve(params, None, trail, analysis)
        except ValidationError as exc:
            return AutoFillResult(success=False, message=exc.message, log_result=RESULT_ERROR)
        except FillError as exc:
            self._write_log(params, exc.log_result, self._message(params, exc.message, analysis, auto=True))
            return AutoFillResult(success=False, message=exc.message, log_result=exc.log_result)

        if isinstance(context.outcome, ProcessedRecordsBlock):
            conflict = ProcessedRecordsConflict(context.outcome.processed_count, context.outcome.total_count)
            self._write_log(
                params,
                conflict.log_result,
                self._message(params, conflict.message, analysis, auto=True),
                context.contract.id,
            )
            return AutoFillResult(
                success=False,
                message=conflict.message,
                skipped=True,
                skip_reason="processed_records",
                log_result=conflict.log_result,
            )

        result = self._generate_and_save(params, context, trail)
        return AutoFillResult(
            success=result.success,
            message=result.message,
            created_count=result.created_count,
            log_result=result.log_result,
        )

    def log_user_refusal(
        self,
        params: FillParams,
        outcome: DialogOutcome,
        contract_id: Optional[str] = None,
    ) -> Optional[str]:
        message = (
            f"User cancelled the {getattr(outcome, 'kind', 'fill')} dialog for {params.staff_member.name}. "
            f"{describe_outcome(outcome)}"
        )
        logger.info(message)
        return self._write_log(params, RESULT_INFO, self._message(params, message, None), contract_id)

    # Logging

    def _failed(
        self,
        trail: _StateTrail,
        message: str,
        *,
        log_result: int,
        analysis: Optional[AnalysisRecorder] = None,
    ) -> FillResult:
        trail.enter(FillState.FAILED)
        return FillResult(
            success=False,
            message=message,
            log_result=log_result,
            state=trail.current,
            states=list(trail.states),
            analysis=analysis.to_dict() if analysis is not None and analysis.has_data else None,
        )

    def _message(
        self,
        params: FillParams,
        message: str,
        analysis: Optional[AnalysisRecorder],
        *,
        holidays: Optional[List[Holiday]] = None,
        leaves: Optional[List[LeavePeriod]] = None,
        auto: bool = False,
    ) -> str:
        staff = params.staff_member
        lines = [
            "=== AUTO FILL OPERATION ===" if auto else "=== FILL OPERATION ===",
            f"Staff: {staff.name} (ID: {staff.employee_id})",
            f"Period: {format_date_only(params.selected_date)}",
            f"Manager: {params.manager_id or 'N/A'}",
            f"Staff Group: {params.group_id or 'N/A'}",
            f"Week start day: {WEEK_START_DAYS.get(params.week_start_day, params.week_start_day)}",
            "",
            f"RESULT: {message}",
            "",
        ]
        if holidays is not None:
            lines.append("--- HOLIDAYS ---")
            lines.extend(f"{format_date_only(item.date)}: {item.title}" for item in holidays)
            if not holidays:
                lines.append("No holidays found in period")
            lines.append("")
        if leaves is not None:
            lines.append("--- LEAVES ---")
            for leave in leaves:
                end = format_date_only(leave.end_date) if leave.end_date else "open"
                lines.append(f"{format_date_only(leave.start_date)} - {end}: {leave.title} (Type: {leave.type_of_leave})")
            if not leaves:
                lines.append("No leaves found in period")
            lines.append("")
        if analysis is not None and analysis.has_data:
            lines.append(analysis.report(LEVEL_DETAILED))
        return "\n".join(lines)

    def _write_log(
        self,
        params: FillParams,
        result: int,
        message: str,
        contract_id: Optional[str] = None,
    ) -> Optional[str]:
        staff = params.staff_member
        try:
            return self.services.audit.write_log(
                log_title(params),
                result,
                message,
                to_date_only(params.selected_date),
                manager_id=params.manager_id if has_id(params.manager_id) else None,
                staff_member_id=staff.employee_id if has_id(staff.employee_id) else None,
                group_id=params.group_id if has_id(params.group_id) else None,
                contract_id=contract_id if has_id(contract_id) else None,
            )
        except PlatformError as exc:
            logger.error("Could not write schedule log for %s: %s", staff.name, exc.message)
            return None
