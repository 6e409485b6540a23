from __future__ import annotations

from typing import Iterable, List, Optional

from .types import (
    DialogOutcome,
    EmptySchedule,
    ExistingRecord,
    ProcessedRecordsBlock,
    UnprocessedRecordsReplace,
)


def is_processed(record: ExistingRecord) -> bool:
    """Checked or exported records belong to payroll and must not be regenerated."""
    if (record.checked or 0) > 0:
        return True
    export_result = (record.export_result or "").strip()
    return export_result not in {"", "0"}


def filter_existing(records: Iterable[ExistingRecord], contract_id: Optional[str] = None) -> List[ExistingRecord]:
    kept: List[ExistingRecord] = []
    for record in records:
        if record.deleted:
            continue
        if contract_id is not None and record.contract_id is not None and str(record.contract_id) != str(contract_id):
            continue
        kept.append(record)
    return kept


def classify(records: Iterable[ExistingRecord], contract_id: Optional[str] = None) -> DialogOutcome:
    existing = filter_existing(records, contract_id)
    if not existing:
        return EmptySchedule()
    processed_count = sum(1 for record in existing if is_processed(record))
    if processed_count > 0:
        return ProcessedRecordsBlock(processed_count=processed_count, total_count=len(existing))
    return UnprocessedRecordsReplace(count=len(existing))


def describe_outcome(outcome: DialogOutcome) -> str:
    if isinstance(outcome, ProcessedRecordsBlock):
        return (
            f"Found {outcome.total_count} existing record(s), {outcome.processed_count} already processed. "
            "Processed records cannot be replaced."
        )
    if isinstance(outcome, UnprocessedRecordsReplace):
        return f"Found {outcome.count} existing record(s). They will be deleted and replaced."
    return "No existing records for this period."
