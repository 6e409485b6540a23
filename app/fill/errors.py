from __future__ import annotations

from typing import List, Optional

RESULT_ERROR = 1
RESULT_SUCCESS = 2
RESULT_INFO = 3


class FillError(Exception):
    """Base class for fill engine failures that end a single staff run."""

    log_result: int = RESULT_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FillError):
    """Raised when fill parameters are missing or malformed."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [message])


class NoActiveContractError(FillError):
    pass


class NoTemplatesError(FillError):
    pass


class ProcessedRecordsConflict(FillError):
    """Existing records were already checked or exported; the month cannot be refilled."""

    log_result = RESULT_INFO

    def __init__(self, processed_count: int, total_count: int) -> None:
        super().__init__(
            f"Found {processed_count} processed record(s) out of {total_count}; "
            "processed records cannot be replaced."
        )
        self.processed_count = processed_count
        self.total_count = total_count


class PersistenceError(FillError):
    """A single generated record could not be saved."""

    def __init__(self, message: str, record_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.record_index = record_index


class PlatformError(FillError):
    """The backing store failed; carries the original message."""

    def __init__(self, message: str, original: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.original = original
