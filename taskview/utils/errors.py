"""Error handling utilities."""

from typing import Optional


class TaskViewError(Exception):
    """Base exception for the task view engine."""
    pass


class NetworkError(TaskViewError):
    """Remote request failed, timed out or returned an unusable payload."""

    def __init__(
        self,
        message: str,
        *,
        timeout: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.timeout = timeout
        self.status_code = status_code


class UnsupportedOperationError(TaskViewError):
    """The view's endpoint set has no endpoint for this operation."""
    pass


class BulkValidationError(TaskViewError):
    """A mutation was rejected locally before reaching the network."""

    def __init__(self, message: str, series_ids: Optional[list[str]] = None):
        super().__init__(message)
        self.series_ids = list(series_ids or [])


class IneligibleSeriesError(BulkValidationError):
    """Series is not a forever series and cannot be reassigned."""
    pass


class MissingDecisionError(BulkValidationError):
    """Series with attachments has no include/exclude attachments decision."""
    pass


class IntegrityWarning(TaskViewError):
    """
    Data-integrity problem in a fetched batch (orphan instance, missing series).

    Recorded and logged, never raised through the engine.
    """

    def __init__(self, message: str, record_id: Optional[str] = None, series_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id
        self.series_id = series_id


class PartialBulkFailure(TaskViewError):
    """Some of the concurrent bulk calls failed."""

    def __init__(self, failed: int, total: int):
        super().__init__(f"{failed} of {total} operations failed")
        self.failed = failed
        self.total = total
