"""Bulk reassignment of recurring series with per-series attachment decisions."""

import asyncio
from enum import Enum
from typing import Optional

from pydantic import BaseModel
from ulid import ULID

from taskview.models.series import MasterSeriesRecord
from taskview.services.mutation_coordinator import MutationCoordinator
from taskview.services.notifications import LoggingNotifier, Notifier
from taskview.utils.errors import (
    BulkValidationError,
    IneligibleSeriesError,
    MissingDecisionError,
    PartialBulkFailure,
)
from taskview.utils.logging import correlation_context, get_structured_logger

logger = get_structured_logger(__name__)


class BulkState(str, Enum):
    """Bulk session lifecycle."""
    IDLE = "idle"
    SELECTING = "selecting"
    VALIDATING = "validating"
    SUBMITTING = "submitting"


class BulkOutcome(BaseModel):
    """Summary of one bulk submission."""
    session_id: str
    submitted: int
    succeeded: int
    failed: int
    excluded: int


class BulkOperationSession:
    """
    Selection, per-item decisions and concurrent submission of bulk reassigns.

    Only forever series can be selected; anything else offered for selection
    is recorded as excluded so the UI can show it. Validation runs on submit
    and never touches the network. Submission fires one reassign per selected
    series concurrently and reports failures as a count; nothing is rolled
    back or retried.
    """

    def __init__(self, coordinator: MutationCoordinator, notifier: Optional[Notifier] = None):
        self.coordinator = coordinator
        self.notifier = notifier or LoggingNotifier()
        self.state = BulkState.IDLE
        self.session_id = str(ULID())
        self._selected: dict[str, MasterSeriesRecord] = {}
        self._decisions: dict[str, Optional[bool]] = {}
        self._excluded: dict[str, MasterSeriesRecord] = {}

    @property
    def selected_ids(self) -> list[str]:
        return list(self._selected)

    @property
    def excluded_ids(self) -> list[str]:
        return list(self._excluded)

    @property
    def decisions(self) -> dict[str, Optional[bool]]:
        return dict(self._decisions)

    def select(self, series: MasterSeriesRecord) -> bool:
        """Add a series to the selection. Returns False when it was excluded instead."""
        self._require_idle_submission("select")
        series_id = series.series_id
        self.state = BulkState.SELECTING

        if not series.is_forever:
            self._selected.pop(series_id, None)
            self._decisions.pop(series_id, None)
            self._excluded[series_id] = series
            logger.info("Series excluded from bulk selection", session_id=self.session_id, series_id=series_id)
            return False

        self._excluded.pop(series_id, None)
        self._selected[series_id] = series
        self._decisions.setdefault(series_id, None)
        return True

    def deselect(self, series_id: str) -> None:
        self._require_idle_submission("deselect")
        self._selected.pop(series_id, None)
        self._decisions.pop(series_id, None)
        self._excluded.pop(series_id, None)
        if not self._selected and not self._excluded:
            self.state = BulkState.IDLE

    def set_decision(self, series_id: str, include_files: bool) -> None:
        self._require_idle_submission("set_decision")
        if series_id not in self._selected:
            raise BulkValidationError(f"Series {series_id} is not selected", series_ids=[series_id])
        self._decisions[series_id] = include_files

    @property
    def in_flight(self) -> bool:
        return self.state in (BulkState.VALIDATING, BulkState.SUBMITTING)

    def _require_idle_submission(self, action: str) -> None:
        if self.state == BulkState.SUBMITTING:
            raise BulkValidationError(f"Cannot {action} while a bulk submission is in progress")

    def missing_decisions(self) -> list[str]:
        return [
            series_id for series_id, series in self._selected.items()
            if series.has_attachments and self._decisions.get(series_id) is None
        ]

    def validate(self) -> None:
        """Check the selection; on failure the session returns to selecting."""
        self.state = BulkState.VALIDATING
        try:
            if not self._selected:
                raise BulkValidationError("Select at least one series")

            ineligible = [sid for sid, series in self._selected.items() if not series.is_forever]
            if ineligible:
                raise IneligibleSeriesError(
                    f"{len(ineligible)} selected series are not forever series",
                    series_ids=ineligible,
                )

            missing = self.missing_decisions()
            if missing:
                raise MissingDecisionError(
                    f"Choose whether to include attachments for {len(missing)} series",
                    series_ids=missing,
                )
        except BulkValidationError as e:
            self.state = BulkState.SELECTING
            logger.info(
                "Bulk submission blocked",
                session_id=self.session_id,
                reason=str(e),
                series_ids=e.series_ids,
            )
            raise

    async def submit(self) -> BulkOutcome:
        """
        Validate, then reassign every selected series concurrently.

        Raises BulkValidationError without any network call when the
        selection is not submittable. After at least one success the view
        family is invalidated and refetched and the session is reset.
        """
        if self.in_flight:
            raise BulkValidationError("A bulk submission is already in progress", series_ids=self.selected_ids)
        self.validate()
        self.state = BulkState.SUBMITTING
        targets = list(self._selected.values())
        excluded = len(self._excluded)

        with correlation_context():
            logger.info(
                "Submitting bulk reassign",
                session_id=self.session_id,
                series_count=len(targets),
                excluded=excluded,
            )
            try:
                results = await asyncio.gather(
                    *(self.coordinator.submit_reassign(s, self._decisions.get(s.series_id)) for s in targets),
                    return_exceptions=True,
                )
            except asyncio.CancelledError:
                self.state = BulkState.SELECTING
                raise

            failed = 0
            for series, result in zip(targets, results):
                if isinstance(result, BaseException):
                    failed += 1
                    logger.warning(
                        "Bulk reassign call failed",
                        session_id=self.session_id,
                        series_id=series.series_id,
                        error=str(result),
                        error_type=type(result).__name__,
                    )
            succeeded = len(targets) - failed

            outcome = BulkOutcome(
                session_id=self.session_id,
                submitted=len(targets),
                succeeded=succeeded,
                failed=failed,
                excluded=excluded,
            )
            logger.info("Bulk reassign finished", **outcome.model_dump())

        if excluded:
            self.notifier.warning(f"{excluded} of {len(targets) + excluded} selected series excluded")
        if failed:
            failure = PartialBulkFailure(failed, len(targets))
            self.notifier.error(str(failure), failure)

        if succeeded == 0:
            self.state = BulkState.SELECTING
            return outcome

        self.notifier.success(f"{succeeded} series reassigned successfully")
        await self.coordinator.data_source.refresh(reset_page=False)
        self.reset()
        return outcome

    def reset(self) -> None:
        """Clear selection, decisions and exclusions and start a new session."""
        self._selected.clear()
        self._decisions.clear()
        self._excluded.clear()
        self.state = BulkState.IDLE
        self.session_id = str(ULID())
