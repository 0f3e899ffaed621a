"""Single-item mutations followed by cache invalidation and refetch."""

from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from taskview.models.series import MasterSeriesRecord, SeriesUpdate
from taskview.models.task import TaskRecord
from taskview.services.data_source import DataSource
from taskview.services.notifications import LoggingNotifier, Notifier, describe_failure
from taskview.services.task_api import TaskApiClient
from taskview.utils.errors import IneligibleSeriesError, MissingDecisionError, NetworkError, TaskViewError
from taskview.utils.logging import correlation_context, get_structured_logger

logger = get_structured_logger(__name__)


def require_forever(series: MasterSeriesRecord) -> None:
    if not series.is_forever:
        raise IneligibleSeriesError(
            f"Series {series.series_id} is not a forever series and cannot be reassigned",
            series_ids=[series.series_id],
        )


def require_decision(series: MasterSeriesRecord, include_files: Optional[bool]) -> bool:
    """Resolve the include-attachments flag; series with attachments must have an explicit one."""
    if include_files is not None:
        return include_files
    if series.has_attachments:
        raise MissingDecisionError(
            f"Choose whether to include the attachments of series {series.series_id}",
            series_ids=[series.series_id],
        )
    return False


class MutationCoordinator:
    """
    Run one remote mutation, then invalidate the view family and refetch.

    Destructive operations return the view to page 1; restore, reassign and
    series edits keep the current page. Validation errors are raised before
    any network call. Network failures are reported through the notifier and
    the operation returns False.
    """

    def __init__(self, api: TaskApiClient, data_source: DataSource, notifier: Optional[Notifier] = None):
        self.api = api
        self.data_source = data_source
        self.notifier = notifier or LoggingNotifier()

    @property
    def company_id(self) -> str:
        return self.data_source.viewer.company_id

    async def _run(
        self,
        action: str,
        call: Callable[[], Awaitable[Any]],
        success_message: str,
        reset_page: bool,
        **context: Any,
    ) -> bool:
        with correlation_context():
            logger.info("Submitting mutation", action=action, **context)
            try:
                await call()
            except NetworkError as e:
                logger.error(
                    "Mutation failed",
                    action=action,
                    timeout=e.timeout,
                    status_code=e.status_code,
                    error=str(e),
                    exc_info=True,
                    **context
                )
                self.notifier.error(describe_failure(action, e), e)
                return False

            self.notifier.success(success_message)
            await self.data_source.refresh(reset_page=reset_page)
            return True

    async def delete_instance(self, task: TaskRecord) -> bool:
        """Move one instance to the recycle bin."""
        return await self._run(
            "delete task",
            lambda: self.api.soft_delete_task(task.id, self.company_id),
            "Deleted Successfully",
            reset_page=True,
            task_id=task.id,
        )

    async def delete_series(
        self,
        series: MasterSeriesRecord,
        include_files: Optional[bool] = None,
        permanent: bool = False,
    ) -> bool:
        """Delete a whole series, to the bin or permanently."""
        include_files = require_decision(series, include_files)
        return await self._run(
            "delete series",
            lambda: self.api.delete_series(
                series.series_id,
                self.company_id,
                permanent=permanent,
                include_files=include_files,
            ),
            "Master task series permanently deleted" if permanent else "Master task series moved to recycle bin",
            reset_page=True,
            series_id=series.series_id,
            permanent=permanent,
        )

    async def permanent_delete(self, record: Union[TaskRecord, MasterSeriesRecord]) -> bool:
        if isinstance(record, MasterSeriesRecord):
            record_id, message = record.series_id, "Master task series permanently deleted"
        else:
            record_id, message = record.id, "Task permanently deleted"
        return await self._run(
            "permanently delete",
            lambda: self.api.permanent_delete(record_id),
            message,
            reset_page=True,
            record_id=record_id,
        )

    async def restore(self, record: Union[TaskRecord, MasterSeriesRecord]) -> bool:
        if isinstance(record, MasterSeriesRecord):
            return await self._run(
                "restore series",
                lambda: self.api.restore_series(record.series_id),
                "Master task series restored successfully",
                reset_page=False,
                series_id=record.series_id,
            )
        return await self._run(
            "restore task",
            lambda: self.api.restore_task(record.id),
            "Task restored successfully",
            reset_page=False,
            task_id=record.id,
        )

    async def instance_ids_for(self, series: MasterSeriesRecord) -> list[str]:
        """Constituent instance ids, fetching the detailed series when only the light shape is held."""
        if series.has_instance_detail:
            return series.instance_ids

        logger.debug("Fetching series detail for instance ids", series_id=series.series_id)
        payload = await self.api.get_series_detail(series.series_id, self.company_id)
        try:
            detail = MasterSeriesRecord.model_validate(payload)
        except ValidationError as e:
            raise NetworkError(f"Series detail for {series.series_id} could not be decoded") from e
        return detail.instance_ids

    async def submit_reassign(self, series: MasterSeriesRecord, include_files: Optional[bool] = None) -> None:
        """
        Validate and send one reassign call without refreshing the view.

        Raises IneligibleSeriesError, MissingDecisionError or NetworkError.
        """
        require_forever(series)
        include = require_decision(series, include_files)
        task_ids = await self.instance_ids_for(series)
        await self.api.reassign_series(series.series_id, include, self.company_id, task_ids)

    async def reassign_series(self, series: MasterSeriesRecord, include_files: Optional[bool] = None) -> bool:
        """Reassign a forever series for the next period."""
        require_forever(series)
        require_decision(series, include_files)
        return await self._run(
            "reassign series",
            lambda: self.submit_reassign(series, include_files),
            "Series reassigned successfully",
            reset_page=False,
            series_id=series.series_id,
        )

    async def update_series(self, series: MasterSeriesRecord, update: SeriesUpdate) -> bool:
        """Edit a series and, when schedule fields change, reschedule its instances."""
        changes = update.to_payload()
        if not changes:
            raise TaskViewError(f"No changes given for series {series.series_id}")
        return await self._run(
            "update series",
            lambda: self.api.reschedule_series(series.series_id, changes),
            "Master task updated and rescheduled successfully.",
            reset_page=False,
            series_id=series.series_id,
            reschedules=update.reschedules,
        )
