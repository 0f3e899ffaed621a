"""Master series models."""

from datetime import date, datetime, timedelta
from typing import Any, Optional
from pydantic import AliasChoices, Field, field_validator

from taskview.models.task import (
    Attachment,
    RecurrenceInfo,
    TaskRecord,
    TaskStatus,
    TaskType,
    UserRef,
    WireModel,
)


class DateRange(WireModel):
    """First and last due date across a series."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None


def _due_sort_key(task: TaskRecord) -> tuple:
    # Undated instances sort after dated ones
    if task.due_date is None:
        return (1, 0.0)
    return (0, task.due_date.timestamp())


class MasterSeriesRecord(WireModel):
    """
    Aggregate over all task instances sharing a series id.

    Counters are computed by the server from the live instance set and are
    never recomputed here.
    """
    series_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("taskGroupId", "seriesId", "series_id", "_id"),
    )
    title: str = ""
    description: Optional[str] = None
    task_type: Optional[str] = None
    priority: Optional[str] = None
    assigned_by: Optional[UserRef] = None
    assigned_to: Optional[UserRef] = None
    parent_task_info: Optional[RecurrenceInfo] = None
    week_off_days: list[int] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)
    instance_count: int = 0
    completed_count: int = 0
    pending_count: int = 0
    deleted_count: int = 0
    tasks: list[TaskRecord] = Field(default_factory=list)
    date_range: Optional[DateRange] = None
    deleted_at: Optional[datetime] = None
    auto_delete_at: Optional[datetime] = None

    @field_validator("series_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @field_validator("week_off_days", "attachments", "tasks", mode="before")
    @classmethod
    def _null_lists(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_forever(self) -> bool:
        return bool(self.parent_task_info and self.parent_task_info.is_forever is True)

    @property
    def has_attachments(self) -> bool:
        return len(self.attachments) > 0

    @property
    def assignee_id(self) -> Optional[str]:
        return self.assigned_to.id if self.assigned_to else None

    @property
    def assigner_name(self) -> Optional[str]:
        return self.assigned_by.username if self.assigned_by else None

    @property
    def filter_date(self) -> Optional[datetime]:
        """Range start: explicit date range, then recurrence start, then earliest instance."""
        if self.date_range and self.date_range.start:
            return self.date_range.start
        if self.parent_task_info and self.parent_task_info.original_start_date:
            return self.parent_task_info.original_start_date
        dated = [t.due_date for t in self.tasks if t.due_date is not None]
        return min(dated) if dated else None

    @property
    def has_instance_detail(self) -> bool:
        """Whether nested instances are present (the light endpoint omits them)."""
        return len(self.tasks) > 0 or self.instance_count == 0

    @property
    def instance_ids(self) -> list[str]:
        return [task.id for task in self.tasks]

    def matches_status(self, status: str, today: Optional[date] = None) -> bool:
        if self.tasks:
            return any(task.matches_status(status, today) for task in self.tasks)
        if status == TaskStatus.PENDING.value:
            return self.pending_count > 0
        if status == TaskStatus.COMPLETED.value:
            return self.completed_count > 0
        if status == TaskStatus.DELETED.value:
            return self.deleted_count > 0
        return False

    def with_sorted_tasks(self) -> "MasterSeriesRecord":
        """Copy with instances ordered by due date ascending."""
        return self.model_copy(update={"tasks": sorted(self.tasks, key=_due_sort_key)})

    def with_auto_delete(self, retention_days: int) -> "MasterSeriesRecord":
        """Fill in missing auto_delete_at on the series and its instances."""
        update: dict[str, Any] = {
            "tasks": [task.with_auto_delete(retention_days) for task in self.tasks],
        }
        if self.auto_delete_at is None and self.deleted_at is not None:
            update["auto_delete_at"] = self.deleted_at + timedelta(days=retention_days)
        return self.model_copy(update=update)


SCHEDULE_FIELDS = (
    "task_type",
    "start_date",
    "end_date",
    "is_forever",
    "include_sunday",
    "weekly_days",
    "monthly_day",
    "yearly_duration",
    "week_off_days",
)


class SeriesUpdate(WireModel):
    """
    Edit of a series. Unset fields are left out of the request and stay
    unchanged on the server; setting any schedule field makes the server
    regenerate the series' future instances.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    assigned_to: Optional[str] = Field(None, description="User id of the new assignee")
    task_type: Optional[TaskType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_forever: Optional[bool] = None
    include_sunday: Optional[bool] = None
    weekly_days: Optional[list[int]] = None
    monthly_day: Optional[int] = Field(None, ge=1, le=31)
    yearly_duration: Optional[int] = Field(None, ge=1)
    week_off_days: Optional[list[int]] = None

    @property
    def reschedules(self) -> bool:
        return any(getattr(self, name) is not None for name in SCHEDULE_FIELDS)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
