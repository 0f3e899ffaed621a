"""Task instance models."""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from taskview.utils.time_utils import is_before_today


class TaskType(str, Enum):
    """Task recurrence types."""
    ONE_TIME = "one-time"
    DAILY = "daily"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class TaskStatus(str, Enum):
    """Task status values. OVERDUE is derived at filter time, never persisted by the engine."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    REJECTED = "rejected"
    DELETED = "deleted"


class WireModel(BaseModel):
    """Base for records decoded from camelCase API payloads."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class UserRef(WireModel):
    """User reference as embedded in task payloads."""
    id: Optional[str] = Field(None, validation_alias=AliasChoices("_id", "id"))
    username: Optional[str] = None
    email: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_id(cls, value: Any) -> Any:
        # Some endpoints send the unpopulated reference
        if isinstance(value, str):
            return {"_id": value}
        return value

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return None if value is None else str(value)


class Attachment(WireModel):
    """File attached to a task or to its completion."""
    filename: str
    original_name: Optional[str] = None
    path: Optional[str] = None
    size: int = 0
    uploaded_at: Optional[datetime] = None


class RecurrenceInfo(WireModel):
    """Recurrence parameters shared by all instances of a series (wire name: parentTaskInfo)."""
    original_start_date: Optional[datetime] = None
    original_end_date: Optional[datetime] = None
    is_forever: bool = False
    include_sunday: bool = True
    weekly_days: list[int] = Field(default_factory=list)
    week_off_days: list[int] = Field(default_factory=list)
    monthly_day: Optional[int] = None
    yearly_duration: Optional[int] = None

    @field_validator("weekly_days", "week_off_days", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("is_forever", mode="before")
    @classmethod
    def _null_forever(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("include_sunday", mode="before")
    @classmethod
    def _null_include_sunday(cls, value: Any) -> Any:
        return True if value is None else value


class TaskRecord(WireModel):
    """A single occurrence of a one-time or recurring task."""
    id: str = Field(..., validation_alias=AliasChoices("_id", "id"))
    title: str = ""
    description: Optional[str] = None
    task_type: Optional[str] = Field(None, description="one-time, daily, weekly, monthly, quarterly, yearly")
    assigned_by: Optional[UserRef] = None
    assigned_to: Optional[UserRef] = None
    due_date: Optional[datetime] = None
    priority: Optional[str] = Field(None, description="low, normal, high, urgent")
    status: str = Field(default=TaskStatus.PENDING.value, description="pending, in-progress, completed, rejected, deleted")
    series_id: Optional[str] = Field(None, validation_alias=AliasChoices("taskGroupId", "seriesId", "series_id"))
    sequence_number: Optional[int] = None
    parent_task_info: Optional[RecurrenceInfo] = None
    attachments: list[Attachment] = Field(default_factory=list)
    completed_at: Optional[datetime] = None
    completion_remarks: Optional[str] = None
    completion_attachments: list[Attachment] = Field(default_factory=list)
    deleted_at: Optional[datetime] = None
    auto_delete_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("attachments", "completion_attachments", mode="before")
    @classmethod
    def _null_lists(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @property
    def assignee_id(self) -> Optional[str]:
        return self.assigned_to.id if self.assigned_to else None

    @property
    def assigner_name(self) -> Optional[str]:
        return self.assigned_by.username if self.assigned_by else None

    @property
    def filter_date(self) -> Optional[datetime]:
        """Date used by date-range filtering."""
        return self.due_date

    @property
    def has_attachments(self) -> bool:
        return len(self.attachments) > 0

    def is_overdue(self, today: Optional[date] = None) -> bool:
        """Pending and due before local midnight of ``today``."""
        return self.status == TaskStatus.PENDING.value and is_before_today(self.due_date, today)

    def matches_status(self, status: str, today: Optional[date] = None) -> bool:
        if status == TaskStatus.OVERDUE.value:
            return self.is_overdue(today)
        return self.status == status

    def with_auto_delete(self, retention_days: int) -> "TaskRecord":
        """Fill in auto_delete_at from deleted_at when the server did not send it."""
        if self.auto_delete_at is not None or self.deleted_at is None:
            return self
        return self.model_copy(update={"auto_delete_at": self.deleted_at + timedelta(days=retention_days)})
