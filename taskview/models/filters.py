"""Filter state model."""

from datetime import date
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

# Sentinel meaning "no narrowing" for string filters
ALL = ""


class FilterState(BaseModel):
    """Immutable snapshot of the user's filter inputs."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    task_type: str = Field(default=ALL, description="Task type equality")
    status: str = Field(default=ALL, description="Status equality, or the derived 'overdue'")
    priority: str = Field(default=ALL, description="Priority equality")
    assigned_by: str = Field(default=ALL, description="Assigner display name, case-insensitive")
    assigned_to: str = Field(default=ALL, description="Assignee user id (privileged viewers only)")
    search: str = Field(default=ALL, description="Free text over title and description")
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def with_changes(self, **changes: Any) -> "FilterState":
        """Return a validated copy with ``changes`` applied."""
        return FilterState.model_validate({**self.model_dump(), **changes})

    @property
    def is_default(self) -> bool:
        return self == FilterState()

    def changed_fields(self, other: "FilterState") -> set[str]:
        return {
            name for name in type(self).model_fields
            if getattr(self, name) != getattr(other, name)
        }
