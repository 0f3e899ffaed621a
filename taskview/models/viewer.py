"""Viewer model - the already-authenticated user a view is rendered for."""

from pydantic import BaseModel, ConfigDict, Field


class Viewer(BaseModel):
    """Resolved identity and permissions of the dashboard user."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="User id used for own-scope filtering")
    company_id: str = Field(default="", description="Tenant id sent with every request")
    role: str = Field(default="user", description="Role: admin, manager, user")
    can_view_all_team_tasks: bool = False
    can_delete_tasks: bool = False
    can_edit_recurring_task_schedules: bool = False

    @property
    def is_privileged(self) -> bool:
        return self.role == "admin" or self.can_view_all_team_tasks

    @property
    def scope(self) -> str:
        """Role scope component of cache keys."""
        return "privileged" if self.is_privileged else "own"
