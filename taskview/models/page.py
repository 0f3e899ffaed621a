"""Paging and view-state models."""

from enum import Enum
from typing import Union
from pydantic import BaseModel, ConfigDict, Field

from taskview.models.series import MasterSeriesRecord
from taskview.models.task import TaskRecord


class DataMode(str, Enum):
    """DataSource operating modes."""
    PAGED = "paged"
    AGGREGATE = "aggregate"


class PagedResult(BaseModel):
    """One server-side page of task instances."""
    records: list[TaskRecord] = Field(default_factory=list)
    total: int = 0
    total_pages: int = 1
    has_more: bool = False


class ViewState(BaseModel):
    """Snapshot of everything the UI renders for a view."""
    model_config = ConfigDict(frozen=True)

    mode: DataMode = DataMode.PAGED
    records: list[Union[MasterSeriesRecord, TaskRecord]] = Field(default_factory=list)
    total: int = 0
    total_pages: int = 1
    page: int = 1
    page_size: int = 10
    has_more: bool = False
    loading: bool = False
    initial_loading: bool = True
