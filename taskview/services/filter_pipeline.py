"""
Filter pipeline for in-memory task collections.

Each stage is a pure function of (collection, field value) that returns a new
list and passes the collection through unchanged when its field is at the
"all" sentinel. Stages work on both TaskRecord and MasterSeriesRecord through
their shared accessors (assignee_id, assigner_name, filter_date,
matches_status).
"""

from datetime import date
from typing import Callable, Optional, Sequence, TypeVar

from taskview.models.filters import ALL, FilterState
from taskview.models.series import MasterSeriesRecord
from taskview.models.task import TaskRecord
from taskview.models.viewer import Viewer
from taskview.utils.logging import get_structured_logger, sanitize_search_text
from taskview.utils.time_utils import local_date

logger = get_structured_logger(__name__)

R = TypeVar("R", TaskRecord, MasterSeriesRecord)


def filter_by_scope(records: Sequence[R], viewer: Viewer, assigned_to: str = ALL) -> list[R]:
    """Own records for regular viewers; optional assignee narrowing for privileged ones."""
    if not viewer.is_privileged:
        target = viewer.user_id
    elif assigned_to != ALL:
        target = assigned_to
    else:
        return list(records)
    return [r for r in records if r.assignee_id is not None and str(r.assignee_id) == str(target)]


def filter_by_type(records: Sequence[R], task_type: str) -> list[R]:
    if task_type == ALL:
        return list(records)
    return [r for r in records if r.task_type == task_type]


def filter_by_priority(records: Sequence[R], priority: str) -> list[R]:
    if priority == ALL:
        return list(records)
    return [r for r in records if r.priority == priority]


def filter_by_status(records: Sequence[R], status: str, today: Optional[date] = None) -> list[R]:
    """Status equality; 'overdue' is pending with a due date before local midnight."""
    if status == ALL:
        return list(records)
    return [r for r in records if r.matches_status(status, today)]


def filter_by_assigner(records: Sequence[R], assigner_name: str) -> list[R]:
    if assigner_name == ALL:
        return list(records)
    wanted = assigner_name.strip().casefold()
    return [
        r for r in records
        if r.assigner_name is not None and r.assigner_name.strip().casefold() == wanted
    ]


def filter_by_search(records: Sequence[R], search: str) -> list[R]:
    needle = search.strip().casefold()
    if not needle:
        return list(records)
    return [
        r for r in records
        if needle in (r.title or "").casefold() or needle in (r.description or "").casefold()
    ]


def filter_by_date_range(
    records: Sequence[R],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> list[R]:
    """Inclusive range test on each record's filter date; either bound may be open."""
    if date_from is None and date_to is None:
        return list(records)

    kept = []
    for r in records:
        day = local_date(r.filter_date)
        if day is None:
            continue
        if date_from is not None and day < date_from:
            continue
        if date_to is not None and day > date_to:
            continue
        kept.append(r)
    return kept


class FilterPipeline:
    """Apply all filter stages in a fixed order, cheapest and most selective first."""

    def apply(
        self,
        records: Sequence[R],
        filters: FilterState,
        viewer: Viewer,
        today: Optional[date] = None,
    ) -> list[R]:
        stages: list[Callable[[list[R]], list[R]]] = [
            lambda rs: filter_by_scope(rs, viewer, filters.assigned_to),
            lambda rs: filter_by_type(rs, filters.task_type),
            lambda rs: filter_by_priority(rs, filters.priority),
            lambda rs: filter_by_status(rs, filters.status, today),
            lambda rs: filter_by_assigner(rs, filters.assigned_by),
            lambda rs: filter_by_date_range(rs, filters.date_from, filters.date_to),
            lambda rs: filter_by_search(rs, filters.search),
        ]

        result = list(records)
        for stage in stages:
            if not result:
                break
            result = stage(result)

        logger.debug(
            "Filter pipeline applied",
            input_count=len(records),
            output_count=len(result),
            search=sanitize_search_text(filters.search),
        )
        return result
