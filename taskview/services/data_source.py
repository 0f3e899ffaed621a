"""
Dual-mode data source for task dashboard views.

Paged mode asks the server for one window of instances per filter/page
change. Aggregate mode loads every series once from the light endpoint and
does all filtering and paging in memory. Both modes read through the view's
CacheStore and publish a fresh ViewState to subscribers after every change.
"""

from datetime import date, timedelta
from typing import Any, Callable, Optional, Sequence, Union

from pydantic import ValidationError

from taskview.models.filters import ALL, FilterState
from taskview.models.page import DataMode, PagedResult, ViewState
from taskview.models.series import MasterSeriesRecord
from taskview.models.task import TaskRecord, TaskStatus, TaskType
from taskview.models.viewer import Viewer
from taskview.services.cache_store import CacheStore
from taskview.services.filter_pipeline import FilterPipeline, filter_by_scope
from taskview.services.notifications import LoggingNotifier, Notifier, describe_failure
from taskview.services.paginator import Paginator
from taskview.services.task_api import TaskApiClient
from taskview.utils.errors import IntegrityWarning, NetworkError
from taskview.utils.logging import get_structured_logger, mask_user_id, timed

logger = get_structured_logger(__name__)

AGGREGATE_KEY_MARKER = "series-light"
DEFAULT_FALLBACK_LIMIT = 1000

Record = Union[MasterSeriesRecord, TaskRecord]
Listener = Callable[[ViewState], None]


def instance_cache_key(family: str, page: int, page_size: int, scope: str) -> str:
    return f"{family}:instances:p{page}:s{page_size}:{scope}"


def aggregate_cache_key(family: str, scope: str) -> str:
    return f"{family}:{AGGREGATE_KEY_MARKER}:{scope}"


def build_instance_params(
    filters: FilterState,
    page: int,
    page_size: int,
    viewer: Viewer,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """
    Query parameters for one page of instances.

    Regular viewers always send their own id as ``assignedTo``. The derived
    overdue status is not known to the server, so it goes out as pending with
    ``dateTo`` capped at yesterday. Empty values are left out.
    """
    status = filters.status
    date_to = filters.date_to
    if status == TaskStatus.OVERDUE.value:
        yesterday = (today or date.today()) - timedelta(days=1)
        status = TaskStatus.PENDING.value
        date_to = min(date_to, yesterday) if date_to else yesterday

    assigned_to = viewer.user_id if not viewer.is_privileged else filters.assigned_to

    params = {
        "page": page,
        "limit": page_size,
        "taskType": filters.task_type,
        "status": status,
        "priority": filters.priority,
        "assignedTo": assigned_to,
        "assignedBy": filters.assigned_by,
        "search": filters.search.strip(),
        "dateFrom": filters.date_from.isoformat() if filters.date_from else None,
        "dateTo": date_to.isoformat() if date_to else None,
        "companyId": viewer.company_id,
    }
    return {key: value for key, value in params.items() if value is not None and value != ALL}


def decode_page(payload: dict[str, Any]) -> tuple[PagedResult, list[IntegrityWarning]]:
    """Decode an instance page, dropping records that do not validate."""
    records = []
    warnings = []
    for item in payload.get("tasks") or []:
        try:
            records.append(TaskRecord.model_validate(item))
        except ValidationError as e:
            record_id = item.get("_id") if isinstance(item, dict) else None
            warnings.append(IntegrityWarning(f"Undecodable task record: {e.error_count()} errors", record_id=record_id))

    total = payload.get("total")
    result = PagedResult(
        records=records,
        total=total if isinstance(total, int) else len(records),
        total_pages=max(1, payload.get("totalPages") or 1),
        has_more=bool(payload.get("hasMore")),
    )
    return result, warnings


def decode_series_batch(items: Sequence[Any]) -> tuple[list[MasterSeriesRecord], list[IntegrityWarning]]:
    """
    Decode a batch of series and enforce that every instance belongs to
    exactly one series in the batch.

    Undecodable series, series without an id and repeated ids are omitted.
    Nested instances whose series id does not resolve within the batch are
    dropped from their parent.
    """
    warnings: list[IntegrityWarning] = []
    decoded: list[MasterSeriesRecord] = []
    seen: set[str] = set()

    for item in items:
        try:
            series = MasterSeriesRecord.model_validate(item)
        except ValidationError as e:
            warnings.append(IntegrityWarning(f"Undecodable series record: {e.error_count()} errors"))
            continue
        if not series.series_id:
            warnings.append(IntegrityWarning(f"Series without identifier: {series.title!r}"))
            continue
        if series.series_id in seen:
            warnings.append(IntegrityWarning("Duplicate series identifier", series_id=series.series_id))
            continue
        seen.add(series.series_id)
        decoded.append(series)

    batch = []
    for series in decoded:
        kept = []
        for task in series.tasks:
            if task.series_id is not None and task.series_id not in seen:
                warnings.append(IntegrityWarning(
                    "Instance references a series missing from the batch",
                    record_id=task.id,
                    series_id=task.series_id,
                ))
                continue
            kept.append(task)
        if len(kept) != len(series.tasks):
            series = series.model_copy(update={"tasks": kept})
        batch.append(series)

    return batch, warnings


def derive_aggregate(series: Sequence[MasterSeriesRecord], viewer: Viewer) -> list[MasterSeriesRecord]:
    """Shape full-endpoint series like the light endpoint would: scoped, recurring only, tasks sorted."""
    scoped = filter_by_scope(series, viewer)
    return [
        s.with_sorted_tasks()
        for s in scoped
        if s.task_type != TaskType.ONE_TIME.value
    ]


class DataSource:
    """
    Fetch, cache and expose one view's records in paged or aggregate mode.

    Every load takes a generation number; a response that arrives after a
    newer load has started is discarded. Requests in flight are never
    cancelled.
    """

    def __init__(
        self,
        api: TaskApiClient,
        cache: CacheStore,
        viewer: Viewer,
        notifier: Optional[Notifier] = None,
        pipeline: Optional[FilterPipeline] = None,
        page_size: int = 10,
        fallback_limit: int = DEFAULT_FALLBACK_LIMIT,
        mode: DataMode = DataMode.PAGED,
        retention_days: Optional[int] = None,
    ):
        self.api = api
        self.cache = cache
        self.viewer = viewer
        self.notifier = notifier or LoggingNotifier()
        self.pipeline = pipeline or FilterPipeline()
        self.paginator = Paginator(page_size)
        self.fallback_limit = fallback_limit
        self.mode = mode
        self.filters = FilterState()
        # Set for recycle-bin views; enables auto-delete date derivation
        self.retention_days = retention_days
        self.integrity_warnings: list[IntegrityWarning] = []

        self._aggregate: Optional[list[MasterSeriesRecord]] = None
        self._records: list[Record] = []
        self._total = 0
        self._total_pages = 1
        self._has_more = False
        self._loading = False
        self._initial_loading = True
        self._generation = 0
        self._listeners: list[Listener] = []

    @property
    def family(self) -> str:
        return self.api.endpoints.family

    @property
    def instance_prefix(self) -> str:
        return f"{self.family}:instances:"

    @property
    def aggregate_key(self) -> str:
        return aggregate_cache_key(self.family, self.viewer.scope)

    @property
    def aggregate(self) -> Optional[list[MasterSeriesRecord]]:
        """Unfiltered aggregate collection, or None outside aggregate mode."""
        return self._aggregate

    @property
    def records(self) -> list[Record]:
        return self._post_process(self._records)

    @property
    def state(self) -> ViewState:
        return ViewState(
            mode=self.mode,
            records=self.records,
            total=self._total,
            total_pages=self._total_pages,
            page=self.paginator.page,
            page_size=self.paginator.page_size,
            has_more=self._has_more,
            loading=self._loading,
            initial_loading=self._initial_loading,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error("View state listener failed", error=str(e), exc_info=True)

    def _post_process(self, records: Sequence[Record]) -> list[Record]:
        if self.retention_days is None:
            return list(records)
        return [record.with_auto_delete(self.retention_days) for record in records]

    def _begin(self) -> int:
        self._generation += 1
        return self._generation

    def _is_stale(self, generation: int) -> bool:
        if generation != self._generation:
            logger.debug("Discarding superseded response", generation=generation, current=self._generation)
            return True
        return False

    def _set_loading(self, loading: bool) -> None:
        self._loading = loading
        if not loading:
            self._initial_loading = False
        self.publish()

    def _fail(self, error: NetworkError) -> None:
        logger.error(
            "Data load failed",
            mode=self.mode.value,
            timeout=error.timeout,
            status_code=error.status_code,
            error=str(error),
            exc_info=True,
        )
        self.notifier.error(describe_failure("load tasks", error), error)
        if self.mode == DataMode.AGGREGATE:
            self._aggregate = None
        self._records = []
        self._total = 0
        self._total_pages = 1
        self._has_more = False
        self.paginator.update_total(0)
        self._set_loading(False)

    async def load(self, bypass_cache: bool = False) -> None:
        """Load the current mode's data for the current filters and page."""
        if self.mode == DataMode.AGGREGATE:
            await self._load_aggregate(bypass_cache)
        else:
            await self._load_paged(bypass_cache)

    async def _load_paged(self, bypass_cache: bool = False) -> None:
        generation = self._begin()
        page = self.paginator.page
        size = self.paginator.page_size
        params = build_instance_params(self.filters, page, size, self.viewer)
        key = instance_cache_key(self.family, page, size, self.viewer.scope)

        if not bypass_cache:
            cached = self.cache.get(key, params)
            if cached is not None:
                logger.debug("Paged cache hit", cache_key=key)
                self._apply_page(cached)
                return

        self._set_loading(True)
        try:
            payload = await self.api.list_instances(params)
        except NetworkError as e:
            if not self._is_stale(generation):
                self._fail(e)
            return

        if self._is_stale(generation):
            return

        result, warnings = decode_page(payload)
        self.integrity_warnings = []
        self._record_warnings(warnings)
        self.cache.set(key, result, params)
        self._apply_page(result)

    def _apply_page(self, result: PagedResult) -> None:
        self._records = list(result.records)
        self._total = result.total
        self._total_pages = result.total_pages
        self._has_more = result.has_more
        self.paginator.update_total(result.total)
        self._set_loading(False)

    @timed("load_aggregate", logger=logger)
    async def _load_aggregate(self, bypass_cache: bool = False) -> None:
        generation = self._begin()
        key = self.aggregate_key
        params = {"companyId": self.viewer.company_id, "scope": self.viewer.scope}

        if not bypass_cache:
            cached = self.cache.get(key, params)
            if cached is not None:
                logger.debug("Aggregate cache hit", cache_key=key, series_count=len(cached))
                self._aggregate = cached
                self._reslice()
                self._set_loading(False)
                return

        self._set_loading(True)
        try:
            items = await self.api.list_series_light(self.viewer.company_id)
            fallback = not items
            if fallback:
                logger.info(
                    "Light series endpoint returned nothing, using full endpoint",
                    family=self.family,
                    company_id=mask_user_id(self.viewer.company_id),
                    limit=self.fallback_limit,
                )
                items = await self.api.list_series_full(self.viewer.company_id, self.fallback_limit)
        except NetworkError as e:
            if not self._is_stale(generation):
                self._fail(e)
            return

        if self._is_stale(generation):
            return

        series, warnings = decode_series_batch(items)
        self.integrity_warnings = []
        self._record_warnings(warnings)
        if fallback:
            series = derive_aggregate(series, self.viewer)

        self.cache.set(key, series, params)
        self._aggregate = series
        logger.info("Aggregate collection loaded", family=self.family, series_count=len(series), fallback=fallback)
        self._reslice()
        self._set_loading(False)

    def _record_warnings(self, warnings: list[IntegrityWarning]) -> None:
        for warning in warnings:
            logger.warning(
                "Integrity problem in fetched batch",
                problem=str(warning),
                record_id=warning.record_id,
                series_id=warning.series_id,
            )
        self.integrity_warnings.extend(warnings)

    def _reslice(self) -> None:
        """Filter and page the held aggregate collection in memory."""
        filtered = self.pipeline.apply(self._aggregate or [], self.filters, self.viewer)
        self._records = self.paginator.slice(filtered)
        self._total = len(filtered)
        self._total_pages = self.paginator.total_pages
        self._has_more = self.paginator.page < self._total_pages

    async def set_filters(self, filters: FilterState) -> None:
        """Apply a new filter snapshot and return to page 1."""
        if filters == self.filters:
            return
        logger.debug("Filters changed", changed=sorted(filters.changed_fields(self.filters)))
        self.filters = filters
        self.paginator.reset()
        self.cache.invalidate_by_prefix(self.instance_prefix)

        if self.mode == DataMode.AGGREGATE and self._aggregate is not None:
            self._reslice()
            self.publish()
        else:
            await self.load()

    async def set_page(self, page: int) -> None:
        self.paginator.go_to(page)
        if self.mode == DataMode.AGGREGATE and self._aggregate is not None:
            self._reslice()
            self.publish()
        else:
            await self.load()

    async def set_page_size(self, page_size: int) -> None:
        self.paginator.set_page_size(page_size)
        if self.mode == DataMode.AGGREGATE and self._aggregate is not None:
            self._reslice()
            self.publish()
        else:
            await self.load()

    async def set_mode(self, mode: DataMode) -> None:
        """
        Switch between paged and aggregate mode.

        Entering aggregate mode drops the current page and waits for the whole
        collection before exposing content. Leaving it drops the in-memory
        collection, invalidates cached pages and fetches page 1 from the
        server; the aggregate cache entry stays valid.
        """
        if mode == self.mode:
            return
        logger.info("Switching data mode", family=self.family, from_mode=self.mode.value, to_mode=mode.value)
        self.mode = mode
        self.paginator.reset()
        self._records = []
        self._total = 0
        self._total_pages = 1
        self._has_more = False

        if mode == DataMode.AGGREGATE:
            await self._load_aggregate()
        else:
            self._aggregate = None
            self.cache.invalidate_by_prefix(self.instance_prefix)
            await self._load_paged(bypass_cache=True)

    async def toggle_mode(self) -> None:
        await self.set_mode(DataMode.PAGED if self.mode == DataMode.AGGREGATE else DataMode.AGGREGATE)

    def invalidate_all(self) -> int:
        """Drop every cache entry of this view family."""
        return self.cache.invalidate_by_prefix(f"{self.family}:")

    async def refresh(self, reset_page: bool = False) -> None:
        """Invalidate the view family and refetch the active mode."""
        self.invalidate_all()
        if reset_page:
            self.paginator.reset()
        await self.load(bypass_cache=True)

    def close(self) -> None:
        self._generation += 1
        self._listeners.clear()
        self.cache.clear()
