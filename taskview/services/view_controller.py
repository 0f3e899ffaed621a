"""
Per-view wiring of cache, data source, debounced filters, mutations and bulk
operations.

One controller serves one dashboard view (recurring governance or recycle
bin). It owns its CacheStore and HTTP client and releases both on close().
"""

from datetime import date
from typing import Any, Callable, Optional, Union

import httpx
from pydantic import ValidationError

from taskview.models.filters import FilterState
from taskview.models.page import DataMode, ViewState
from taskview.models.series import MasterSeriesRecord, SeriesUpdate
from taskview.models.settings import BinSettings
from taskview.models.task import TaskRecord, UserRef
from taskview.models.viewer import Viewer
from taskview.services.bulk_session import BulkOperationSession, BulkOutcome
from taskview.services.cache_store import CacheStore
from taskview.services.data_source import AGGREGATE_KEY_MARKER, DataSource
from taskview.services.debouncer import Debouncer
from taskview.services.mutation_coordinator import MutationCoordinator
from taskview.services.notifications import LoggingNotifier, Notifier
from taskview.services.task_api import BIN_ENDPOINTS, RECURRING_ENDPOINTS, EndpointSet, TaskApiClient
from taskview.utils.config import EngineConfig
from taskview.utils.errors import NetworkError
from taskview.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)

DEBOUNCED_DATE_FIELDS = ("date_from", "date_to")
USERS_CACHE_KEY = "users"


class TaskViewController:
    """Triggers and reactive state for one task dashboard view."""

    def __init__(
        self,
        api: TaskApiClient,
        viewer: Viewer,
        config: Optional[EngineConfig] = None,
        notifier: Optional[Notifier] = None,
        mode: DataMode = DataMode.PAGED,
    ):
        self.config = config or EngineConfig()
        self.api = api
        self.viewer = viewer
        self.notifier = notifier or LoggingNotifier()
        self.is_recycle_bin = api.endpoints.bin_settings is not None
        self.bin_settings: Optional[BinSettings] = None
        self.users: list[UserRef] = []

        self.cache = CacheStore(
            short_ttl_seconds=self.config.page_cache_ttl_seconds,
            long_ttl_seconds=self.config.aggregate_cache_ttl_seconds,
            long_ttl_markers=(AGGREGATE_KEY_MARKER,),
        )
        self.data_source = DataSource(
            api,
            self.cache,
            viewer,
            notifier=self.notifier,
            page_size=self.config.default_page_size,
            fallback_limit=self.config.fallback_limit,
            mode=mode,
            retention_days=self.config.default_retention_days if self.is_recycle_bin else None,
        )
        self.mutations = MutationCoordinator(api, self.data_source, notifier=self.notifier)
        self.bulk = BulkOperationSession(self.mutations, notifier=self.notifier)

        self._pending_dates: dict[str, Optional[date]] = {}
        self.search_debouncer = Debouncer(
            self.config.search_debounce_seconds,
            on_settle=self._apply_search,
            name="search",
            initial="",
        )
        self.date_debouncer = Debouncer(
            self.config.date_debounce_seconds,
            on_settle=self._apply_dates,
            name="date-range",
        )

        logger.info(
            "Task view created",
            family=api.endpoints.family,
            scope=viewer.scope,
            user_id=mask_user_id(viewer.user_id),
        )

    @classmethod
    def _create(
        cls,
        endpoints: EndpointSet,
        viewer: Viewer,
        config: Optional[EngineConfig],
        notifier: Optional[Notifier],
        transport: Optional[httpx.AsyncBaseTransport],
        mode: DataMode,
    ) -> "TaskViewController":
        config = config or EngineConfig.from_env()
        api = TaskApiClient(
            config.api_base_url,
            endpoints,
            timeout=config.request_timeout_seconds,
            transport=transport,
        )
        return cls(api, viewer, config=config, notifier=notifier, mode=mode)

    @classmethod
    def for_recurring(
        cls,
        viewer: Viewer,
        config: Optional[EngineConfig] = None,
        notifier: Optional[Notifier] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        mode: DataMode = DataMode.PAGED,
    ) -> "TaskViewController":
        """Controller for the recurring-task governance view."""
        return cls._create(RECURRING_ENDPOINTS, viewer, config, notifier, transport, mode)

    @classmethod
    def for_recycle_bin(
        cls,
        viewer: Viewer,
        config: Optional[EngineConfig] = None,
        notifier: Optional[Notifier] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        mode: DataMode = DataMode.PAGED,
    ) -> "TaskViewController":
        """Controller for the recycle-bin view."""
        return cls._create(BIN_ENDPOINTS, viewer, config, notifier, transport, mode)

    async def __aenter__(self) -> "TaskViewController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    @property
    def state(self) -> ViewState:
        return self.data_source.state

    @property
    def filters(self) -> FilterState:
        return self.data_source.filters

    def subscribe(self, listener: Callable[[ViewState], None]) -> Callable[[], None]:
        return self.data_source.subscribe(listener)

    async def start(self) -> None:
        """Initial load; the recycle bin loads its retention settings first."""
        if self.is_recycle_bin:
            await self.load_bin_settings()
        await self.data_source.load()
        if self.viewer.is_privileged:
            await self.load_users()

    async def load_bin_settings(self) -> BinSettings:
        """Fetch retention settings, keeping defaults when they cannot be loaded."""
        settings = BinSettings(retention_days=self.config.default_retention_days)
        try:
            payload = await self.api.get_bin_settings(self.viewer.company_id)
            if payload:
                settings = BinSettings.model_validate(payload)
        except NetworkError as e:
            logger.warning("Bin settings unavailable, using defaults", error=str(e))
        except ValidationError as e:
            logger.warning("Bin settings payload invalid, using defaults", error_count=e.error_count())

        self.bin_settings = settings
        self.data_source.retention_days = settings.retention_days
        return settings

    async def load_users(self) -> list[UserRef]:
        """
        Assignee and assigner choices for privileged viewers.

        The list is cached outside the view family's keys, so mutations and
        refreshes keep it; it is dropped only when it expires or the view
        closes. Regular viewers get an empty list without a request.
        """
        if not self.viewer.is_privileged:
            return []

        params = {"companyId": self.viewer.company_id, "role": self.viewer.role}
        cached = self.cache.get(USERS_CACHE_KEY, params)
        if cached is not None:
            self.users = cached
            return cached

        try:
            items = await self.api.list_users(self.viewer.company_id, role=self.viewer.role)
        except NetworkError as e:
            logger.warning("User list unavailable", error=str(e))
            self.notifier.error("Failed to load users", e)
            return self.users

        users = []
        for item in items:
            try:
                users.append(UserRef.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping undecodable user", error_count=e.error_count())

        self.cache.set(USERS_CACHE_KEY, users, params)
        self.users = users
        return users

    async def set_filter(self, **changes: Any) -> None:
        """
        Change one or more filter fields.

        Search text settles through the search debouncer and date bounds
        through the date debouncer; every other field applies immediately.
        Unknown field names or invalid values raise before anything is queued.
        """
        self.data_source.filters.with_changes(**changes)

        immediate = {k: v for k, v in changes.items() if k != "search" and k not in DEBOUNCED_DATE_FIELDS}
        dates = {k: v for k, v in changes.items() if k in DEBOUNCED_DATE_FIELDS}

        if "search" in changes:
            await self.search_debouncer.push(changes["search"])
        if dates:
            self._pending_dates.update(dates)
            await self.date_debouncer.push(dict(self._pending_dates))
        if immediate:
            await self.data_source.set_filters(self.data_source.filters.with_changes(**immediate))

    async def _apply_search(self, search: str) -> None:
        await self.data_source.set_filters(self.data_source.filters.with_changes(search=search))

    async def _apply_dates(self, dates: dict[str, Optional[date]]) -> None:
        self._pending_dates = {}
        await self.data_source.set_filters(self.data_source.filters.with_changes(**dates))

    async def flush_filters(self) -> None:
        """Settle pending debounced input now."""
        await self.search_debouncer.flush()
        await self.date_debouncer.flush()

    async def reset_filters(self) -> None:
        self.search_debouncer.cancel()
        self.date_debouncer.cancel()
        self._pending_dates = {}
        await self.data_source.set_filters(FilterState())

    async def set_page(self, page: int) -> None:
        await self.data_source.set_page(page)

    async def set_page_size(self, page_size: int) -> None:
        await self.data_source.set_page_size(page_size)

    async def toggle_mode(self) -> None:
        self.bulk.reset()
        await self.data_source.toggle_mode()

    def select(self, series: MasterSeriesRecord) -> bool:
        return self.bulk.select(series)

    def deselect(self, series_id: str) -> None:
        self.bulk.deselect(series_id)

    def set_attachment_decision(self, series_id: str, include_files: bool) -> None:
        self.bulk.set_decision(series_id, include_files)

    async def submit_bulk(self) -> BulkOutcome:
        return await self.bulk.submit()

    async def delete_instance(self, task: TaskRecord) -> bool:
        return await self.mutations.delete_instance(task)

    async def delete_series(
        self,
        series: MasterSeriesRecord,
        include_files: Optional[bool] = None,
        permanent: bool = False,
    ) -> bool:
        return await self.mutations.delete_series(series, include_files=include_files, permanent=permanent)

    async def permanent_delete(self, record: Union[TaskRecord, MasterSeriesRecord]) -> bool:
        return await self.mutations.permanent_delete(record)

    async def restore(self, record: Union[TaskRecord, MasterSeriesRecord]) -> bool:
        return await self.mutations.restore(record)

    async def reassign_series(self, series: MasterSeriesRecord, include_files: Optional[bool] = None) -> bool:
        return await self.mutations.reassign_series(series, include_files=include_files)

    async def update_series(self, series: MasterSeriesRecord, update: SeriesUpdate) -> bool:
        return await self.mutations.update_series(series, update)

    async def close(self) -> None:
        """Cancel pending input, drop the view's cache and close the HTTP client."""
        self.search_debouncer.cancel()
        self.date_debouncer.cancel()
        self.bulk.reset()
        self.data_source.close()
        await self.api.aclose()
        logger.info("Task view closed", family=self.api.endpoints.family)
