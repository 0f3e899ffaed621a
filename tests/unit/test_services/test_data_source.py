"""Tests for the dual-mode data source."""

import asyncio
import logging
import pytest
from datetime import date, datetime

from taskview.models.filters import FilterState
from taskview.models.page import DataMode
from taskview.services.data_source import (
    DataSource,
    build_instance_params,
    decode_series_batch,
    derive_aggregate,
)
from taskview.utils.errors import NetworkError
from tests.fixtures.api_payloads import paged_response
from tests.utils.assertions import assert_notified, assert_sorted_by_due_date
from tests.utils.factories import create_series_data, create_task_data, create_user_ref, make_series, make_viewer


def series_batch(count):
    return [create_series_data(series_id=f"s{i}") for i in range(count)]


@pytest.mark.unit
def test_params_for_regular_viewer_force_own_assignee():
    """Test that regular viewers always send their own id."""
    viewer = make_viewer(user_id="me", company_id="c1")
    filters = FilterState(assigned_to="someone-else", priority="high")

    params = build_instance_params(filters, 2, 10, viewer)

    assert params == {"page": 2, "limit": 10, "priority": "high", "assignedTo": "me", "companyId": "c1"}


@pytest.mark.unit
def test_params_for_overdue_cap_date_to_at_yesterday():
    """Test overdue maps to pending with dateTo no later than yesterday."""
    viewer = make_viewer(privileged=True, company_id="c1")
    today = date(2024, 12, 9)

    open_ended = build_instance_params(FilterState(status="overdue"), 1, 10, viewer, today)
    later_bound = build_instance_params(FilterState(status="overdue", date_to=date(2024, 12, 31)), 1, 10, viewer, today)
    earlier_bound = build_instance_params(FilterState(status="overdue", date_to=date(2024, 12, 1)), 1, 10, viewer, today)

    assert open_ended["status"] == "pending"
    assert open_ended["dateTo"] == "2024-12-08"
    assert later_bound["dateTo"] == "2024-12-08"
    assert earlier_bound["dateTo"] == "2024-12-01"
    assert "assignedTo" not in open_ended


@pytest.mark.unit
def test_params_for_overdue_default_to_current_date(freeze_time_fixture):
    """Test that the overdue cap follows the local calendar when no date is given."""
    params = build_instance_params(FilterState(status="overdue"), 1, 10, make_viewer(privileged=True))

    assert params["dateTo"] == "2024-12-08"


@pytest.mark.unit
def test_decode_series_batch_drops_orphans_and_duplicates():
    """Test integrity checks on a series batch."""
    items = [
        create_series_data(series_id="s1", tasks=[
            create_task_data(series_id="s1"),
            create_task_data(series_id="ghost"),
        ]),
        create_series_data(series_id="s1"),
        {**create_series_data(), "taskGroupId": None},
        create_series_data(series_id="s2"),
    ]

    batch, warnings = decode_series_batch(items)

    assert [s.series_id for s in batch] == ["s1", "s2"]
    assert len(batch[0].tasks) == 1
    assert len(warnings) == 3
    assert {w.series_id for w in warnings} >= {"ghost", "s1"}


@pytest.mark.unit
def test_derive_aggregate_scopes_drops_one_time_and_sorts():
    """Test reshaping full-endpoint series."""
    me = create_user_ref(user_id="me")
    series = [
        make_series(series_id="a", assigned_to=me, tasks=[
            create_task_data(series_id="a", due_date=datetime(2024, 12, 3)),
            create_task_data(series_id="a", due_date=datetime(2024, 12, 1)),
        ]),
        make_series(series_id="b", assigned_to=me, task_type="one-time"),
        make_series(series_id="c"),
    ]

    result = derive_aggregate(series, make_viewer(user_id="me"))

    assert [s.series_id for s in result] == ["a"]
    assert_sorted_by_due_date(result[0].tasks)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_paged_load_and_cache_hit(data_source, fake_api):
    """Test that a repeated paged load is served from cache."""
    fake_api.list_instances.return_value = paged_response(
        [create_task_data() for _ in range(10)], total=25, total_pages=3, has_more=True,
    )

    await data_source.load()
    await data_source.load()

    assert fake_api.list_instances.await_count == 1
    state = data_source.state
    assert len(state.records) == 10
    assert state.total == 25
    assert state.total_pages == 3
    assert state.has_more
    assert not state.loading and not state.initial_loading


@pytest.mark.unit
@pytest.mark.asyncio
async def test_paged_page_change_clamps_and_fetches(data_source, fake_api):
    """Test page requests beyond the last page clamp to it."""
    fake_api.list_instances.return_value = paged_response([create_task_data()], total=25, total_pages=3)
    await data_source.load()

    await data_source.set_page(4)

    assert data_source.paginator.page == 3
    assert fake_api.list_instances.await_args.args[0]["page"] == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_filter_change_invalidates_instance_keys_only(data_source, fake_api, cache):
    """Test filter changes drop cached pages but keep the aggregate entry."""
    fake_api.list_series_light.return_value = series_batch(2)
    await data_source.set_mode(DataMode.AGGREGATE)
    await data_source.set_mode(DataMode.PAGED)
    cache.set("recurring:instances:p2:s10:privileged", "stale page", {})

    await data_source.set_filters(FilterState(priority="high"))

    assert "recurring:instances:p2:s10:privileged" not in cache
    assert data_source.aggregate_key in cache
    assert fake_api.list_instances.await_args.args[0]["priority"] == "high"
    assert data_source.paginator.page == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_aggregate_filters_and_pages_in_memory(data_source, fake_api):
    """Test that aggregate mode makes no further calls while filtering and paging."""
    items = [create_series_data(series_id=f"s{i}", priority="high" if i % 2 else "low") for i in range(25)]
    fake_api.list_series_light.return_value = items

    await data_source.set_mode(DataMode.AGGREGATE)
    assert len(data_source.state.records) == 10
    assert data_source.state.total_pages == 3

    await data_source.set_page(3)
    assert len(data_source.state.records) == 5

    await data_source.set_filters(FilterState(priority="high"))
    assert data_source.state.total == 12
    assert data_source.state.page == 1

    await data_source.set_page_size(5)
    assert data_source.state.total_pages == 3

    assert fake_api.list_series_light.await_count == 1
    assert fake_api.list_instances.await_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_mode_round_trip_refetches_paged(data_source, fake_api):
    """Test paged -> aggregate -> paged issues a fresh paged fetch."""
    fake_api.list_instances.return_value = paged_response([create_task_data()])
    fake_api.list_series_light.return_value = series_batch(3)

    await data_source.load()
    await data_source.toggle_mode()
    assert data_source.mode == DataMode.AGGREGATE
    assert all(hasattr(r, "series_id") and not hasattr(r, "due_date") for r in data_source.state.records)

    await data_source.toggle_mode()

    assert data_source.mode == DataMode.PAGED
    assert fake_api.list_instances.await_count == 2
    assert data_source.aggregate is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_aggregate_key_survives_mode_switch(data_source, fake_api):
    """Test that re-entering aggregate mode reuses the cached collection."""
    fake_api.list_series_light.return_value = series_batch(3)

    await data_source.set_mode(DataMode.AGGREGATE)
    await data_source.set_mode(DataMode.PAGED)
    await data_source.set_mode(DataMode.AGGREGATE)

    assert fake_api.list_series_light.await_count == 1
    assert data_source.state.total == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_light_empty_falls_back_to_full(data_source, fake_api):
    """Test the full-endpoint fallback and its reshaping."""
    fake_api.list_series_light.return_value = []
    fake_api.list_series_full.return_value = [
        create_series_data(series_id=sid, tasks=[
            create_task_data(series_id=sid, due_date=datetime(2024, 12, 9)),
            create_task_data(series_id=sid, due_date=datetime(2024, 12, 2)),
            create_task_data(series_id=sid, due_date=datetime(2024, 12, 5)),
        ])
        for sid in ("s1", "s2", "s3")
    ]

    await data_source.set_mode(DataMode.AGGREGATE)

    fake_api.list_series_full.assert_awaited_once_with("company-1", 1000)
    records = data_source.state.records
    assert [s.series_id for s in records] == ["s1", "s2", "s3"]
    for series in records:
        assert_sorted_by_due_date(series.tasks)
    assert data_source.cache.get(data_source.aggregate_key, {"companyId": "company-1", "scope": "privileged"})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_integrity_warnings_kept(data_source, fake_api):
    """Test that orphans are omitted and recorded."""
    fake_api.list_series_light.return_value = [
        create_series_data(series_id="s1", tasks=[create_task_data(series_id="nope")]),
    ]

    await data_source.set_mode(DataMode.AGGREGATE)

    assert len(data_source.integrity_warnings) == 1
    assert data_source.integrity_warnings[0].record_id is not None
    assert data_source.state.records[0].tasks == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_network_failure_resets_and_notifies(data_source, fake_api, notifier):
    """Test that failures empty the view and notify without retrying."""
    fake_api.list_instances.return_value = paged_response([create_task_data()], total=30, total_pages=3)
    await data_source.load()

    fake_api.list_instances.side_effect = NetworkError("boom", status_code=500)
    await data_source.refresh()

    state = data_source.state
    assert state.records == []
    assert state.total_pages == 1
    assert not state.loading
    assert fake_api.list_instances.await_count == 2
    assert_notified(notifier, "error", "Failed to load tasks")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_timeout_message(data_source, fake_api, notifier):
    """Test the timeout notification text."""
    fake_api.list_series_light.side_effect = NetworkError("slow", timeout=True)

    await data_source.set_mode(DataMode.AGGREGATE)

    assert_notified(notifier, "error", "Request timeout. Please try again with fewer filters.")
    assert data_source.aggregate is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_superseded_response_is_discarded(data_source, fake_api):
    """Test that a slow response does not overwrite a newer one."""
    slow_started = asyncio.Event()
    release_slow = asyncio.Event()

    async def list_instances(params):
        if params.get("search") == "slow":
            slow_started.set()
            await release_slow.wait()
            return paged_response([create_task_data(title="stale")])
        return paged_response([create_task_data(title="fresh")])

    fake_api.list_instances.side_effect = list_instances

    slow = asyncio.create_task(data_source.set_filters(FilterState(search="slow")))
    await slow_started.wait()
    await data_source.set_filters(FilterState(search="fast"))
    release_slow.set()
    await slow

    assert [r.title for r in data_source.state.records] == ["fresh"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_subscribers_receive_state(data_source, fake_api):
    """Test listeners see loading and loaded states."""
    fake_api.list_instances.return_value = paged_response([create_task_data()])
    seen = []
    unsubscribe = data_source.subscribe(seen.append)

    await data_source.load()
    unsubscribe()
    await data_source.refresh()

    assert [s.loading for s in seen] == [True, False]
    assert len(seen[-1].records) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_bin_records_get_auto_delete_date(fake_bin_api, cache, admin_viewer, notifier):
    """Test recycle-bin post-processing of the auto-delete date."""
    fake_bin_api.list_instances.return_value = paged_response([
        create_task_data(deletedAt="2024-12-01T00:00:00"),
        create_task_data(deletedAt="2024-12-01T00:00:00", autoDeleteAt="2024-12-03T00:00:00"),
    ])
    source = DataSource(fake_bin_api, cache, admin_viewer, notifier=notifier, retention_days=15)

    await source.load()

    dates = [r.auto_delete_at for r in source.state.records]
    assert dates == [datetime(2024, 12, 16), datetime(2024, 12, 3)]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close_clears_cache(data_source, fake_api, cache):
    """Test teardown."""
    await data_source.load()
    assert len(cache) == 1

    data_source.close()

    assert len(cache) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_aggregate_load_is_timed(data_source, fake_api, caplog):
    """Test that aggregate loads log their duration."""
    caplog.set_level(logging.DEBUG, logger="taskview.services.data_source")
    fake_api.list_series_light.return_value = series_batch(2)

    await data_source.set_mode(DataMode.AGGREGATE)

    timings = [r for r in caplog.records if r.getMessage() == "Completed load_aggregate"]
    assert len(timings) == 1
    assert timings[0].processing_time_ms >= 0
