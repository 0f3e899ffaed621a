"""Shared pytest fixtures and configuration."""

import os
import pytest
from unittest.mock import Mock
from freezegun import freeze_time

# Set test environment variables
os.environ.setdefault("TASKVIEW_LOG_LEVEL", "DEBUG")
os.environ.setdefault("TASKVIEW_LOG_FORMAT", "text")
os.environ.setdefault("TASKVIEW_API_BASE_URL", "http://taskview.test")

from taskview.services.cache_store import CacheStore
from taskview.services.data_source import AGGREGATE_KEY_MARKER, DataSource
from taskview.services.mutation_coordinator import MutationCoordinator
from taskview.services.task_api import BIN_ENDPOINTS, RECURRING_ENDPOINTS, TaskApiClient
from tests.fixtures.api_payloads import paged_response
from tests.utils.factories import make_viewer


def _fake_api(endpoints):
    api = Mock(spec=TaskApiClient)
    api.endpoints = endpoints
    api.list_instances.return_value = paged_response([])
    api.list_series_light.return_value = []
    api.list_series_full.return_value = []
    api.get_bin_settings.return_value = {}
    return api


@pytest.fixture
def fake_api():
    """TaskApiClient double for the recurring view; async methods are AsyncMocks."""
    return _fake_api(RECURRING_ENDPOINTS)


@pytest.fixture
def fake_bin_api():
    """TaskApiClient double for the recycle bin view."""
    return _fake_api(BIN_ENDPOINTS)


@pytest.fixture
def notifier():
    """Notifier that records calls."""
    return Mock()


@pytest.fixture
def viewer():
    """Regular (own-scope) viewer."""
    return make_viewer(user_id="user-1")


@pytest.fixture
def admin_viewer():
    """Privileged viewer."""
    return make_viewer(privileged=True, user_id="admin-1")


@pytest.fixture
def cache():
    return CacheStore(long_ttl_markers=(AGGREGATE_KEY_MARKER,))


@pytest.fixture
def data_source(fake_api, cache, admin_viewer, notifier):
    return DataSource(fake_api, cache, admin_viewer, notifier=notifier)


@pytest.fixture
def coordinator(fake_api, data_source, notifier):
    return MutationCoordinator(fake_api, data_source, notifier=notifier)


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2024-12-09 12:00:00") as frozen_time:
        yield frozen_time

