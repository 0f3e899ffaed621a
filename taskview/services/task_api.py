"""REST adapter for the task endpoints used by the dashboard views."""

from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field

from taskview.utils.errors import NetworkError, UnsupportedOperationError
from taskview.utils.logging import get_structured_logger, log_timing, mask_user_id

logger = get_structured_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class EndpointSet(BaseModel):
    """
    Endpoint paths for one view.

    ``family`` prefixes every cache key the view writes. Paths may contain
    ``{series_id}``, ``{task_id}`` or ``{record_id}`` placeholders. A ``None``
    path means the view does not offer that operation.
    """
    model_config = ConfigDict(frozen=True)

    family: str = Field(..., description="Cache key prefix for this view")
    instances: str
    series_light: str
    series_full: str
    series_detail: str
    delete_task: Optional[str] = None
    delete_series: Optional[str] = None
    reassign: Optional[str] = None
    restore_task: Optional[str] = None
    restore_series: Optional[str] = None
    permanent_delete: Optional[str] = None
    bin_settings: Optional[str] = None
    reschedule_series: Optional[str] = None
    users: Optional[str] = None


RECURRING_ENDPOINTS = EndpointSet(
    family="recurring",
    instances="/api/tasks/recurring-instances",
    series_light="/api/tasks/master-recurring/light",
    series_full="/api/tasks/master-recurring",
    series_detail="/api/tasks/master/{series_id}",
    delete_task="/api/tasks/{task_id}",
    delete_series="/api/tasks/bulk/master",
    reassign="/api/tasks/reassign/{series_id}",
    reschedule_series="/api/tasks/reschedule/{series_id}",
    users="/api/users",
)

BIN_ENDPOINTS = EndpointSet(
    family="bin",
    instances="/api/tasks/bin/recurring-instances",
    series_light="/api/tasks/bin/master-recurring/light",
    series_full="/api/tasks/bin/master-recurring",
    series_detail="/api/tasks/bin/master/{series_id}",
    restore_task="/api/tasks/bin/restore/{task_id}",
    restore_series="/api/tasks/bin/restore-master/{series_id}",
    permanent_delete="/api/tasks/bin/permanent/{record_id}",
    bin_settings="/api/settings/bin",
    users="/api/users",
)


def _clean_params(params: dict[str, Any]) -> dict[str, str]:
    """Drop empty values and stringify the rest, matching the server's query parsing."""
    cleaned = {}
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        else:
            cleaned[key] = str(value)
    return cleaned


class TaskApiClient:
    """
    Async client for one view's endpoint set.

    Methods return decoded JSON bodies; turning them into records is left to
    the caller so that a single malformed record can be dropped without
    failing the whole batch. Every transport or HTTP failure surfaces as
    NetworkError.
    """

    def __init__(
        self,
        base_url: str,
        endpoints: EndpointSet,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoints = endpoints
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "TaskApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    async def aclose(self) -> None:
        await self._client.aclose()

    def _path(self, operation: str, **ids: str) -> str:
        template = getattr(self.endpoints, operation)
        if template is None:
            raise UnsupportedOperationError(
                f"'{operation}' is not available for the {self.endpoints.family} view"
            )
        return template.format(**{key: quote(str(value), safe="") for key, value in ids.items()})

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        with log_timing("task_api_request", logger=logger, method=method, path=path):
            try:
                response = await self._client.request(
                    method,
                    path,
                    params=_clean_params(params or {}),
                    json=json,
                )
                response.raise_for_status()
            except httpx.TimeoutException as e:
                logger.warning("Task API request timed out", method=method, path=path)
                raise NetworkError(f"{method} {path} timed out", timeout=True) from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.warning("Task API returned error status", method=method, path=path, status_code=status)
                raise NetworkError(f"{method} {path} failed with status {status}", status_code=status) from e
            except httpx.HTTPError as e:
                logger.warning("Task API request failed", method=method, path=path, error=str(e))
                raise NetworkError(f"{method} {path} failed: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"{method} {path} returned invalid JSON") from e

    async def list_instances(self, params: dict[str, Any]) -> dict[str, Any]:
        """One page of instances: ``{tasks, total, totalPages, hasMore}``."""
        payload = await self._request("GET", self.endpoints.instances, params=params)
        if not isinstance(payload, dict):
            raise NetworkError("Instance listing returned an unexpected payload")
        return payload

    async def list_series_light(self, company_id: str) -> list[dict[str, Any]]:
        """Minimal per-series records for the whole company."""
        payload = await self._request("GET", self.endpoints.series_light, params={"companyId": company_id})
        return _series_items(payload)

    async def list_series_full(self, company_id: str, limit: int) -> list[dict[str, Any]]:
        """Series with nested instance detail (slow path)."""
        payload = await self._request(
            "GET",
            self.endpoints.series_full,
            params={"companyId": company_id, "limit": limit},
        )
        return _series_items(payload)

    async def get_series_detail(self, series_id: str, company_id: str) -> dict[str, Any]:
        payload = await self._request(
            "GET",
            self._path("series_detail", series_id=series_id),
            params={"companyId": company_id},
        )
        if isinstance(payload, dict) and isinstance(payload.get("masterTask"), dict):
            return payload["masterTask"]
        if not isinstance(payload, dict):
            raise NetworkError(f"Series detail for {series_id} returned an unexpected payload")
        return payload

    async def soft_delete_task(self, task_id: str, company_id: str) -> Any:
        return await self._request(
            "DELETE",
            self._path("delete_task", task_id=task_id),
            params={"companyId": company_id},
        )

    async def delete_series(
        self,
        series_id: str,
        company_id: str,
        permanent: bool = False,
        include_files: Optional[bool] = None,
    ) -> Any:
        return await self._request(
            "DELETE",
            self._path("delete_series"),
            params={
                "taskGroupId": series_id,
                "companyId": company_id,
                "permanent": permanent,
                "includeFiles": include_files,
            },
        )

    async def restore_task(self, task_id: str) -> Any:
        return await self._request("POST", self._path("restore_task", task_id=task_id))

    async def restore_series(self, series_id: str) -> Any:
        return await self._request("POST", self._path("restore_series", series_id=series_id))

    async def permanent_delete(self, record_id: str) -> Any:
        """Permanently delete an instance or, with a series id, the whole series."""
        return await self._request("DELETE", self._path("permanent_delete", record_id=record_id))

    async def reassign_series(
        self,
        series_id: str,
        include_files: bool,
        company_id: str,
        task_ids: Optional[list[str]] = None,
    ) -> Any:
        logger.info(
            "Reassigning series",
            series_id=series_id,
            include_files=include_files,
            company_id=mask_user_id(company_id),
            instance_count=len(task_ids or []),
        )
        return await self._request(
            "POST",
            self._path("reassign", series_id=series_id),
            json={
                "includeFiles": include_files,
                "companyId": company_id,
                "taskIds": list(task_ids or []),
            },
        )

    async def reschedule_series(self, series_id: str, changes: dict[str, Any]) -> Any:
        """Update a series. Schedule fields make the server regenerate its future instances."""
        logger.info("Rescheduling series", series_id=series_id, fields=sorted(changes))
        return await self._request(
            "PUT",
            self._path("reschedule_series", series_id=series_id),
            json=changes,
        )

    async def list_users(self, company_id: str, role: Optional[str] = None) -> list[dict[str, Any]]:
        """Active users of the company, used as assignee and assigner choices."""
        payload = await self._request(
            "GET",
            self._path("users"),
            params={"companyId": company_id, "role": role},
        )
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise NetworkError("User listing returned an unexpected payload")
        return payload

    async def get_bin_settings(self, company_id: str) -> dict[str, Any]:
        payload = await self._request(
            "GET",
            self._path("bin_settings"),
            params={"companyId": company_id},
        )
        return payload if isinstance(payload, dict) else {}


def _series_items(payload: Any) -> list[dict[str, Any]]:
    # Light endpoints answer with a bare array, full ones with {masterTasks: [...]}
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return list(payload.get("masterTasks") or [])
    raise NetworkError("Series listing returned an unexpected payload")
