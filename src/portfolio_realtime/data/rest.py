"""HTTP data API client speaking the PostgREST dialect."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, Mapping, Optional, Protocol, TypeVar

import httpx

from ..errors import DataAccessError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SINGLE_OBJECT = "application/vnd.pgrst.object+json"


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """``(data, error)`` pair returned by every data API call."""

    data: Optional[T] = None
    error: Optional[DataAccessError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.data  # type: ignore[return-value]


class DataApi(Protocol):
    """Row-level read/write operations consumed by feature services."""

    def select(
        self,
        table: str,
        columns: str = "*",
        *,
        filters: Optional[Mapping[str, str]] = None,
        order: Optional[str] = None,
        single: bool = False,
    ) -> QueryResult[Any]: ...

    def insert(self, table: str, row: Mapping[str, Any]) -> QueryResult[Any]: ...

    def delete(self, table: str, *, filters: Mapping[str, str]) -> QueryResult[Any]: ...


def eq(value: Any) -> str:
    """Build a PostgREST equality filter value."""
    return f"eq.{value}"


class RestDataClient:
    """Minimal select/insert/delete client for a PostgREST endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str,
        access_token: str = "",
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be provided")
        if not api_key:
            raise ValueError("api_key must be provided")
        self._base_url = base_url.rstrip("/")
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
        }
        self._client = http_client or httpx.Client(timeout=timeout_seconds)
        self._headers = headers

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "RestDataClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _url(self, table: str) -> str:
        return f"{self._base_url}/rest/v1/{table}"

    # ------------------------------------------------------------------ Public API
    def select(
        self,
        table: str,
        columns: str = "*",
        *,
        filters: Optional[Mapping[str, str]] = None,
        order: Optional[str] = None,
        single: bool = False,
    ) -> QueryResult[Any]:
        params: Dict[str, str] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        headers = dict(self._headers)
        if single:
            headers["Accept"] = _SINGLE_OBJECT
        return self._request("GET", table, params=params, headers=headers)

    def insert(self, table: str, row: Mapping[str, Any]) -> QueryResult[Any]:
        headers = dict(self._headers)
        headers["Prefer"] = "return=representation"
        return self._request("POST", table, json=dict(row), headers=headers)

    def delete(self, table: str, *, filters: Mapping[str, str]) -> QueryResult[Any]:
        if not filters:
            raise ValueError("delete requires at least one filter")
        return self._request(
            "DELETE", table, params=dict(filters), headers=dict(self._headers)
        )

    # ------------------------------------------------------------------ Internal helpers
    def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        json: Any = None,
        headers: Mapping[str, str],
    ) -> QueryResult[Any]:
        try:
            response = self._client.request(
                method, self._url(table), params=params, json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, table, exc)
            return QueryResult(error=DataAccessError(f"connection error: {exc}"))
        if response.is_error:
            return QueryResult(error=_error_from_response(response))
        if not response.content:
            return QueryResult(data=None)
        try:
            return QueryResult(data=response.json())
        except ValueError:
            return QueryResult(
                error=DataAccessError(
                    "response body is not valid JSON", status_code=response.status_code
                )
            )


def _error_from_response(response: httpx.Response) -> DataAccessError:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        return DataAccessError(
            str(body.get("message") or response.reason_phrase),
            code=body.get("code"),
            details=body.get("details"),
            status_code=response.status_code,
        )
    return DataAccessError(
        f"HTTP {response.status_code}: {response.text[:200]}",
        status_code=response.status_code,
    )


__all__ = ["DataApi", "QueryResult", "RestDataClient", "eq"]
