"""HTTP client for the external NocoDB-style record store."""

from __future__ import annotations

from typing import Any

import httpx

from .config import config
from .exceptions import UpstreamUnavailableError

logger = config.get_logger(__name__)


def where_equals(column: str, value: Any) -> str:
    return f"({column},eq,{value})"


class RecordStore:
    """Generic get/create/update/delete by logical table."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        base_name: str | None = None,
        timeout: float | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the record store client.

        Args:
            base_url: Record store URL. If None, uses config.NOCODB_API_URL.
            token: API token sent as ``xc-token``. If None, uses
                config.NOCODB_API_TOKEN.
            base_name: Database name. If None, uses config.NOCODB_BASE_NAME.
            timeout: Request timeout in seconds. If None, uses
                config.RECORD_STORE_TIMEOUT.
            http_client: Preconfigured client, mainly for tests.
        """
        base_url = (base_url or config.NOCODB_API_URL).rstrip("/")
        base_name = base_name or config.NOCODB_BASE_NAME
        token = token if token is not None else config.NOCODB_API_TOKEN
        self.http_client = http_client or httpx.Client(
            base_url=f"{base_url}/api/v1/db/data/v1/{base_name}",
            timeout=timeout or config.RECORD_STORE_TIMEOUT,
            headers={**config.get_api_headers(), "xc-token": token},
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self.http_client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.exception("Record store %s %s failed", method, path)
            msg = f"Record store error: HTTP {exc.response.status_code}"
            raise UpstreamUnavailableError(msg) from exc
        except httpx.HTTPError as exc:
            logger.exception("Record store %s %s failed", method, path)
            msg = f"Record store unavailable: {exc}"
            raise UpstreamUnavailableError(msg) from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            msg = f"Record store returned invalid JSON for {method} {path}"
            raise UpstreamUnavailableError(msg) from exc

    def list_records(
        self,
        table: str,
        where: str | None = None,
        sort: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List rows of a table.

        Returns:
            The rows, in the order returned by the store.
        """
        params: dict[str, Any] = {}
        if where:
            params["where"] = where
        if sort:
            params["sort"] = sort
        if limit is not None:
            params["limit"] = limit
        data = self._request("GET", f"/{table}", params=params)
        return list((data or {}).get("list") or [])

    def get_record(self, table: str, record_id: int | str) -> dict[str, Any]:
        return self._request("GET", f"/{table}/{record_id}") or {}

    def create_record(self, table: str, fields: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", f"/{table}", json=fields) or {}

    def update_record(
        self, table: str, record_id: int | str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        return self._request("PATCH", f"/{table}/{record_id}", json=fields) or {}

    def delete_record(self, table: str, record_id: int | str) -> None:
        self._request("DELETE", f"/{table}/{record_id}")

    def close(self) -> None:
        self.http_client.close()
