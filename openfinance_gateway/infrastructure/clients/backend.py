"""Application backend HTTP client for the aggregator (Pluggy) endpoints"""

import httpx
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openfinance_gateway.config import settings
from openfinance_gateway.domain.exceptions import BackendAPIError
from openfinance_gateway.domain.models import LinkedItem, SyncSummary
from openfinance_gateway.infrastructure.observability.metrics import backend_failures_counter


@dataclass
class ConnectTokenResponse:
    access_token: str
    existing_items: List[LinkedItem] = field(default_factory=list)


@dataclass
class SyncResponse:
    """Raw accounts as returned by the backend; normalization happens in the domain layer"""

    accounts: List[Dict[str, Any]]
    summary: Optional[SyncSummary] = None


def parse_linked_item(payload: Dict[str, Any]) -> LinkedItem:
    """Backend items come flat (connectorName) or nested (connector: {name, imageUrl})"""
    connector = payload.get("connector") if isinstance(payload.get("connector"), dict) else {}
    return LinkedItem(
        id=str(payload["id"]),
        connector_name=payload.get("connectorName") or connector.get("name"),
        connector_image_url=payload.get("connectorImageUrl") or connector.get("imageUrl"),
        status=payload.get("status"),
    )


def _parse_summary(payload: Any) -> Optional[SyncSummary]:
    if not isinstance(payload, dict):
        return None
    return SyncSummary(
        checking=int(payload.get("checking") or 0),
        savings=int(payload.get("savings") or 0),
        credit=int(payload.get("credit") or 0),
    )


class BackendClient:
    """Client for the backend's /pluggy routes (token minting, sync, item management)"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        sync_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.backend_api_base).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.sync_timeout = sync_timeout or settings.sync_timeout_seconds
        self.transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        endpoint: str,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Perform one request and decode the JSON body.

        Raises:
            BackendAPIError: status_code is None for timeouts/network failures,
                otherwise the HTTP status of the non-2xx response
        """
        timeout = timeout or self.timeout
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            try:
                response = await client.request(method, f"{self.base_url}{path}", **kwargs)
                response.raise_for_status()
                if not response.content:
                    return {}
                data = response.json()
                return data if isinstance(data, dict) else {}

            except httpx.TimeoutException as e:
                backend_failures_counter.labels(endpoint=endpoint).inc()
                raise BackendAPIError(f"Backend timeout after {timeout}s on {endpoint}") from e
            except httpx.HTTPStatusError as e:
                backend_failures_counter.labels(endpoint=endpoint).inc()
                raise BackendAPIError(
                    f"Backend error on {endpoint}: {e.response.status_code} {_error_detail(e.response)}".rstrip(),
                    status_code=e.response.status_code,
                ) from e
            except httpx.RequestError as e:
                backend_failures_counter.labels(endpoint=endpoint).inc()
                raise BackendAPIError(f"Backend unreachable on {endpoint}: {e}") from e
            except ValueError as e:
                backend_failures_counter.labels(endpoint=endpoint).inc()
                raise BackendAPIError(f"Invalid JSON from backend on {endpoint}") from e

    async def create_token(self, user_id: str) -> ConnectTokenResponse:
        """Mint a short-lived widget connect token; may list the user's existing items"""
        data = await self._request("POST", "/pluggy/create-token", "create-token", json={"userId": user_id})
        token = data.get("accessToken")
        if not token:
            raise BackendAPIError("Backend returned no connect token")
        try:
            items = [parse_linked_item(item) for item in data.get("existingItems") or []]
        except (KeyError, TypeError) as e:
            raise BackendAPIError(f"Invalid existing items from backend: {e}") from e
        return ConnectTokenResponse(access_token=token, existing_items=items)

    async def sync_item(self, item_id: str, user_id: str) -> SyncResponse:
        """Run the full sync for an item and return its raw accounts and bills"""
        data = await self._request(
            "POST",
            "/pluggy/sync",
            "sync",
            timeout=self.sync_timeout,
            json={"itemId": item_id, "userId": user_id},
        )
        accounts = data.get("accounts")
        if not isinstance(accounts, list):
            raise BackendAPIError("Backend sync response has no accounts list")
        return SyncResponse(accounts=accounts, summary=_parse_summary(data.get("summary")))

    async def trigger_sync(self, item_id: str, user_id: str) -> None:
        """Queue an asynchronous refresh; the backend completes it out-of-band"""
        await self._request(
            "POST", "/pluggy/trigger-sync", "trigger-sync", json={"itemId": item_id, "userId": user_id}
        )

    async def list_items(self, user_id: str) -> List[LinkedItem]:
        """Linked items straight from the aggregator (authoritative)"""
        data = await self._request("GET", "/pluggy/items", "items", params={"userId": user_id})
        return self._parse_items(data)

    async def list_db_items(self, user_id: str) -> List[LinkedItem]:
        """Backend's local database mirror of the user's items (possibly stale)"""
        data = await self._request("GET", f"/pluggy/db-items/{user_id}", "db-items")
        return self._parse_items(data)

    async def delete_item(self, item_id: str, user_id: str) -> None:
        await self._request("DELETE", f"/pluggy/item/{item_id}", "delete-item", params={"userId": user_id})

    @staticmethod
    def _parse_items(data: Dict[str, Any]) -> List[LinkedItem]:
        try:
            return [parse_linked_item(item) for item in data.get("items") or []]
        except (KeyError, TypeError) as e:
            raise BackendAPIError(f"Invalid item data from backend: {e}") from e


def _error_detail(response: httpx.Response) -> str:
    """Backend error bodies look like {error, details?}"""
    try:
        body = response.json()
    except ValueError:
        return ""
    if not isinstance(body, dict):
        return ""
    return " - ".join(str(part) for part in (body.get("error"), body.get("details")) if part)
