"""
Shop backend access: read customers and vehicles, write the final record.

``ShopBackend`` is the boundary the voice flow consumes. ``ShopApiClient``
talks to the shop's JSON HTTP API; ``shopvoice.tools.shop_directory``
provides an in-memory stand-in for demos and tests.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from shopvoice.config import ShopApiConfig, settings
from shopvoice.schemas.shop_schema import (
    Customer,
    QuickInvoiceRecord,
    ServiceLog,
    ServiceLogRecord,
    ServicePrice,
    Vehicle,
)

logger = logging.getLogger(__name__)

PAGE_LIMIT = 500


class ShopBackendError(Exception):
    """Raised when the shop backend rejects a request or cannot be reached."""


class ShopBackend(ABC):
    """Read-only customer/vehicle data plus the atomic commit calls."""

    @abstractmethod
    async def get_customers(self) -> list[Customer]: ...

    @abstractmethod
    async def get_vehicles(self, customer_id: Optional[str] = None) -> list[Vehicle]: ...

    @abstractmethod
    async def get_service_logs(self, vehicle_id: str) -> list[ServiceLog]: ...

    @abstractmethod
    async def get_service_prices(self) -> list[ServicePrice]: ...

    @abstractmethod
    async def create_service_log(self, record: ServiceLogRecord) -> dict[str, Any]: ...

    @abstractmethod
    async def create_quick_invoice(self, record: QuickInvoiceRecord) -> dict[str, Any]: ...

    @abstractmethod
    async def download_invoice_pdf(self, invoice_id: str) -> bytes: ...


def build_http_client(config: ShopApiConfig = settings.api) -> httpx.AsyncClient:
    """Create the shared async HTTP client, with bearer auth when a token is set."""
    headers = {"Accept": "application/json"}
    if config.token:
        headers["Authorization"] = f"Bearer {config.token}"
    return httpx.AsyncClient(
        base_url=config.base_url,
        headers=headers,
        timeout=config.timeout_sec,
    )


class ShopApiClient(ShopBackend):
    """JSON API client for the shop backend."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ShopBackendError(f"{method} {path} failed: {exc}") from exc
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            detail = body.get("error", "Request failed") if isinstance(body, dict) else "Request failed"
            raise ShopBackendError(f"{method} {path} returned {response.status_code}: {detail}")
        return response

    async def _get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> dict:
        response = await self._request("GET", path, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise ShopBackendError(f"GET {path} returned invalid JSON") from exc

    async def get_customers(self) -> list[Customer]:
        data = await self._get_json("/customers", {"limit": PAGE_LIMIT, "offset": 0})
        return [Customer.model_validate(c) for c in data.get("customers", [])]

    async def get_vehicles(self, customer_id: Optional[str] = None) -> list[Vehicle]:
        params: dict[str, Any] = {"limit": PAGE_LIMIT, "offset": 0}
        if customer_id:
            params["customer_id"] = customer_id
        data = await self._get_json("/vehicles", params)
        return [Vehicle.model_validate(v) for v in data.get("vehicles", [])]

    async def get_service_logs(self, vehicle_id: str) -> list[ServiceLog]:
        data = await self._get_json("/services", {"vehicle_id": vehicle_id, "limit": 100})
        return [ServiceLog.model_validate(s) for s in data.get("services", [])]

    async def get_service_prices(self) -> list[ServicePrice]:
        data = await self._get_json("/settings/service-prices")
        return [ServicePrice.model_validate(p) for p in data.get("prices", [])]

    async def create_service_log(self, record: ServiceLogRecord) -> dict[str, Any]:
        response = await self._request("POST", "/services", json=record.model_dump(mode="json"))
        logger.info("Service log created for vehicle %s", record.vehicle_id)
        return response.json()

    async def create_quick_invoice(self, record: QuickInvoiceRecord) -> dict[str, Any]:
        response = await self._request(
            "POST", "/invoices/quick", json=record.model_dump(mode="json", exclude_none=True)
        )
        logger.info("Quick invoice created for customer %s", record.customer_id)
        return response.json()

    async def download_invoice_pdf(self, invoice_id: str) -> bytes:
        response = await self._request(
            "GET", f"/invoices/{invoice_id}/pdf", headers={"Accept": "application/pdf"}
        )
        return response.content
