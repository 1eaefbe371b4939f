"""
In-memory shop backend.

Seeded with a handful of customers, vehicles and recent services so the
console demo and the test suite can run a full voice session without a
server. In production the voice flow talks to ``ShopApiClient`` instead.
"""

import logging
import uuid
from datetime import date, timedelta
from typing import Any, Optional

from shopvoice.schemas.shop_schema import (
    Customer,
    QuickInvoiceRecord,
    ServiceLog,
    ServiceLogRecord,
    ServicePrice,
    Vehicle,
)
from shopvoice.tools.shop_api import ShopBackend, ShopBackendError

logger = logging.getLogger(__name__)

SEED_CUSTOMERS: list[Customer] = [
    Customer(id="c-1001", name="John Smith", email="john.smith@email.com"),
    Customer(id="c-1002", name="Sarah Johnson", email="sarah.j@email.com"),
    Customer(id="c-1003", name="Maria Garcia", email="maria.garcia@email.com"),
    Customer(id="c-1004", name="David Lee", email="dlee@email.com"),
]

SEED_VEHICLES: list[Vehicle] = [
    Vehicle(id="v-2001", customer_id="c-1001", year=2020, make="Honda", model="Accord", mileage=45210),
    Vehicle(id="v-2002", customer_id="c-1002", year=2018, make="Toyota", model="Camry", mileage=60210),
    Vehicle(id="v-2003", customer_id="c-1002", year=2021, make="Ford", model="F-150", mileage=22040),
    Vehicle(id="v-2004", customer_id="c-1004", year=2015, make="Honda", model="Civic", mileage=98112),
]

SEED_PRICES: list[ServicePrice] = [
    ServicePrice(service_type="OIL_CHANGE", display_name="Oil Change", base_price=65, labor_hours=0.5),
    ServicePrice(service_type="BRAKE_INSPECTION", display_name="Brake Inspection", base_price=120),
    ServicePrice(service_type="TIRE_ROTATION", display_name="Tire Rotation", base_price=40, labor_hours=0.5),
]


def _seed_service_logs(today: date) -> list[ServiceLog]:
    return [
        ServiceLog(id="s-3001", vehicle_id="v-2002", service_type="OIL_CHANGE",
                   service_date=today - timedelta(days=5), mileage_at_service=60100),
        ServiceLog(id="s-3002", vehicle_id="v-2002", service_type="BRAKE_INSPECTION",
                   service_date=today - timedelta(days=12), mileage_at_service=59980),
        ServiceLog(id="s-3003", vehicle_id="v-2002", service_type="TIRE_ROTATION",
                   service_date=today - timedelta(days=90), mileage_at_service=55000),
    ]


class InMemoryShopDirectory(ShopBackend):
    """Shop backend held entirely in memory."""

    def __init__(
        self,
        customers: Optional[list[Customer]] = None,
        vehicles: Optional[list[Vehicle]] = None,
        service_logs: Optional[list[ServiceLog]] = None,
        prices: Optional[list[ServicePrice]] = None,
    ) -> None:
        self.customers = list(SEED_CUSTOMERS if customers is None else customers)
        self.vehicles = list(SEED_VEHICLES if vehicles is None else vehicles)
        self.service_logs = list(
            _seed_service_logs(date.today()) if service_logs is None else service_logs
        )
        self.prices = list(SEED_PRICES if prices is None else prices)
        self.created_service_logs: list[ServiceLogRecord] = []
        self.created_invoices: list[QuickInvoiceRecord] = []
        self.fail_commits = False
        self._invoice_seq = 1000

    @property
    def commit_calls(self) -> int:
        return len(self.created_service_logs) + len(self.created_invoices)

    async def get_customers(self) -> list[Customer]:
        return list(self.customers)

    async def get_vehicles(self, customer_id: Optional[str] = None) -> list[Vehicle]:
        if customer_id is None:
            return list(self.vehicles)
        return [v for v in self.vehicles if v.customer_id == customer_id]

    async def get_service_logs(self, vehicle_id: str) -> list[ServiceLog]:
        return [s for s in self.service_logs if s.vehicle_id == vehicle_id]

    async def get_service_prices(self) -> list[ServicePrice]:
        return [p for p in self.prices if p.is_active]

    async def create_service_log(self, record: ServiceLogRecord) -> dict[str, Any]:
        if self.fail_commits:
            raise ShopBackendError("Service log rejected")
        self.created_service_logs.append(record)
        log_id = f"s-{uuid.uuid4().hex[:6]}"
        logger.info("Service log %s stored for vehicle %s", log_id, record.vehicle_id)
        return {"id": log_id, **record.model_dump(mode="json")}

    async def create_quick_invoice(self, record: QuickInvoiceRecord) -> dict[str, Any]:
        if self.fail_commits:
            raise ShopBackendError("Invoice rejected")
        self.created_invoices.append(record)
        self._invoice_seq += 1
        subtotal = sum(s.price * s.quantity for s in record.services)
        invoice = {
            "id": f"i-{uuid.uuid4().hex[:6]}",
            "invoice_number": f"INV-{self._invoice_seq}",
            "subtotal": round(subtotal, 2),
            "tax_amount": round(subtotal * record.tax_rate, 2),
            "total": round(subtotal * (1 + record.tax_rate), 2),
        }
        logger.info("Invoice %s stored for customer %s", invoice["invoice_number"], record.customer_id)
        return {"invoice": invoice}

    async def download_invoice_pdf(self, invoice_id: str) -> bytes:
        return b"%PDF-1.4\n% " + invoice_id.encode() + b"\n%%EOF\n"
