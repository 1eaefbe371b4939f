"""
Commit Gateway: turns the captured line items into exactly one backend record.

Two modes:
    service_log  one service log on the vehicle (date, mileage, hours, notes)
    invoice      one quick invoice for the customer and vehicle; the PDF is
                 fetched afterwards and saved locally

Nothing here retries. A rejected commit surfaces as ``CommitFailed`` and the
user restarts the flow.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Any, Optional, Sequence

from shopvoice.config import COMMIT_MODES, settings
from shopvoice.errors import CommitFailed
from shopvoice.schemas.shop_schema import (
    CommitResult,
    Customer,
    InvoiceService,
    LineItem,
    QuickInvoiceRecord,
    ServiceLogRecord,
    Vehicle,
)
from shopvoice.tools.shop_api import ShopBackend, ShopBackendError

logger = logging.getLogger(__name__)

SERVICE_TYPE_MAX_LENGTH = 50


def service_type_slug(name: str) -> str:
    """``"Brake pads front"`` -> ``"BRAKE_PADS_FRONT"``, capped at 50 characters."""
    return "_".join(name.upper().split())[:SERVICE_TYPE_MAX_LENGTH]


def _describe(item: LineItem) -> str:
    return f"{item.name} ({item.hours:g} h, ${item.price:.2f})"


class CommitGateway:
    """Builds the final record for the configured mode and sends it once."""

    def __init__(
        self,
        backend: ShopBackend,
        mode: str = settings.shop.commit_mode,
        tax_rate: float = settings.shop.tax_rate,
        download_pdf: bool = settings.api.download_pdf,
        pdf_dir: str = settings.api.pdf_dir,
    ) -> None:
        if mode not in COMMIT_MODES:
            raise ValueError(f"Unknown commit mode {mode!r}, expected one of {COMMIT_MODES}")
        self._backend = backend
        self.mode = mode
        self.tax_rate = tax_rate
        self.download_pdf = download_pdf
        self.pdf_dir = Path(pdf_dir)

    def build_service_log_record(
        self,
        vehicle: Vehicle,
        items: Sequence[LineItem],
        service_date: Optional[date] = None,
    ) -> ServiceLogRecord:
        notes = "; ".join(_describe(item) for item in items)
        return ServiceLogRecord(
            vehicle_id=vehicle.id,
            service_type=service_type_slug(items[0].name),
            notes=f"Voice entry: {notes}",
            service_date=service_date or date.today(),
            mileage_at_service=vehicle.mileage,
            labor_hours=sum(item.hours for item in items),
        )

    def build_quick_invoice_record(
        self,
        customer: Customer,
        vehicle: Vehicle,
        items: Sequence[LineItem],
    ) -> QuickInvoiceRecord:
        return QuickInvoiceRecord(
            customer_id=customer.id,
            vehicle_id=vehicle.id,
            services=[
                InvoiceService(name=item.name, price=item.price, labor_hours=item.hours)
                for item in items
            ],
            tax_rate=self.tax_rate,
        )

    async def commit(
        self,
        customer: Customer,
        vehicle: Vehicle,
        items: Sequence[LineItem],
    ) -> CommitResult:
        """Create the record for ``items``.

        Raises:
            CommitFailed: If there is nothing to commit or the backend rejects it.
        """
        if not items:
            raise CommitFailed("Refusing to commit a session without line items")
        if self.mode == "service_log":
            return await self.create_service_log(self.build_service_log_record(vehicle, items))
        return await self.create_quick_invoice(
            self.build_quick_invoice_record(customer, vehicle, items)
        )

    async def create_service_log(self, record: ServiceLogRecord) -> CommitResult:
        try:
            payload = await self._backend.create_service_log(record)
        except ShopBackendError as exc:
            raise CommitFailed(f"Service log rejected: {exc}") from exc
        created = _unwrap(payload, "service")
        logger.info("Service log committed for vehicle %s", record.vehicle_id)
        return CommitResult(
            kind="service_log",
            record_id=str(created.get("id", "")),
            total=0.0,
        )

    async def create_quick_invoice(self, record: QuickInvoiceRecord) -> CommitResult:
        try:
            payload = await self._backend.create_quick_invoice(record)
        except ShopBackendError as exc:
            raise CommitFailed(f"Invoice rejected: {exc}") from exc
        invoice = _unwrap(payload, "invoice")
        invoice_id = str(invoice.get("id", ""))
        reference = invoice.get("invoice_number")
        subtotal = sum(s.price * s.quantity for s in record.services)
        total = float(invoice.get("total", round(subtotal * (1 + record.tax_rate), 2)))
        logger.info("Invoice %s committed for customer %s", reference or invoice_id, record.customer_id)

        pdf_path = None
        if self.download_pdf and invoice_id:
            pdf_path = await self._save_pdf(invoice_id, reference or invoice_id)
        return CommitResult(
            kind="invoice",
            record_id=invoice_id,
            reference=reference,
            total=total,
            pdf_path=pdf_path,
        )

    async def _save_pdf(self, invoice_id: str, filename: str) -> Optional[str]:
        """Fetch and store the invoice PDF. A failure here never fails the commit."""
        try:
            content = await self._backend.download_invoice_pdf(invoice_id)
            self.pdf_dir.mkdir(parents=True, exist_ok=True)
            path = self.pdf_dir / f"{filename}.pdf"
            path.write_bytes(content)
        except (ShopBackendError, OSError) as exc:
            logger.warning("Invoice %s created but PDF download failed: %s", filename, exc)
            return None
        logger.info("Invoice PDF saved to %s", path)
        return str(path)


def _unwrap(payload: Any, key: str) -> dict:
    """Backends answer either ``{key: {...}}`` or the bare object."""
    if not isinstance(payload, dict):
        return {}
    inner = payload.get(key, payload)
    return inner if isinstance(inner, dict) else {}
