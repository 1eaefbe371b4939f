"""Shop data models read from the backend and records written back to it."""

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Customer(BaseModel):
    """Customer record owned by the CRUD side of the shop backend."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str = ""
    phone: Optional[str] = None


class Vehicle(BaseModel):
    """Vehicle record; ``customer_id`` links it to its owner."""
    model_config = ConfigDict(frozen=True)

    id: str
    customer_id: str
    year: int
    make: str
    model: str
    mileage: Optional[int] = None

    @property
    def description(self) -> str:
        """Spoken form, e.g. ``2020 Honda Accord``."""
        return f"{self.year} {self.make} {self.model}"


class ServiceLog(BaseModel):
    """A service already logged against a vehicle."""

    id: str
    vehicle_id: str
    service_type: str
    service_date: date
    notes: Optional[str] = None
    mileage_at_service: Optional[int] = None
    labor_hours: Optional[float] = None


class ServicePrice(BaseModel):
    """Preset price for a service type."""

    service_type: str
    display_name: str
    base_price: float = Field(ge=0)
    labor_hours: float = Field(default=1.0, ge=0)
    is_active: bool = True


class LineItem(BaseModel):
    """One (service name, hours, price) tuple captured by voice."""
    model_config = ConfigDict(frozen=True)

    name: str
    hours: float = Field(ge=0)
    price: float = Field(ge=0)


class ServiceLogRecord(BaseModel):
    """Payload for ``POST /services``."""

    vehicle_id: str
    service_type: str
    notes: str
    service_date: date
    mileage_at_service: Optional[int] = None
    labor_hours: float = Field(ge=0)


class InvoiceService(BaseModel):
    """One service line on a quick invoice."""

    name: str
    price: float = Field(ge=0)
    labor_hours: float = Field(ge=0)
    quantity: int = 1


class QuickInvoiceRecord(BaseModel):
    """Payload for ``POST /invoices/quick``."""

    customer_id: str
    vehicle_id: str
    services: list[InvoiceService] = Field(min_length=1)
    tax_rate: float = Field(ge=0, le=1)
    notes: Optional[str] = None


class CommitResult(BaseModel):
    """What the commit boundary created."""

    kind: Literal["invoice", "service_log"]
    record_id: str
    reference: Optional[str] = None
    total: float = 0.0
    pdf_path: Optional[str] = None
