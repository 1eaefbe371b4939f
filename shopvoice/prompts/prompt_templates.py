"""Every sentence the assistant speaks during a capture session."""

from typing import Optional, Sequence

from shopvoice.schemas.shop_schema import LineItem, Vehicle
from shopvoice.utils import format_hours, format_money

ASK_CUSTOMER = "Please say the name of the customer."
ASK_SERVICE_AND_HOURS = "Please state the service done and how many hours."
ASK_ITEM_NAME = "What service did you perform?"
ASK_MORE = (
    "Would you like to add anything else? "
    "Say yes to add more items, or no to finish."
)
RETRY = "I didn't catch that. Please try again."
VEHICLE_NOT_MATCHED = "Sorry, I couldn't match that vehicle."
NO_ITEMS = "No items to record. Cancelling."
SAVING_SERVICE_LOG = "Saving the service log."
CANCELLED = "Cancelled."


def build_customer_not_found(spoken: str) -> str:
    return f"Sorry, I couldn't find a customer named {spoken}. Please try again."


def build_no_vehicles(customer_name: str) -> str:
    return f"{customer_name} has no vehicles registered."


def build_single_vehicle_found(customer_name: str, vehicle: Vehicle) -> str:
    return f"Found {customer_name} with a {vehicle.description}."


def build_vehicle_choice(customer_name: str, vehicles: Sequence[Vehicle]) -> str:
    """List the customer's vehicles, e.g. ``... 2 vehicles: A, or B. Which vehicle?``"""
    names = ", or ".join(v.description for v in vehicles)
    return f"{customer_name} has {len(vehicles)} vehicles: {names}. Which vehicle?"


def build_vehicle_selected(vehicle: Vehicle) -> str:
    return f"Selected the {vehicle.description}."


def build_hours_prompt(service_name: Optional[str], position: Optional[int] = None) -> str:
    """Hours question for the next item.

    A position means the item comes from the vehicle's recent services and
    the user may say "done" to skip the rest of them.
    """
    if service_name is None:
        return ASK_SERVICE_AND_HOURS
    if position is not None:
        return (
            f"Service {position}: {service_name}. How many hours? "
            "Or say done to skip remaining services."
        )
    return f"How many hours for {service_name}?"


def build_price_prompt(suggested_price: float) -> str:
    return f"What's the price? The default is {format_money(suggested_price)}."


def build_item_added(item: LineItem) -> str:
    return f"Added {item.name}, {format_hours(item.hours)}, {format_money(item.price)}."


def build_creating_invoice(subtotal: float) -> str:
    return f"Creating invoice for ${subtotal:.2f} plus tax."


def build_invoice_created(reference: Optional[str], customer_name: str, total: float) -> str:
    label = f"Invoice {reference}" if reference else "Invoice"
    return f"{label} created for {customer_name}. The total is ${total:.2f} with tax."


def build_service_logged(vehicle: Vehicle, items: Sequence[LineItem]) -> str:
    count = len(items)
    noun = "service" if count == 1 else "services"
    return f"Logged {count} {noun} for the {vehicle.description}."
