"""Client-side order record and lifecycle states."""

from dataclasses import dataclass, field
from enum import StrEnum


class OrderStatus(StrEnum):
    DRAFT = "DRAFT"
    CREATED = "CREATED"
    CONFIRMED = "CONFIRMED"
    PAID = "PAID"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(StrEnum):
    IDLE = "idle"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


# Status text the order store expects for each client-driven update.
STORE_STATUS_CONFIRMED = "ORDER CONFIRMED"
STORE_STATUS_CANCELLED = "CANCELLED"
STORE_STATUS_PAYMENT_RECEIVED = "PAYMENT RECEIVED"


@dataclass
class Order:
    order_id: str | None = None
    status: OrderStatus = OrderStatus.DRAFT
    pickup: str = ""
    dropoff: str = ""
    weight: float = 0.0
    carrier: str = "car"
    estimated_price: float = 0.0
    payment_amount: int | None = None  # minor units, fixed at confirmation
    payment_intent_id: str | None = None
    payment_status: PaymentStatus = PaymentStatus.IDLE
    pricing: dict = field(default_factory=dict)
    error: str | None = None
    in_flight: str | None = None

    @property
    def is_loading(self) -> bool:
        return self.in_flight is not None


@dataclass(frozen=True)
class Estimate:
    order_id: str
    status: OrderStatus
    estimated_price: float
