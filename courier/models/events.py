"""Canonical real-time event envelope and reconciled tracking views."""

from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Mapping


class EventType(StrEnum):
    DRIVER_ASSIGNED = "DriverAssigned"
    DRIVER_LIVE_LOCATION = "DriverLiveLocation"
    ORDER_STATUS_UPDATED = "OrderStatusUpdated"
    ORDER_ACCEPTED = "Order Accepted"


STATUS_EVENT_TYPES = frozenset({
    EventType.DRIVER_ASSIGNED,
    EventType.ORDER_STATUS_UPDATED,
    EventType.ORDER_ACCEPTED,
})
LOCATION_EVENT_TYPES = frozenset({EventType.DRIVER_LIVE_LOCATION})
ASSIGNMENT_EVENT_TYPES = frozenset({
    EventType.DRIVER_ASSIGNED,
    EventType.ORDER_ACCEPTED,
})


def _freeze(payload: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(payload or {}))


@dataclass(frozen=True)
class StatusEvent:
    event_type: EventType
    order_id: str
    timestamp: int  # epoch ms, set by the origin
    payload: Mapping[str, Any] = field(default_factory=dict)
    sequence: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", _freeze(self.payload))

    @property
    def dedupe_key(self) -> tuple[str, str, int]:
        return (self.event_type.value, self.order_id, self.timestamp)

    def to_wire(self) -> dict[str, Any]:
        """Render as the canonical {eventType, orderId, timestamp, data} envelope."""
        wire: dict[str, Any] = {
            "eventType": self.event_type.value,
            "orderId": self.order_id,
            "timestamp": self.timestamp,
            "data": dict(self.payload),
        }
        if self.sequence is not None:
            wire["sequence"] = self.sequence
        return wire


@dataclass(frozen=True)
class ReconciledStatus:
    order_id: str
    status: str
    event_type: EventType
    timestamp: int
    estimated_arrival: str | None = None
    driver: Any = None
    message: str | None = None


@dataclass(frozen=True)
class DriverLocation:
    lat: float
    lng: float
    timestamp: int
    heading: float | None = None
    speed: float | None = None
