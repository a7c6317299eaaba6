"""Reconcile a stream of fulfillment events into one current view per order.

Status and driver location are independent concerns: each keeps the most
recent event it has applied, and an older event never replaces a newer one.
When both events carry a per-order sequence number it decides recency;
otherwise the origin timestamp does. Duplicates are no-ops and malformed
payloads are logged and discarded so one bad event never blocks the next.
"""

import logging
import threading
from typing import Any, Callable, Mapping, Protocol

from courier.config.defaults import ASSIGNMENT_STATUS, DEFAULT_STATUS_ALIASES
from courier.models.events import (
    ASSIGNMENT_EVENT_TYPES,
    LOCATION_EVENT_TYPES,
    STATUS_EVENT_TYPES,
    DriverLocation,
    ReconciledStatus,
    StatusEvent,
)
from courier.models.order import OrderStatus
from courier.tracking.channel import RealtimeChannel, Subscription
from courier.tracking.normalizer import normalize_message

logger = logging.getLogger(__name__)

StatusObserver = Callable[[ReconciledStatus], None]
LocationObserver = Callable[[DriverLocation], None]


class MalformedEventError(ValueError):
    pass


class Lifecycle(Protocol):
    def advance_to(self, target: OrderStatus) -> bool: ...


# Reconciled status text that moves the order lifecycle forward
LIFECYCLE_STATUSES: dict[str, OrderStatus] = {
    OrderStatus.IN_TRANSIT.value: OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED.value: OrderStatus.DELIVERED,
}


def normalize_status(status: str, aliases: Mapping[str, str] | None = None) -> str:
    table = DEFAULT_STATUS_ALIASES if aliases is None else aliases
    text = str(status).strip()
    return table.get(text, text)


def _is_newer(event: StatusEvent, applied: StatusEvent | None) -> bool:
    if applied is None:
        return True
    if event.sequence is not None and applied.sequence is not None:
        return event.sequence > applied.sequence
    return event.timestamp > applied.timestamp


class StatusReconciler:
    """Reconciled view of one tracked order."""

    def __init__(
        self,
        order_id: str,
        aliases: Mapping[str, str] | None = None,
        lifecycle: Lifecycle | None = None,
    ):
        self.order_id = order_id
        self.aliases = dict(DEFAULT_STATUS_ALIASES if aliases is None else aliases)
        self.lifecycle = lifecycle
        self._lock = threading.Lock()
        self._seen: set[tuple[str, str, int]] = set()
        self._status_event: StatusEvent | None = None
        self._location_event: StatusEvent | None = None
        self._status: ReconciledStatus | None = None
        self._location: DriverLocation | None = None
        self._status_observers: list[StatusObserver] = []
        self._location_observers: list[LocationObserver] = []

    @property
    def status(self) -> ReconciledStatus | None:
        return self._status

    @property
    def driver_location(self) -> DriverLocation | None:
        return self._location

    def subscribe(
        self,
        on_status: StatusObserver | None = None,
        on_location: LocationObserver | None = None,
    ) -> None:
        if on_status is not None:
            self._status_observers.append(on_status)
        if on_location is not None:
            self._location_observers.append(on_location)

    def apply_many(self, events: list[StatusEvent]) -> None:
        """Apply a buffered batch, most recent first."""
        for event in sorted(events, key=lambda e: e.timestamp, reverse=True):
            self.apply(event)

    def apply(self, event: StatusEvent) -> bool:
        """Apply one event. Returns True if the reconciled view changed."""
        if event.order_id != self.order_id:
            return False

        try:
            with self._lock:
                if event.dedupe_key in self._seen:
                    return False
                if event.event_type in STATUS_EVENT_TYPES:
                    changed = self._apply_status(event)
                elif event.event_type in LOCATION_EVENT_TYPES:
                    changed = self._apply_location(event)
                else:
                    return False
                self._seen.add(event.dedupe_key)
        except (MalformedEventError, KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Discarding malformed %s event for order %s: %s",
                event.event_type, event.order_id, e,
            )
            return False

        if changed:
            self._notify(event)
        return changed

    def _apply_status(self, event: StatusEvent) -> bool:
        payload = event.payload
        raw_status = payload.get("status")
        if not raw_status:
            if event.event_type not in ASSIGNMENT_EVENT_TYPES:
                raise MalformedEventError("status update without status")
            raw_status = ASSIGNMENT_STATUS
        if not _is_newer(event, self._status_event):
            logger.debug("Ignoring stale %s for order %s", event.event_type, event.order_id)
            return False

        status = normalize_status(raw_status, self.aliases)
        reconciled = ReconciledStatus(
            order_id=event.order_id,
            status=status,
            event_type=event.event_type,
            timestamp=event.timestamp,
            estimated_arrival=payload.get("estimatedArrival"),
            driver=payload.get("driver"),
            message=payload.get("message"),
        )
        self._status_event = event
        if reconciled == self._status:
            return False
        self._status = reconciled
        return True

    def _apply_location(self, event: StatusEvent) -> bool:
        location: Any = event.payload.get("location", event.payload)
        if not isinstance(location, Mapping):
            raise MalformedEventError("location is not an object")
        lat, lng = location.get("lat"), location.get("lng")
        if lat is None or lng is None:
            raise MalformedEventError("location without lat/lng")
        if not _is_newer(event, self._location_event):
            return False
        self._location = DriverLocation(
            lat=float(lat),
            lng=float(lng),
            timestamp=event.timestamp,
            heading=location.get("heading"),
            speed=location.get("speed"),
        )
        self._location_event = event
        return True

    def _notify(self, event: StatusEvent) -> None:
        if event.event_type in LOCATION_EVENT_TYPES:
            location = self._location
            for observer in list(self._location_observers):
                self._call(observer, location)
            return

        status = self._status
        if status is None:
            return
        target = LIFECYCLE_STATUSES.get(status.status)
        if target is not None and self.lifecycle is not None:
            try:
                self.lifecycle.advance_to(target)
            except Exception:
                logger.exception("Lifecycle rejected %s for order %s", target, self.order_id)
        for observer in list(self._status_observers):
            self._call(observer, status)

    def _call(self, observer: Callable, value: Any) -> None:
        try:
            observer(value)
        except Exception:
            logger.exception("Tracking observer failed for order %s", self.order_id)


class TrackingRegistry:
    """Per-order trackers over a real-time channel keyed by user id.

    start() subscribes, stop() unsubscribes and destroys the order's state;
    a tracker that is never stopped keeps consuming events, so owners must
    call stop() or stop_all() on teardown.
    """

    def __init__(
        self,
        channel: RealtimeChannel,
        user_id: str,
        aliases: Mapping[str, str] | None = None,
    ):
        self.channel = channel
        self.user_id = user_id
        self.aliases = aliases
        self._lock = threading.Lock()
        self._trackers: dict[str, tuple[StatusReconciler, Subscription]] = {}

    def start(self, order_id: str, lifecycle: Lifecycle | None = None) -> StatusReconciler:
        with self._lock:
            existing = self._trackers.get(order_id)
            if existing is not None:
                return existing[0]
            reconciler = StatusReconciler(order_id, self.aliases, lifecycle)
            subscription = self.channel.subscribe(
                self.user_id, lambda raw: self._dispatch(reconciler, raw)
            )
            self._trackers[order_id] = (reconciler, subscription)
        logger.info("Started tracking order %s", order_id)
        return reconciler

    def stop(self, order_id: str) -> bool:
        with self._lock:
            entry = self._trackers.pop(order_id, None)
        if entry is None:
            return False
        entry[1].unsubscribe()
        logger.info("Stopped tracking order %s", order_id)
        return True

    def stop_all(self) -> None:
        for order_id in self.active_orders():
            self.stop(order_id)

    def active_orders(self) -> list[str]:
        with self._lock:
            return list(self._trackers)

    def get(self, order_id: str) -> StatusReconciler | None:
        with self._lock:
            entry = self._trackers.get(order_id)
        return entry[0] if entry is not None else None

    @staticmethod
    def _dispatch(reconciler: StatusReconciler, raw: Any) -> None:
        event = normalize_message(raw)
        if event is not None:
            reconciler.apply(event)
