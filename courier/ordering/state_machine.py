"""Client-side order lifecycle: estimate -> confirm -> pay, or cancel.

DRAFT -> CREATED -> CONFIRMED -> PAID -> IN_TRANSIT -> DELIVERED, with
CANCELLED reachable from CREATED and CONFIRMED. Every store-calling
operation holds the in-flight slot for the duration of its network call,
so a second operation started meanwhile is rejected instead of queued.
"""

import logging
import math
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator, Mapping, Protocol

from courier.gateway.order_store_client import OrderStoreClient
from courier.models.order import (
    STORE_STATUS_CANCELLED,
    STORE_STATUS_CONFIRMED,
    Estimate,
    Order,
    OrderStatus,
    PaymentStatus,
)
from courier.models.payment import PaymentIntentRequest, PaymentIntentResult
from courier.ordering.errors import (
    InvalidTransitionError,
    NoOrderError,
    OperationInFlightError,
    PaymentFailedError,
)

logger = logging.getLogger(__name__)

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.DRAFT: frozenset({OrderStatus.CREATED}),
    OrderStatus.CREATED: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Lifecycle states reachable only through fulfillment events
FULFILLMENT_STATUSES = frozenset({OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED})


class PaymentGateway(Protocol):
    def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntentResult: ...


def _as_price(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if math.isfinite(price) and price > 0 else None


def extract_price(data: dict) -> float:
    """Total price from an order-creation response, 0.0 when absent.

    `pricing_details.total_cost` wins; `estimatedPrice` may be either a bare
    number or an object carrying `total`.
    """
    pricing = data.get("pricing_details")
    if isinstance(pricing, Mapping):
        price = _as_price(pricing.get("total_cost"))
        if price is not None:
            return price
    estimated = data.get("estimatedPrice")
    if isinstance(estimated, Mapping):
        estimated = estimated.get("total")
    price = _as_price(estimated)
    return price if price is not None else 0.0


def extract_pricing(data: dict) -> dict:
    """Raw pricing breakdown, if the store returned one as an object."""
    for key in ("pricing_details", "estimatedPrice"):
        value = data.get(key)
        if isinstance(value, Mapping) and value:
            return dict(value)
    return {}


class OrderStateMachine:
    def __init__(
        self,
        order_store: OrderStoreClient,
        payments: PaymentGateway,
        user_id: str = "",
        currency: str = "usd",
    ):
        self.order_store = order_store
        self.payments = payments
        self.user_id = user_id
        self.currency = currency
        self._order = Order()
        self._lock = threading.Lock()

    @property
    def order(self) -> Order:
        """A snapshot of the current order; mutate only through operations."""
        with self._lock:
            return replace(self._order)

    @property
    def status(self) -> OrderStatus:
        return self._order.status

    def can_transition(self, target: OrderStatus) -> bool:
        return target in TRANSITIONS[self._order.status]

    @contextmanager
    def _in_flight(self, operation: str, target: OrderStatus) -> Iterator[Order]:
        with self._lock:
            order = self._order
            if order.in_flight is not None:
                raise OperationInFlightError(order.in_flight, operation)
            if target not in TRANSITIONS[order.status]:
                raise InvalidTransitionError(order.status, target, operation)
            order.in_flight = operation
            order.error = None
        try:
            yield order
        except Exception as e:
            with self._lock:
                order.error = str(e)
            raise
        finally:
            with self._lock:
                order.in_flight = None

    def _require_order_id(self, operation: str) -> str:
        order_id = self._order.order_id
        if not order_id:
            self._order.error = "No order ID found. Please try again."
            raise NoOrderError(f"{operation} requires an estimated order")
        return order_id

    # --- Operations ---

    def calculate_estimate(
        self,
        pickup: str,
        dropoff: str,
        weight: str | float,
        carrier: str = "car",
        distance: float = 0.0,
        duration: float = 0.0,
    ) -> Estimate:
        """Create the order in the store and record its price estimate.

        Failures leave the order in DRAFT; the caller decides whether to retry.
        """
        try:
            parsed_weight = float(weight)
        except (TypeError, ValueError):
            parsed_weight = 0.0

        with self._in_flight("calculate_estimate", OrderStatus.CREATED) as order:
            details = {
                "from_address": pickup,
                "to_address": dropoff,
                "user_id": self.user_id,
                "package_weight": parsed_weight,
                "delivery_instructions": "",
                "vehicle_type": carrier.upper(),
                "distance": distance,
                "time": duration,
            }
            data = self.order_store.create_order(details)
            price = extract_price(data)

            with self._lock:
                order.order_id = str(data["orderId"])
                order.status = OrderStatus.CREATED
                order.pickup = pickup
                order.dropoff = dropoff
                order.weight = parsed_weight
                order.carrier = carrier
                order.estimated_price = price
                order.pricing = extract_pricing(data)

        logger.info("Order %s created with estimate %.2f", order.order_id, price)
        return Estimate(order_id=order.order_id, status=order.status, estimated_price=price)

    def confirm_order(self) -> Order:
        order_id = self._require_order_id("confirm_order")
        with self._in_flight("confirm_order", OrderStatus.CONFIRMED) as order:
            self.order_store.update_status(order_id, STORE_STATUS_CONFIRMED)
            with self._lock:
                order.status = OrderStatus.CONFIRMED
                # Fixed here; later estimate changes never reprice the charge
                order.payment_amount = round(order.estimated_price * 100)
        logger.info("Order %s confirmed for %d minor units", order_id, order.payment_amount)
        return self.order

    def process_payment(
        self, payment_method_id: str, customer_id: str = ""
    ) -> PaymentIntentResult:
        """Charge the confirmed amount.

        A pending result leaves the order CONFIRMED with payment_status
        processing; the final state arrives out of band. Each call is a new
        charge attempt.
        """
        order_id = self._require_order_id("process_payment")
        with self._in_flight("process_payment", OrderStatus.PAID) as order:
            order.payment_status = PaymentStatus.PROCESSING
            try:
                result = self.payments.create_payment_intent(
                    PaymentIntentRequest(
                        order_id=order_id,
                        customer_id=customer_id,
                        payment_method_id=payment_method_id,
                        amount=order.payment_amount,
                        currency=self.currency,
                    )
                )
                if not result.pending and not result.succeeded:
                    raise PaymentFailedError(
                        f"Payment for order {order_id} ended with status {result.status!r}",
                        result.status,
                    )
            except Exception:
                with self._lock:
                    order.payment_status = PaymentStatus.ERROR
                raise

            with self._lock:
                if result.pending:
                    logger.info("Payment for order %s is still processing", order_id)
                else:
                    order.status = OrderStatus.PAID
                    order.payment_status = PaymentStatus.SUCCESS
                    order.payment_intent_id = result.payment_intent_id
        if result.succeeded:
            logger.info("Order %s paid (intent %s)", order_id, result.payment_intent_id)
        return result

    def cancel_order(self) -> Order:
        """Cancel in the store, then drop the in-memory order entirely."""
        order_id = self._require_order_id("cancel_order")
        with self._in_flight("cancel_order", OrderStatus.CANCELLED) as order:
            self.order_store.update_status(order_id, STORE_STATUS_CANCELLED)
            with self._lock:
                order.status = OrderStatus.CANCELLED
                cancelled = replace(order, in_flight=None)
                self._order = Order()
        logger.info("Order %s cancelled", order_id)
        return cancelled

    # --- Fulfillment progression ---

    def advance_to(self, target: OrderStatus) -> bool:
        """Apply a fulfillment status fed from tracking.

        Returns False (and changes nothing) when the transition is not valid
        from the current state; a repeated stage is a no-op.
        """
        if target not in FULFILLMENT_STATUSES:
            raise InvalidTransitionError(self._order.status, target, "advance_to")
        with self._lock:
            current = self._order.status
            if current == target:
                return False
            if target not in TRANSITIONS[current]:
                logger.info("Ignoring fulfillment status %s while order is %s", target, current)
                return False
            self._order.status = target
        logger.info("Order %s advanced to %s", self._order.order_id, target)
        return True

    def acknowledge_delivery(self) -> Order:
        """Clear a delivered order once the user has seen the outcome."""
        with self._lock:
            if self._order.status != OrderStatus.DELIVERED:
                raise InvalidTransitionError(
                    self._order.status, OrderStatus.DELIVERED, "acknowledge_delivery"
                )
            delivered = replace(self._order)
            self._order = Order()
        return delivered

    def reset(self) -> None:
        with self._lock:
            if self._order.in_flight is not None:
                raise OperationInFlightError(self._order.in_flight, "reset")
            self._order = Order()
