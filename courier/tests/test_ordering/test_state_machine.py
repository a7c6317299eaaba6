"""Tests for the client-side order lifecycle."""

import threading

import pytest

from courier.gateway.order_store_client import OrderStoreError
from courier.models.order import (
    STORE_STATUS_CANCELLED,
    STORE_STATUS_CONFIRMED,
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
from courier.ordering.state_machine import OrderStateMachine, extract_price


class FakePayments:
    def __init__(self, result: PaymentIntentResult | None = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.requests: list[PaymentIntentRequest] = []

    def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntentResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result or PaymentIntentResult(
            order_id=request.order_id,
            status="succeeded",
            payment_intent_id="pi_1",
            amount=request.amount,
            currency=request.currency,
        )


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def machine(fake_order_store, payments):
    return OrderStateMachine(fake_order_store, payments, user_id="user-1")


def _estimated(machine):
    machine.calculate_estimate("1 Pickup St", "9 Dropoff Rd", "2.5", carrier="bike")
    return machine


def _confirmed(machine):
    _estimated(machine).confirm_order()
    return machine


class TestExtractPrice:
    def test_pricing_details_first(self):
        data = {"pricing_details": {"total_cost": 12.5}, "estimatedPrice": {"total": 9}}
        assert extract_price(data) == 12.5

    def test_falls_back_to_estimated_price(self):
        assert extract_price({"estimatedPrice": {"total": 9}}) == 9.0

    def test_missing_is_zero(self):
        assert extract_price({"orderId": "o"}) == 0.0

    def test_numeric_estimated_price(self):
        assert extract_price({"estimatedPrice": 65.22}) == 65.22
        assert extract_price({"estimatedPrice": "12.50"}) == 12.5

    def test_non_object_pricing_ignored(self):
        assert extract_price({"pricing_details": "n/a", "estimatedPrice": 7}) == 7.0
        assert extract_price({"estimatedPrice": "free"}) == 0.0


class TestEstimate:
    def test_creates_order(self, machine, fake_order_store):
        estimate = machine.calculate_estimate("A", "B", "2.5", carrier="bike")
        assert estimate.order_id == "ord-1"
        assert estimate.status == OrderStatus.CREATED
        assert estimate.estimated_price == pytest.approx(65.22)
        sent = fake_order_store.created[0]
        assert sent["package_weight"] == 2.5
        assert sent["vehicle_type"] == "BIKE"
        assert sent["user_id"] == "user-1"
        assert machine.status == OrderStatus.CREATED

    def test_unparseable_weight_sent_as_zero(self, machine, fake_order_store):
        machine.calculate_estimate("A", "B", "heavy")
        assert fake_order_store.created[0]["package_weight"] == 0.0

    def test_store_failure_stays_draft(self, machine, fake_order_store):
        def boom(details):
            raise OrderStoreError("HTTP 500: down", 500)

        fake_order_store.create_order = boom
        with pytest.raises(OrderStoreError):
            machine.calculate_estimate("A", "B", "1")
        order = machine.order
        assert order.status == OrderStatus.DRAFT
        assert order.in_flight is None
        assert "down" in order.error

    def test_second_estimate_rejected(self, machine):
        _estimated(machine)
        with pytest.raises(InvalidTransitionError):
            machine.calculate_estimate("A", "B", "1")

    def test_numeric_estimated_price_response(self, machine, fake_order_store):
        def create_order(details):
            return {"orderId": "o1", "status": "CREATED", "estimatedPrice": 65.22}

        fake_order_store.create_order = create_order
        estimate = machine.calculate_estimate("A", "B", "1")
        assert estimate.status == OrderStatus.CREATED
        assert estimate.estimated_price == pytest.approx(65.22)
        assert machine.order.pricing == {}

        machine.confirm_order()
        assert machine.order.payment_amount == 6522


class TestConfirm:
    def test_confirm_fixes_payment_amount(self, machine, fake_order_store):
        order = _confirmed(machine).order
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_amount == 6522
        assert fake_order_store.updates == [("ord-1", STORE_STATUS_CONFIRMED)]

    def test_confirm_without_order_id(self, machine, fake_order_store):
        with pytest.raises(NoOrderError):
            machine.confirm_order()
        assert machine.order.error == "No order ID found. Please try again."
        assert fake_order_store.updates == []

    def test_store_failure_keeps_created(self, machine, fake_order_store):
        _estimated(machine)
        fake_order_store.failures = [OrderStoreError("HTTP 503: busy", 503)]
        with pytest.raises(OrderStoreError):
            machine.confirm_order()
        assert machine.status == OrderStatus.CREATED
        assert machine.order.payment_amount is None

    def test_concurrent_confirm_calls_store_once(self, machine, fake_order_store):
        _estimated(machine)
        fake_order_store.block = threading.Event()
        errors: list[Exception] = []

        first = threading.Thread(target=machine.confirm_order)
        first.start()
        assert fake_order_store.entered.wait(5)
        assert machine.order.is_loading
        try:
            machine.confirm_order()
        except OperationInFlightError as e:
            errors.append(e)
        fake_order_store.block.set()
        first.join(5)

        assert len(errors) == 1
        assert errors[0].operation == "confirm_order"
        assert fake_order_store.updates == [("ord-1", STORE_STATUS_CONFIRMED)]
        assert machine.status == OrderStatus.CONFIRMED

    def test_cancel_rejected_while_confirm_in_flight(self, machine, fake_order_store):
        _estimated(machine)
        fake_order_store.block = threading.Event()
        first = threading.Thread(target=machine.confirm_order)
        first.start()
        assert fake_order_store.entered.wait(5)
        with pytest.raises(OperationInFlightError):
            machine.cancel_order()
        fake_order_store.block.set()
        first.join(5)
        assert machine.status == OrderStatus.CONFIRMED


class TestPayment:
    def test_pay_success(self, machine, payments):
        _confirmed(machine)
        result = machine.process_payment("pm_card", customer_id="cus_1")
        assert result.succeeded
        order = machine.order
        assert order.status == OrderStatus.PAID
        assert order.payment_status == PaymentStatus.SUCCESS
        assert order.payment_intent_id == "pi_1"
        request = payments.requests[0]
        assert request.amount == 6522
        assert request.order_id == "ord-1"
        assert request.payment_method_id == "pm_card"

    def test_pay_before_confirm_rejected(self, machine, payments):
        _estimated(machine)
        with pytest.raises(InvalidTransitionError):
            machine.process_payment("pm_card")
        assert payments.requests == []

    def test_pending_stays_confirmed(self, machine, payments):
        _confirmed(machine)
        payments.result = PaymentIntentResult(order_id="ord-1", status="processing", pending=True)
        result = machine.process_payment("pm_card")
        assert result.pending
        order = machine.order
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_status == PaymentStatus.PROCESSING

    def test_failed_status_raises(self, machine, payments):
        _confirmed(machine)
        payments.result = PaymentIntentResult(order_id="ord-1", status="requires_action")
        with pytest.raises(PaymentFailedError) as exc:
            machine.process_payment("pm_card")
        assert exc.value.status == "requires_action"
        order = machine.order
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_status == PaymentStatus.ERROR

    def test_gateway_error_recorded(self, machine, payments):
        _confirmed(machine)
        payments.error = RuntimeError("card declined")
        with pytest.raises(RuntimeError):
            machine.process_payment("pm_card")
        order = machine.order
        assert order.payment_status == PaymentStatus.ERROR
        assert order.error == "card declined"
        assert order.in_flight is None

    def test_retry_after_failure(self, machine, payments):
        _confirmed(machine)
        payments.error = RuntimeError("card declined")
        with pytest.raises(RuntimeError):
            machine.process_payment("pm_card")
        payments.error = None
        machine.process_payment("pm_other")
        assert machine.status == OrderStatus.PAID
        assert len(payments.requests) == 2


class TestCancel:
    def test_cancel_created(self, machine, fake_order_store):
        _estimated(machine)
        cancelled = machine.cancel_order()
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.order_id == "ord-1"
        assert fake_order_store.updates == [("ord-1", STORE_STATUS_CANCELLED)]
        # Local order cleared entirely
        order = machine.order
        assert order.order_id is None
        assert order.status == OrderStatus.DRAFT

    def test_cancel_confirmed(self, machine):
        _confirmed(machine)
        assert machine.cancel_order().status == OrderStatus.CANCELLED

    def test_cancel_paid_rejected(self, machine):
        _confirmed(machine)
        machine.process_payment("pm_card")
        with pytest.raises(InvalidTransitionError):
            machine.cancel_order()
        assert machine.status == OrderStatus.PAID

    def test_cancel_failure_keeps_order(self, machine, fake_order_store):
        _estimated(machine)
        fake_order_store.failures = [OrderStoreError("HTTP 500: down", 500)]
        with pytest.raises(OrderStoreError):
            machine.cancel_order()
        assert machine.order.order_id == "ord-1"
        assert machine.status == OrderStatus.CREATED


class TestFulfillment:
    def _paid(self, machine):
        _confirmed(machine)
        machine.process_payment("pm_card")
        return machine

    def test_advance_through_delivery(self, machine):
        self._paid(machine)
        assert machine.advance_to(OrderStatus.IN_TRANSIT)
        assert machine.advance_to(OrderStatus.DELIVERED)
        assert machine.status == OrderStatus.DELIVERED

    def test_repeat_is_noop(self, machine):
        self._paid(machine)
        assert machine.advance_to(OrderStatus.IN_TRANSIT)
        assert not machine.advance_to(OrderStatus.IN_TRANSIT)

    def test_no_regression(self, machine):
        self._paid(machine)
        machine.advance_to(OrderStatus.DELIVERED)
        assert not machine.advance_to(OrderStatus.IN_TRANSIT)
        assert machine.status == OrderStatus.DELIVERED

    def test_ignored_before_payment(self, machine):
        _confirmed(machine)
        assert not machine.advance_to(OrderStatus.IN_TRANSIT)
        assert machine.status == OrderStatus.CONFIRMED

    def test_non_fulfillment_target_rejected(self, machine):
        self._paid(machine)
        with pytest.raises(InvalidTransitionError):
            machine.advance_to(OrderStatus.CANCELLED)

    def test_acknowledge_delivery_resets(self, machine):
        self._paid(machine)
        machine.advance_to(OrderStatus.DELIVERED)
        delivered = machine.acknowledge_delivery()
        assert delivered.status == OrderStatus.DELIVERED
        assert machine.status == OrderStatus.DRAFT

    def test_acknowledge_before_delivery_rejected(self, machine):
        self._paid(machine)
        with pytest.raises(InvalidTransitionError):
            machine.acknowledge_delivery()


class TestScenarioHappyPath:
    def test_estimate_confirm_pay(self, fake_order_store, payments):
        machine = OrderStateMachine(fake_order_store, payments)
        estimate = machine.calculate_estimate("A", "B", "1")
        assert estimate.estimated_price == pytest.approx(65.22)
        machine.confirm_order()
        machine.process_payment("pm_card")
        order = machine.order
        assert order.status == OrderStatus.PAID
        assert payments.requests[0].amount == 6522
