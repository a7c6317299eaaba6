"""Errors raised by the order state machine."""

from courier.models.order import OrderStatus


class OrderError(Exception):
    pass


class NoOrderError(OrderError):
    """An operation needs an order the store has not created yet."""


class InvalidTransitionError(OrderError):
    def __init__(self, current: OrderStatus, target: OrderStatus, operation: str = ""):
        self.current = current
        self.target = target
        self.operation = operation
        label = f"{operation}: " if operation else ""
        super().__init__(f"{label}cannot move order from {current} to {target}")


class OperationInFlightError(OrderError):
    """Another store-mutating operation has not finished yet."""

    def __init__(self, operation: str, requested: str):
        self.operation = operation
        self.requested = requested
        super().__init__(f"Cannot {requested} while {operation} is in flight")


class PaymentFailedError(OrderError):
    def __init__(self, message: str, status: str = ""):
        super().__init__(message)
        self.status = status
