"""Background delivery of "payment received" to the order service.

The charge has already succeeded when this runs; a failure here only means
the order record lags. Outcomes are reported through a callback so the
payment attempt row records whether the order service ever heard about it.
"""

import logging
import threading
import time
from typing import Callable

from courier.config.schema import PropagationConfig
from courier.gateway.order_store_client import OrderStoreClient, OrderStoreError
from courier.models.payment import PropagationOutcome

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[PropagationOutcome], None]


def backoff_delay_ms(attempt: int, base_delay_ms: int = 1000, max_delay_ms: int = 10000) -> int:
    """Delay after the given (1-based) failed attempt: base * 2^(attempt-1), capped."""
    return min(base_delay_ms * 2 ** (attempt - 1), max_delay_ms)


class StatusPropagationRetrier:
    def __init__(
        self,
        order_store: OrderStoreClient,
        config: PropagationConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.order_store = order_store
        self.config = config or PropagationConfig()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._in_flight: dict[str, threading.Thread] = {}

    def propagate(self, order_id: str) -> PropagationOutcome:
        """Deliver the status update, retrying transient failures.

        Timeouts, network errors and 5xx responses are retried with
        exponential backoff; a 4xx is permanent and ends the loop. Store
        errors are reported in the outcome, never raised.
        """
        cfg = self.config
        delays: list[int] = []
        last_error = ""

        for attempt in range(1, cfg.max_attempts + 1):
            try:
                self.order_store.update_status(
                    order_id, cfg.status_text, timeout=cfg.attempt_timeout_seconds
                )
                logger.info(
                    "Order %s marked %r on attempt %d", order_id, cfg.status_text, attempt
                )
                return PropagationOutcome(
                    order_id=order_id, delivered=True, attempts=attempt, delays_ms=delays
                )
            except OrderStoreError as e:
                last_error = str(e)
                if e.is_permanent:
                    logger.error(
                        "Permanent error updating order %s (HTTP %s): %s",
                        order_id, e.status_code, e,
                    )
                    return PropagationOutcome(
                        order_id=order_id,
                        delivered=False,
                        attempts=attempt,
                        delays_ms=delays,
                        permanent=True,
                        error=last_error,
                    )

            delay = backoff_delay_ms(attempt, cfg.base_delay_ms, cfg.max_delay_ms)
            delays.append(delay)
            logger.warning(
                "Order %s status update failed (attempt %d/%d), retrying in %dms: %s",
                order_id, attempt, cfg.max_attempts, delay, last_error,
            )
            self._sleep(delay / 1000)

        logger.error(
            "Failed to update order status after %d attempts for order %s",
            cfg.max_attempts, order_id,
        )
        return PropagationOutcome(
            order_id=order_id,
            delivered=False,
            attempts=cfg.max_attempts,
            delays_ms=delays,
            error=last_error,
        )

    def submit(
        self, order_id: str, on_complete: OutcomeCallback | None = None
    ) -> threading.Thread | None:
        """Run propagate() on a detached thread.

        Returns None without starting anything when a propagation for the
        same order is already running.
        """
        with self._lock:
            running = self._in_flight.get(order_id)
            if running is not None and running.is_alive():
                logger.info("Propagation already in flight for order %s, skipping", order_id)
                return None
            thread = threading.Thread(
                target=self._run,
                args=(order_id, on_complete),
                name=f"propagate-{order_id}",
                daemon=True,
            )
            self._in_flight[order_id] = thread
            thread.start()
        return thread

    def _run(self, order_id: str, on_complete: OutcomeCallback | None) -> None:
        try:
            outcome = self.propagate(order_id)
            if on_complete is not None:
                on_complete(outcome)
        except Exception:
            logger.exception("Propagation for order %s crashed", order_id)
        finally:
            with self._lock:
                if self._in_flight.get(order_id) is threading.current_thread():
                    del self._in_flight[order_id]

    def in_flight(self) -> list[str]:
        with self._lock:
            return [oid for oid, t in self._in_flight.items() if t.is_alive()]

    def join(self, timeout: float | None = None) -> bool:
        """Wait for running propagations. Returns True if none are left."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                threads = list(self._in_flight.values())
            if not threads:
                return True
            for t in threads:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                t.join(remaining)
            if deadline is not None and time.monotonic() >= deadline:
                with self._lock:
                    return not any(t.is_alive() for t in self._in_flight.values())
