"""Payment intent orchestrator: persist attempt, charge within budget, hand off.

1. Validate and normalize the request
2. Persist the attempt (status=created) before the processor is called
3. Charge with inline confirmation, waiting at most the response budget
4. Persist the outcome; on success hand the order to the propagation retrier

A charge that outlives the budget keeps running. The caller gets a pending
result and the late outcome is recorded (and propagated) when it lands. An
intent the processor reports as processing is re-read a bounded number of
times in the background until it settles.
"""

import logging
import sqlite3
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait
from functools import partial

from courier.config.schema import PaymentsConfig
from courier.gateway.processor_client import ProcessorClient, ProcessorError
from courier.models.payment import (
    AttemptStatus,
    PaymentAttempt,
    PaymentIntentRequest,
    PaymentIntentResult,
    PropagationOutcome,
    PropagationStatus,
    RefundResult,
)
from courier.payments.amounts import PaymentRequestError, normalize_amount
from courier.payments.idempotency import generate_idempotency_key, next_attempt_number
from courier.payments.propagation import StatusPropagationRetrier
from courier.storage import payment_repo

logger = logging.getLogger(__name__)

PROCESSING = "processing"
REFUND_REASONS = frozenset({"duplicate", "fraudulent", "requested_by_customer"})


class PaymentNotFoundError(LookupError):
    pass


def _attempt_status_for(processor_status: str) -> AttemptStatus:
    if processor_status == "succeeded":
        return AttemptStatus.SUCCEEDED
    if processor_status == PROCESSING:
        return AttemptStatus.PENDING
    return AttemptStatus.FAILED


class PaymentIntentOrchestrator:
    def __init__(
        self,
        conn: sqlite3.Connection,
        processor: ProcessorClient,
        retrier: StatusPropagationRetrier,
        config: PaymentsConfig | None = None,
        default_currency: str = "usd",
        sleep=time.sleep,
    ):
        self.conn = conn
        self.processor = processor
        self.retrier = retrier
        self.config = config or PaymentsConfig()
        self.default_currency = default_currency
        self._sleep = sleep
        self._db_lock = threading.Lock()
        self._pool = ThreadPoolExecutor(
            max_workers=self.config.max_charge_workers,
            thread_name_prefix="charge",
        )
        self._late_lock = threading.Lock()
        self._late_charges: set[Future] = set()
        self._refund_lock = threading.Lock()

    # --- Charges ---

    def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntentResult:
        """Charge the customer for an order.

        Raises:
            PaymentRequestError: missing fields or an unusable amount.
            ProcessorError: the processor declined or failed inside the budget.
        """
        started = time.monotonic()
        _require_fields(request)
        amount = normalize_amount(
            request.amount,
            self.config.amount_mode,
            self.config.heuristic_threshold,
        )
        currency = (request.currency or self.default_currency).lower()

        with self._db_lock:
            attempt_number = next_attempt_number(self.conn, request.order_id)
            attempt = PaymentAttempt(
                order_id=request.order_id,
                payment_method_id=request.payment_method_id,
                customer_id=request.customer_id,
                amount=amount,
                currency=currency,
                idempotency_key=generate_idempotency_key(request.order_id, attempt_number),
                attempt_number=attempt_number,
            )
            payment_repo.save_attempt(self.conn, attempt)

        logger.info(
            "Charging order %s: %d %s (attempt %d, key %s)",
            attempt.order_id, amount, currency, attempt_number, attempt.idempotency_key,
        )
        if request.return_url:
            logger.info("Return URL provided but redirects are disabled: %s", request.return_url)

        future = self._pool.submit(
            self.processor.create_and_confirm_charge,
            amount=amount,
            currency=currency,
            customer_id=request.customer_id,
            payment_method_id=request.payment_method_id,
            metadata={"order_id": request.order_id},
            idempotency_key=attempt.idempotency_key,
            description=f"Payment for order {request.order_id}",
        )

        try:
            intent = future.result(timeout=self.config.response_budget_seconds)
        except FutureTimeoutError:
            logger.warning(
                "Charge for order %s exceeded %.0fs budget, responding pending",
                attempt.order_id, self.config.response_budget_seconds,
            )
            with self._db_lock:
                payment_repo.update_attempt_status(
                    self.conn, attempt.idempotency_key, AttemptStatus.PENDING
                )
            self._watch_late_charge(future, attempt)
            return PaymentIntentResult(
                order_id=attempt.order_id,
                status=PROCESSING,
                pending=True,
                amount=amount,
                currency=currency,
                idempotency_key=attempt.idempotency_key,
            )
        except Exception as e:
            self._record_failure(attempt, e)
            raise

        result = self._record_outcome(attempt, intent)
        logger.info(
            "Payment intent request for order %s completed in %dms",
            attempt.order_id, (time.monotonic() - started) * 1000,
        )
        return result

    def _record_outcome(
        self, attempt: PaymentAttempt, intent: dict, follow_pending: bool = True
    ) -> PaymentIntentResult:
        status = str(intent.get("status", ""))
        intent_id = intent.get("id")
        attempt_status = _attempt_status_for(status)

        with self._db_lock:
            payment_repo.update_attempt_status(
                self.conn,
                attempt.idempotency_key,
                attempt_status,
                payment_intent_id=intent_id,
                error_message="" if attempt_status != AttemptStatus.FAILED
                else f"Processor returned status {status!r}",
            )
            if attempt_status == AttemptStatus.SUCCEEDED:
                payment_repo.set_propagation_status(
                    self.conn, attempt.idempotency_key, PropagationStatus.PENDING
                )

        if attempt_status == AttemptStatus.SUCCEEDED:
            logger.info(
                "Payment %s succeeded for order %s, updating order status asynchronously",
                intent_id, attempt.order_id,
            )
            self.retrier.submit(
                attempt.order_id,
                on_complete=partial(self._on_propagated, attempt.idempotency_key),
            )
        elif attempt_status == AttemptStatus.PENDING:
            if follow_pending and intent_id and self.config.pending_poll_attempts:
                logger.info(
                    "Payment %s for order %s is processing, following up",
                    intent_id, attempt.order_id,
                )
                future = self._pool.submit(self._poll_pending, attempt, intent_id)
                self._watch_late_charge(future, attempt, follow_pending=False)
            else:
                logger.warning(
                    "Payment %s for order %s left pending", intent_id, attempt.order_id
                )
        else:
            logger.warning("Payment for order %s ended with status %r", attempt.order_id, status)

        return PaymentIntentResult(
            order_id=attempt.order_id,
            status=status,
            pending=attempt_status == AttemptStatus.PENDING,
            payment_intent_id=intent_id,
            amount=intent.get("amount", attempt.amount),
            currency=intent.get("currency", attempt.currency),
            idempotency_key=attempt.idempotency_key,
        )

    def _poll_pending(self, attempt: PaymentAttempt, intent_id: str) -> dict:
        """Re-read a processing intent until it settles or the checks run out."""
        intent = {"id": intent_id, "status": PROCESSING}
        checks = self.config.pending_poll_attempts
        for check in range(1, checks + 1):
            self._sleep(self.config.pending_poll_interval_seconds)
            try:
                intent = self.processor.retrieve_charge(intent_id)
            except ProcessorError as e:
                logger.warning(
                    "Status check %d/%d for payment %s failed: %s", check, checks, intent_id, e
                )
                continue
            if intent.get("status") != PROCESSING:
                return intent
        logger.warning(
            "Payment %s for order %s still processing after %d checks",
            intent_id, attempt.order_id, checks,
        )
        return intent

    def _record_failure(self, attempt: PaymentAttempt, error: Exception) -> None:
        logger.error("Payment failed for order %s: %s", attempt.order_id, error)
        with self._db_lock:
            payment_repo.update_attempt_status(
                self.conn,
                attempt.idempotency_key,
                AttemptStatus.FAILED,
                error_message=str(error),
            )

    def _watch_late_charge(
        self, future: Future, attempt: PaymentAttempt, follow_pending: bool = True
    ) -> None:
        with self._late_lock:
            self._late_charges.add(future)
        future.add_done_callback(partial(self._on_late_charge, attempt, follow_pending))

    def _on_late_charge(
        self, attempt: PaymentAttempt, follow_pending: bool, future: Future
    ) -> None:
        try:
            error = future.exception()
            if error is not None:
                self._record_failure(attempt, error)
            else:
                logger.info("Late charge result arrived for order %s", attempt.order_id)
                self._record_outcome(attempt, future.result(), follow_pending)
        except Exception:
            logger.exception("Recording late charge for order %s failed", attempt.order_id)
        finally:
            with self._late_lock:
                self._late_charges.discard(future)

    def _on_propagated(self, idempotency_key: str, outcome: PropagationOutcome) -> None:
        status = PropagationStatus.DELIVERED if outcome.delivered else PropagationStatus.FAILED
        with self._db_lock:
            payment_repo.set_propagation_status(self.conn, idempotency_key, status)

    # --- Refunds ---

    def refund(
        self,
        payment_intent_id: str,
        amount: int | None = None,
        reason: str | None = None,
    ) -> RefundResult:
        """Refund a charge synchronously. No order-status propagation follows.

        Partial refunds accumulate against the charge; an omitted amount
        refunds whatever is left.
        """
        if reason is not None and reason not in REFUND_REASONS:
            raise PaymentRequestError(
                f"Refund reason must be one of: {', '.join(sorted(REFUND_REASONS))}"
            )
        with self._refund_lock:
            with self._db_lock:
                attempt = payment_repo.get_attempt_by_intent(self.conn, payment_intent_id)
            if attempt is None:
                raise PaymentNotFoundError(f"No payment found for intent {payment_intent_id}")
            if attempt.status not in (AttemptStatus.SUCCEEDED, AttemptStatus.REFUNDED):
                raise PaymentRequestError(
                    f"Payment {payment_intent_id} is {attempt.status} and cannot be refunded"
                )
            remaining = attempt.amount - (attempt.refund_amount or 0)
            if remaining <= 0:
                raise PaymentRequestError(
                    f"Payment {payment_intent_id} is already fully refunded"
                )
            if amount is not None and (amount <= 0 or amount > remaining):
                raise PaymentRequestError(f"Refund amount must be between 1 and {remaining}")

            refund = self.processor.refund(payment_intent_id, amount, reason)
            refund_amount = refund.get("amount") or amount or remaining
            with self._db_lock:
                payment_repo.mark_refunded(
                    self.conn, payment_intent_id, refund["id"], refund_amount
                )
        logger.info(
            "Refunded %d of payment %s for order %s (%s)",
            refund_amount, payment_intent_id, attempt.order_id, reason or "no reason given",
        )
        return RefundResult(
            refund_id=refund["id"],
            status=refund.get("status", ""),
            amount=refund_amount,
            currency=refund.get("currency", attempt.currency),
            payment_intent_id=payment_intent_id,
        )

    # --- Queries and lifecycle ---

    def get_attempts(self, order_id: str) -> list[PaymentAttempt]:
        with self._db_lock:
            return payment_repo.get_attempts_for_order(self.conn, order_id)

    def list_unpropagated(self) -> list[PaymentAttempt]:
        with self._db_lock:
            return payment_repo.list_unpropagated(self.conn)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for late charges and background propagations to finish."""
        deadline = None if timeout is None else time.monotonic() + timeout

        def remaining() -> float | None:
            return None if deadline is None else max(0.0, deadline - time.monotonic())

        while True:
            with self._late_lock:
                late = list(self._late_charges)
            if late:
                wait(late, timeout=remaining())
            # A late charge's callback may still be queueing its propagation
            self.retrier.join(remaining())
            with self._late_lock:
                idle = not self._late_charges
            if idle and not self.retrier.in_flight():
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(0.01)

    def close(self, wait_for_charges: bool = True) -> None:
        self._pool.shutdown(wait=wait_for_charges)


def _require_fields(request: PaymentIntentRequest) -> None:
    missing = [
        name
        for name in ("order_id", "customer_id", "payment_method_id")
        if not getattr(request, name)
    ]
    if request.amount in (None, ""):
        missing.append("amount")
    if missing:
        raise PaymentRequestError(f"Missing required fields: {', '.join(missing)}")
