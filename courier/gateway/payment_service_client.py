"""Client for the payment service API, used by the ordering client."""

import logging
import os

import httpx

from courier.models.payment import PaymentIntentRequest, PaymentIntentResult

logger = logging.getLogger(__name__)

PAYMENT_SERVICE_URL = "http://localhost:9000"


class PaymentServiceError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PaymentServiceClient:
    """Calls POST /payments/intent and maps the reply onto PaymentIntentResult.

    The request timeout must exceed the service's response budget so the
    service, not this client, decides when a charge is reported as pending.
    """

    def __init__(
        self,
        base_url: str = PAYMENT_SERVICE_URL,
        token: str | None = None,
        timeout: float = 65.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token or os.environ.get("PAYMENT_SERVICE_TOKEN", "")
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntentResult:
        body = {
            "orderId": request.order_id,
            "customerId": request.customer_id,
            "paymentMethodId": request.payment_method_id,
            "amount": request.amount,
            "currency": request.currency,
        }
        try:
            resp = httpx.post(
                f"{self.base_url}/payments/intent",
                headers=self._headers(), json=body, timeout=self.timeout,
            )
        except httpx.RequestError as e:
            logger.error("Payment service request failed for order %s: %s", request.order_id, e)
            raise PaymentServiceError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise PaymentServiceError(str(detail), resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            raise PaymentServiceError(f"Invalid JSON from payment service: {e}") from e
        data = payload.get("data") or {}
        if payload.get("pending"):
            return PaymentIntentResult(
                order_id=data.get("orderId", request.order_id),
                status=data.get("status", "processing"),
                pending=True,
                payment_intent_id=data.get("paymentIntentId"),
            )
        return PaymentIntentResult(
            order_id=data.get("orderId", request.order_id),
            status=data.get("status", ""),
            payment_intent_id=data.get("paymentIntentId"),
            amount=data.get("amount"),
            currency=data.get("currency"),
        )
