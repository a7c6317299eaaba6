"""Payment processor REST client (Stripe-compatible payment intents API)."""

import logging
import os

import httpx

logger = logging.getLogger(__name__)

PROCESSOR_API_BASE = "https://api.stripe.com"


class ProcessorError(Exception):
    """Raised when the processor declines a request or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out

    @property
    def is_user_correctable(self) -> bool:
        """Declines and bad input (insufficient funds, bad card) come back as 4xx."""
        return self.status_code is not None and 400 <= self.status_code < 500


class ProcessorClient:
    """Thin wrapper around the processor's form-encoded REST API.

    Charges are created and confirmed in one call. Redirect-based payment
    methods are always disabled: confirmation is server-to-server and there
    is no user-facing return target.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = PROCESSOR_API_BASE,
        timeout: float = 60.0,
    ):
        self.api_key = api_key or os.environ.get("PROCESSOR_API_KEY", "")
        if not self.api_key:
            raise ProcessorError("PROCESSOR_API_KEY not set")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        data: dict | None = None,
        idempotency_key: str | None = None,
        params: dict | None = None,
    ) -> dict:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = httpx.request(
                method, url, headers=self._headers(idempotency_key),
                data=data, params=params, timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.error("Processor timed out: %s %s", method, endpoint)
            raise ProcessorError(f"Request timed out: {e}", timed_out=True) from e
        except httpx.RequestError as e:
            logger.error("Processor request failed: %s %s -> %s", method, endpoint, e)
            raise ProcessorError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.error(
                "Processor %d: %s %s -> %s", resp.status_code, method, endpoint, message
            )
            raise ProcessorError(message, resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            logger.error("Processor returned non-JSON body: %s %s", method, endpoint)
            raise ProcessorError(f"Invalid JSON from processor: {e}") from e
        if not isinstance(payload, dict):
            raise ProcessorError(f"Unexpected processor response: {payload!r}")
        return payload

    # --- Customers ---

    def find_customer_by_email(self, email: str) -> dict | None:
        found = self._request("GET", "/v1/customers", params={"email": email, "limit": 1})
        customers = found.get("data") or []
        return customers[0] if customers else None

    def create_customer(
        self,
        email: str,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict:
        data: dict[str, str] = {"email": email}
        if name:
            data["name"] = name
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = value
        return self._request("POST", "/v1/customers", data)

    def retrieve_customer(self, customer_id: str) -> dict:
        return self._request("GET", f"/v1/customers/{customer_id}")

    def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> dict:
        return self._request(
            "POST",
            f"/v1/customers/{customer_id}",
            {"invoice_settings[default_payment_method]": payment_method_id},
        )

    # --- Payment methods ---

    def attach_payment_method(self, customer_id: str, payment_method_id: str) -> dict:
        return self._request(
            "POST",
            f"/v1/payment_methods/{payment_method_id}/attach",
            {"customer": customer_id},
        )

    def detach_payment_method(self, payment_method_id: str) -> dict:
        return self._request("POST", f"/v1/payment_methods/{payment_method_id}/detach")

    def retrieve_payment_method(self, payment_method_id: str) -> dict:
        return self._request("GET", f"/v1/payment_methods/{payment_method_id}")

    def list_payment_methods(self, customer_id: str, method_type: str = "card") -> list[dict]:
        listed = self._request(
            "GET", "/v1/payment_methods", params={"customer": customer_id, "type": method_type}
        )
        return list(listed.get("data") or [])

    # --- Charges ---

    def create_and_confirm_charge(
        self,
        amount: int,
        currency: str,
        customer_id: str,
        payment_method_id: str,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
        description: str | None = None,
    ) -> dict:
        """Create a payment intent and confirm it inline.

        Args:
            amount: Charge amount in minor currency units.
            idempotency_key: Replays of the same key return the original intent.

        Returns:
            Intent dict with at least id and status.
        """
        data: dict[str, str | int] = {
            "amount": amount,
            "currency": currency,
            "customer": customer_id,
            "payment_method": payment_method_id,
            "confirm": "true",
            "automatic_payment_methods[enabled]": "true",
            "automatic_payment_methods[allow_redirects]": "never",
        }
        if description:
            data["description"] = description
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = value
        return _intent(self._request("POST", "/v1/payment_intents", data, idempotency_key))

    def retrieve_charge(self, payment_intent_id: str) -> dict:
        return _intent(self._request("GET", f"/v1/payment_intents/{payment_intent_id}"))

    def refund(
        self,
        payment_intent_id: str,
        amount: int | None = None,
        reason: str | None = None,
    ) -> dict:
        """Refund a charge, fully or partially (amount in minor units)."""
        data: dict[str, str | int] = {"payment_intent": payment_intent_id}
        if amount:
            data["amount"] = amount
        if reason:
            data["reason"] = reason
        refund = self._request("POST", "/v1/refunds", data)
        if not refund.get("id"):
            raise ProcessorError(f"Refund response without id: {refund!r}")
        return refund


def _intent(payload: dict) -> dict:
    missing = [key for key in ("id", "status") if not payload.get(key)]
    if missing:
        raise ProcessorError(f"Payment intent response missing {', '.join(missing)}")
    return payload


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}: {resp.text}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"HTTP {resp.status_code}: {resp.text}"
