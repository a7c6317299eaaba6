"""Order service REST client: create orders, push status text, list history."""

import logging
import os

import httpx

logger = logging.getLogger(__name__)

ORDER_SERVICE_URL = "http://localhost:9002/order"


class OrderStoreError(Exception):
    """Raised when the order service rejects a request or cannot be reached."""

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
    def is_permanent(self) -> bool:
        """4xx: the request is malformed or the order no longer exists."""
        return self.status_code is not None and 400 <= self.status_code < 500

    @property
    def is_transient(self) -> bool:
        return not self.is_permanent


class OrderStoreClient:
    """Thin wrapper around the order service.

    Every response is wrapped as {success, message, data}; a body with
    success=false is treated as a failure even on HTTP 200.
    """

    def __init__(
        self,
        base_url: str = ORDER_SERVICE_URL,
        token: str | None = None,
        timeout: float = 15.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token or os.environ.get("ORDER_SERVICE_TOKEN", "")
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        data: dict | None = None,
        timeout: float | None = None,
    ) -> dict:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = httpx.request(
                method, url, headers=self._headers(), json=data,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning("Order service timed out: %s %s", method, endpoint)
            raise OrderStoreError(f"Request timed out: {e}", timed_out=True) from e
        except httpx.RequestError as e:
            logger.error("Order service request failed: %s %s -> %s", method, endpoint, e)
            raise OrderStoreError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            body = resp.text
            logger.error(
                "Order service %d: %s %s -> %s", resp.status_code, method, endpoint, body
            )
            raise OrderStoreError(f"HTTP {resp.status_code}: {body}", resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            raise OrderStoreError(f"Invalid JSON from order service: {e}") from e
        if isinstance(payload, dict) and payload.get("success") is False:
            raise OrderStoreError(payload.get("message") or "Order service reported failure")
        return payload

    def create_order(self, details: dict) -> dict:
        """Create an order and return its data block (orderId, status, pricing)."""
        result = self._request("POST", "/create", details)
        data = result.get("data") if isinstance(result, dict) else None
        if not isinstance(data, dict) or not data.get("orderId"):
            raise OrderStoreError("Order service response missing orderId")
        return data

    def update_status(
        self, order_id: str, status: str, timeout: float | None = None
    ) -> dict:
        """Set the order's status text. Returns {success, message}."""
        result = self._request(
            "PUT", "/updateStatus", {"orderId": order_id, "status": status},
            timeout=timeout,
        )
        return {
            "success": bool(result.get("success", True)),
            "message": result.get("message", ""),
        }

    def get_orders_for_user(self, user_id: str) -> list[dict]:
        result = self._request("GET", f"/getAllOrders/user/{user_id}")
        data = result.get("data", []) if isinstance(result, dict) else result
        return data if isinstance(data, list) else []
