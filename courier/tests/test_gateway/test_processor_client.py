"""Tests for ProcessorClient."""

from urllib.parse import parse_qs

import httpx
import pytest
import respx
from httpx import Response

from courier.gateway.processor_client import ProcessorClient, ProcessorError

BASE = "https://processor.test"


def _form(request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestProcessorClient:
    @respx.mock
    def test_create_and_confirm_charge(self, processor):
        route = respx.post(f"{BASE}/v1/payment_intents").mock(
            return_value=Response(200, json={"id": "pi_1", "status": "succeeded"})
        )
        intent = processor.create_and_confirm_charge(
            amount=6522,
            currency="usd",
            customer_id="cus_1",
            payment_method_id="pm_card",
            metadata={"order_id": "ord-1"},
            idempotency_key="key-1",
        )
        assert intent["status"] == "succeeded"
        request = route.calls[0].request
        assert request.headers["Authorization"] == "Bearer sk_test_123"
        assert request.headers["Idempotency-Key"] == "key-1"
        form = _form(request)
        assert form["amount"] == "6522"
        assert form["confirm"] == "true"
        assert form["automatic_payment_methods[allow_redirects]"] == "never"
        assert form["metadata[order_id]"] == "ord-1"

    @respx.mock
    def test_decline(self, processor):
        respx.post(f"{BASE}/v1/payment_intents").mock(return_value=Response(
            402, json={"error": {"message": "Your card has insufficient funds."}}
        ))
        with pytest.raises(ProcessorError, match="insufficient funds") as exc:
            processor.create_and_confirm_charge(100, "usd", "cus_1", "pm_card")
        assert exc.value.is_user_correctable

    @respx.mock
    def test_server_error(self, processor):
        respx.post(f"{BASE}/v1/payment_intents").mock(return_value=Response(500, text="oops"))
        with pytest.raises(ProcessorError, match="500") as exc:
            processor.create_and_confirm_charge(100, "usd", "cus_1", "pm_card")
        assert not exc.value.is_user_correctable

    @respx.mock
    def test_timeout(self, processor):
        respx.post(f"{BASE}/v1/payment_intents").mock(side_effect=httpx.ConnectTimeout)
        with pytest.raises(ProcessorError) as exc:
            processor.create_and_confirm_charge(100, "usd", "cus_1", "pm_card")
        assert exc.value.timed_out

    @respx.mock
    def test_full_refund_omits_amount(self, processor):
        route = respx.post(f"{BASE}/v1/refunds").mock(
            return_value=Response(200, json={"id": "re_1", "status": "succeeded"})
        )
        processor.refund("pi_1")
        form = _form(route.calls[0].request)
        assert form == {"payment_intent": "pi_1"}

    @respx.mock
    def test_attach_payment_method(self, processor):
        route = respx.post(f"{BASE}/v1/payment_methods/pm_card/attach").mock(
            return_value=Response(200, json={"id": "pm_card", "customer": "cus_1"})
        )
        assert processor.attach_payment_method("cus_1", "pm_card")["customer"] == "cus_1"
        assert _form(route.calls[0].request) == {"customer": "cus_1"}

    @respx.mock
    def test_retrieve_charge(self, processor):
        respx.get(f"{BASE}/v1/payment_intents/pi_1").mock(
            return_value=Response(200, json={"id": "pi_1", "status": "processing"})
        )
        assert processor.retrieve_charge("pi_1")["status"] == "processing"

    @respx.mock
    def test_non_json_success_body(self, processor):
        respx.post(f"{BASE}/v1/payment_intents").mock(return_value=Response(200, text="oops"))
        with pytest.raises(ProcessorError, match="Invalid JSON") as exc:
            processor.create_and_confirm_charge(100, "usd", "cus_1", "pm_card")
        assert not exc.value.is_user_correctable

    @respx.mock
    def test_intent_missing_status(self, processor):
        respx.get(f"{BASE}/v1/payment_intents/pi_1").mock(
            return_value=Response(200, json={"id": "pi_1"})
        )
        with pytest.raises(ProcessorError, match="missing status"):
            processor.retrieve_charge("pi_1")

    @respx.mock
    def test_refund_with_reason(self, processor):
        route = respx.post(f"{BASE}/v1/refunds").mock(
            return_value=Response(200, json={"id": "re_1", "status": "succeeded"})
        )
        processor.refund("pi_1", 500, reason="duplicate")
        assert _form(route.calls[0].request) == {
            "payment_intent": "pi_1", "amount": "500", "reason": "duplicate",
        }

    @respx.mock
    def test_find_customer_by_email(self, processor):
        route = respx.get(f"{BASE}/v1/customers").mock(
            return_value=Response(200, json={"data": [{"id": "cus_1"}]})
        )
        assert processor.find_customer_by_email("ana@example.com")["id"] == "cus_1"
        assert route.calls[0].request.url.params["email"] == "ana@example.com"

    @respx.mock
    def test_detach_payment_method(self, processor):
        route = respx.post(f"{BASE}/v1/payment_methods/pm_card/detach").mock(
            return_value=Response(200, json={"id": "pm_card"})
        )
        processor.detach_payment_method("pm_card")
        assert route.called

    def test_no_api_key_raises(self, monkeypatch):
        monkeypatch.delenv("PROCESSOR_API_KEY", raising=False)
        with pytest.raises(ProcessorError, match="not set"):
            ProcessorClient(api_key="")
