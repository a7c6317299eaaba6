"""Payment service HTTP API: a FastAPI surface over the orchestrator."""

import logging
from dataclasses import asdict

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from courier.gateway.processor_client import ProcessorError
from courier.models.common import utc_now_iso
from courier.models.payment import PaymentIntentRequest
from courier.payments.amounts import PaymentRequestError
from courier.payments.customers import CustomerService
from courier.payments.orchestrator import PaymentIntentOrchestrator, PaymentNotFoundError

logger = logging.getLogger(__name__)

BUDGET_EXCEEDED_MESSAGE = (
    "Payment is being processed, but the request timed out. "
    "Check payment status separately."
)
PROCESSING_MESSAGE = (
    "Payment is processing with the processor. Check payment status separately."
)


class PaymentIntentBody(BaseModel):
    orderId: str = ""
    customerId: str = ""
    paymentMethodId: str = ""
    amount: int | float | str | None = None
    currency: str = "usd"
    returnUrl: str | None = None


class RefundBody(BaseModel):
    paymentIntentId: str
    amount: int | None = None
    reason: str | None = None


class CustomerBody(BaseModel):
    email: str
    name: str | None = None


class PaymentMethodBody(BaseModel):
    customerId: str
    paymentMethodId: str
    setAsDefault: bool = False


def _processor_http_error(e: ProcessorError) -> HTTPException:
    if e.status_code == 404:
        return HTTPException(status_code=404, detail=str(e))
    if e.is_user_correctable:
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


def create_app(
    orchestrator: PaymentIntentOrchestrator,
    customers: CustomerService | None = None,
) -> FastAPI:
    app = FastAPI(title="Courier Payment Service", version="0.1.0")
    if customers is None:
        customers = CustomerService(orchestrator.processor)

    @app.get("/health")
    def health():
        return {"status": "ok", "timestamp": utc_now_iso()}

    @app.post("/payments/intent")
    def create_payment_intent(body: PaymentIntentBody):
        """Charge for an order; 202 with a pending body if the budget runs out."""
        request = PaymentIntentRequest(
            order_id=body.orderId,
            customer_id=body.customerId,
            payment_method_id=body.paymentMethodId,
            amount=body.amount,
            currency=body.currency,
            return_url=body.returnUrl,
        )
        try:
            result = orchestrator.create_payment_intent(request)
        except PaymentRequestError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except ProcessorError as e:
            if e.is_user_correctable:
                raise HTTPException(status_code=402, detail=str(e)) from e
            raise HTTPException(status_code=502, detail=str(e)) from e

        if result.pending:
            data = {"orderId": result.order_id, "status": result.status}
            # An intent id means the processor answered, just not conclusively
            if result.payment_intent_id:
                data["paymentIntentId"] = result.payment_intent_id
                message = PROCESSING_MESSAGE
            else:
                message = BUDGET_EXCEEDED_MESSAGE
            return JSONResponse(
                status_code=202,
                content={"success": True, "pending": True, "message": message, "data": data},
            )
        return {
            "success": result.succeeded,
            "data": {
                "orderId": result.order_id,
                "paymentIntentId": result.payment_intent_id,
                "status": result.status,
                "amount": result.amount,
                "currency": result.currency,
            },
        }

    @app.post("/payments/refund")
    def refund_payment(body: RefundBody):
        try:
            refund = orchestrator.refund(body.paymentIntentId, body.amount, body.reason)
        except PaymentNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except PaymentRequestError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except ProcessorError as e:
            raise HTTPException(
                status_code=402 if e.is_user_correctable else 502, detail=str(e)
            ) from e
        return {"success": True, "data": asdict(refund)}

    @app.get("/payments/orders/{order_id}")
    def get_order_payments(order_id: str):
        """Payment attempts for an order, oldest first."""
        attempts = orchestrator.get_attempts(order_id)
        if not attempts:
            raise HTTPException(status_code=404, detail=f"No payments for order {order_id}")
        return {"success": True, "data": [asdict(a) for a in attempts]}

    # --- Customers and saved cards ---

    @app.get("/payments/customer/{email}")
    def get_customer(email: str):
        try:
            customer_id = customers.get_customer(email)
        except ProcessorError as e:
            raise _processor_http_error(e) from e
        if customer_id is None:
            raise HTTPException(status_code=404, detail=f"No customer for {email}")
        return {"success": True, "data": {"customerId": customer_id}}

    @app.post("/payments/customer", status_code=201)
    def create_customer(body: CustomerBody):
        try:
            customer_id = customers.create_customer(body.email, body.name)
        except PaymentRequestError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except ProcessorError as e:
            raise _processor_http_error(e) from e
        return {"success": True, "data": {"customerId": customer_id}}

    @app.get("/payments/payment-methods/{customer_id}")
    def list_payment_methods(customer_id: str):
        try:
            methods = customers.list_payment_methods(customer_id)
        except ProcessorError as e:
            raise _processor_http_error(e) from e
        return {"success": True, "data": [asdict(m) for m in methods]}

    @app.post("/payments/payment-method")
    def add_payment_method(body: PaymentMethodBody):
        try:
            method = customers.add_payment_method(
                body.customerId, body.paymentMethodId, make_default=body.setAsDefault
            )
        except ProcessorError as e:
            raise _processor_http_error(e) from e
        return {"success": True, "data": asdict(method)}

    @app.delete("/payments/payment-methods/{customer_id}/{payment_method_id}")
    def delete_payment_method(customer_id: str, payment_method_id: str):
        try:
            customers.delete_payment_method(customer_id, payment_method_id)
        except PaymentNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except ProcessorError as e:
            raise _processor_http_error(e) from e
        return {"success": True, "message": "Payment method removed"}

    return app
