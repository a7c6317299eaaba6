"""Customer and saved payment-method management.

The processor is the system of record for customers and their cards;
nothing here is persisted locally.
"""

import logging

from courier.gateway.processor_client import ProcessorClient
from courier.models.payment import PaymentMethodSummary
from courier.payments.amounts import PaymentRequestError
from courier.payments.orchestrator import PaymentNotFoundError

logger = logging.getLogger(__name__)

CUSTOMER_SOURCE = "courier"


def _summary(method: dict, default_id: str | None) -> PaymentMethodSummary:
    card = method.get("card") or {}
    month, year = card.get("exp_month"), card.get("exp_year")
    expiry = f"{int(month):02d}/{int(year) % 100:02d}" if month and year else ""
    return PaymentMethodSummary(
        payment_method_id=method["id"],
        card_brand=str(card.get("brand") or ""),
        card_last4=str(card.get("last4") or ""),
        expiry=expiry,
        is_default=method["id"] == default_id,
    )


class CustomerService:
    def __init__(self, processor: ProcessorClient):
        self.processor = processor

    def get_customer(self, email: str) -> str | None:
        """Customer id for an email, or None if the processor has none."""
        customer = self.processor.find_customer_by_email(email)
        return customer["id"] if customer else None

    def create_customer(self, email: str, name: str | None = None) -> str:
        """Create a customer unless one already exists for the email."""
        if not email or "@" not in email:
            raise PaymentRequestError(f"Invalid email: {email!r}")
        existing = self.get_customer(email)
        if existing:
            logger.info("Customer for %s already exists: %s", email, existing)
            return existing
        customer = self.processor.create_customer(
            email,
            name=name,
            metadata={
                "source": CUSTOMER_SOURCE,
                "external_id": f"user_{email.split('@')[0]}",
            },
        )
        logger.info("Created customer %s for %s", customer["id"], email)
        return customer["id"]

    def _default_method_id(self, customer_id: str) -> str | None:
        customer = self.processor.retrieve_customer(customer_id)
        settings = customer.get("invoice_settings") or {}
        return settings.get("default_payment_method")

    def list_payment_methods(self, customer_id: str) -> list[PaymentMethodSummary]:
        default_id = self._default_method_id(customer_id)
        return [
            _summary(method, default_id)
            for method in self.processor.list_payment_methods(customer_id)
        ]

    def add_payment_method(
        self, customer_id: str, payment_method_id: str, make_default: bool = False
    ) -> PaymentMethodSummary:
        """Attach a tokenized card to the customer, optionally as the default."""
        method = self.processor.attach_payment_method(customer_id, payment_method_id)
        if make_default:
            self.processor.set_default_payment_method(customer_id, payment_method_id)
            default_id = payment_method_id
        else:
            default_id = self._default_method_id(customer_id)
        logger.info("Attached payment method %s to %s", payment_method_id, customer_id)
        return _summary(method, default_id)

    def delete_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        """Detach a card, refusing ones that belong to another customer."""
        method = self.processor.retrieve_payment_method(payment_method_id)
        if method.get("customer") != customer_id:
            raise PaymentNotFoundError(
                f"Payment method {payment_method_id} not found for customer {customer_id}"
            )
        self.processor.detach_payment_method(payment_method_id)
        logger.info("Detached payment method %s from %s", payment_method_id, customer_id)
