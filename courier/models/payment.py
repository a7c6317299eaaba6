"""Payment attempt records and orchestrator inputs/outputs."""

from dataclasses import dataclass, field
from enum import StrEnum


class AttemptStatus(StrEnum):
    CREATED = "created"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class PropagationStatus(StrEnum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentAttempt:
    order_id: str
    payment_method_id: str
    customer_id: str
    amount: int  # minor units
    currency: str
    idempotency_key: str
    attempt_number: int
    status: AttemptStatus = AttemptStatus.CREATED
    payment_intent_id: str | None = None
    refund_id: str | None = None
    refund_amount: int | None = None
    propagation_status: PropagationStatus = PropagationStatus.NOT_REQUIRED
    error_message: str = ""
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class PaymentIntentRequest:
    order_id: str
    customer_id: str
    payment_method_id: str
    amount: int | float | str | None
    currency: str = "usd"
    return_url: str | None = None


@dataclass(frozen=True)
class PaymentIntentResult:
    order_id: str
    status: str
    pending: bool = False
    payment_intent_id: str | None = None
    amount: int | None = None
    currency: str | None = None
    idempotency_key: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == AttemptStatus.SUCCEEDED


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str
    amount: int | None
    currency: str | None
    payment_intent_id: str


@dataclass(frozen=True)
class PropagationOutcome:
    order_id: str
    delivered: bool
    attempts: int
    delays_ms: list[int] = field(default_factory=list)
    permanent: bool = False
    error: str = ""


@dataclass(frozen=True)
class PaymentMethodSummary:
    payment_method_id: str
    card_brand: str = ""
    card_last4: str = ""
    expiry: str = ""  # MM/YY
    is_default: bool = False
