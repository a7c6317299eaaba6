"""Pydantic v2 configuration schema with strict validation."""

from enum import StrEnum

from pydantic import BaseModel, Field

from courier.models.order import STORE_STATUS_PAYMENT_RECEIVED


class AmountMode(StrEnum):
    MINOR = "minor"          # integer minor units only
    HEURISTIC = "heuristic"  # legacy: small non-integers are major units


class OrderStoreConfig(BaseModel):
    model_config = {"extra": "forbid"}

    base_url: str = "http://localhost:9002/order"
    timeout_seconds: float = Field(default=15.0, gt=0.0)
    token: str = ""  # falls back to ORDER_SERVICE_TOKEN


class ProcessorConfig(BaseModel):
    model_config = {"extra": "forbid"}

    base_url: str = "https://api.stripe.com"
    timeout_seconds: float = Field(default=60.0, gt=0.0)
    currency: str = Field(default="usd", min_length=3, max_length=3)


class PaymentsConfig(BaseModel):
    model_config = {"extra": "forbid"}

    response_budget_seconds: float = Field(default=55.0, gt=0.0)
    amount_mode: AmountMode = AmountMode.MINOR
    heuristic_threshold: int = Field(default=1000, gt=0)
    max_charge_workers: int = Field(default=8, ge=1)
    # Background re-reads of an intent the processor reports as processing
    pending_poll_attempts: int = Field(default=5, ge=0)
    pending_poll_interval_seconds: float = Field(default=2.0, ge=0.0)


class PropagationConfig(BaseModel):
    model_config = {"extra": "forbid"}

    attempt_timeout_seconds: float = Field(default=5.0, gt=0.0)
    max_attempts: int = Field(default=3, ge=1)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=10000, ge=0)
    status_text: str = STORE_STATUS_PAYMENT_RECEIVED


class TrackingConfig(BaseModel):
    model_config = {"extra": "forbid"}

    pickup_grace_seconds: float = Field(default=2.0, ge=0.0)
    status_aliases: dict[str, str] = {}


class StorageConfig(BaseModel):
    model_config = {"extra": "forbid"}

    db_path: str = "data/courier.db"


class CourierConfig(BaseModel):
    model_config = {"extra": "forbid"}

    order_store: OrderStoreConfig = OrderStoreConfig()
    processor: ProcessorConfig = ProcessorConfig()
    payments: PaymentsConfig = PaymentsConfig()
    propagation: PropagationConfig = PropagationConfig()
    tracking: TrackingConfig = TrackingConfig()
    storage: StorageConfig = StorageConfig()
