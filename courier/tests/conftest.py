"""Shared test fixtures."""

import sqlite3
from pathlib import Path

import pytest
import yaml

from courier.config.schema import PaymentsConfig, PropagationConfig
from courier.gateway.order_store_client import OrderStoreClient
from courier.gateway.processor_client import ProcessorClient
from courier.storage.database import connect, run_migrations
from courier.tests.fakes import FakeOrderStore, FakeSleep

ORDER_URL = "http://orders.test/order"
PROCESSOR_URL = "https://processor.test"


@pytest.fixture
def db(tmp_path: Path) -> sqlite3.Connection:
    """Migrated database shareable with worker threads."""
    conn = connect(tmp_path / "test.db", check_same_thread=False)
    run_migrations(conn)
    return conn


@pytest.fixture
def order_store() -> OrderStoreClient:
    return OrderStoreClient(base_url=ORDER_URL, token="order-token")


@pytest.fixture
def processor() -> ProcessorClient:
    return ProcessorClient(api_key="sk_test_123", base_url=PROCESSOR_URL)


@pytest.fixture
def payments_config() -> PaymentsConfig:
    return PaymentsConfig(response_budget_seconds=5.0, max_charge_workers=2)


@pytest.fixture
def propagation_config() -> PropagationConfig:
    """Production retry schedule; pair with fake_sleep."""
    return PropagationConfig(attempt_timeout_seconds=1.0)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def fake_order_store() -> FakeOrderStore:
    return FakeOrderStore()


@pytest.fixture
def config_yaml_path(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    data = {
        "payments": {"response_budget_seconds": 30},
        "propagation": {"max_attempts": 4},
    }
    path = tmp_path / "test_config.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path
