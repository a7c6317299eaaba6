"""Tests for background order-status propagation."""

import threading

from courier.config.schema import PropagationConfig
from courier.payments.propagation import StatusPropagationRetrier, backoff_delay_ms
from courier.tests.fakes import FakeOrderStore, store_http_error, store_timeout


class TestBackoff:
    def test_doubles(self):
        assert [backoff_delay_ms(n) for n in (1, 2, 3)] == [1000, 2000, 4000]

    def test_capped(self):
        assert backoff_delay_ms(10) == 10000
        assert backoff_delay_ms(3, base_delay_ms=500, max_delay_ms=1500) == 1500


class TestPropagate:
    def test_first_try(self, fake_sleep, propagation_config):
        store = FakeOrderStore()
        retrier = StatusPropagationRetrier(store, propagation_config, sleep=fake_sleep)
        outcome = retrier.propagate("o1")
        assert outcome.delivered
        assert outcome.attempts == 1
        assert store.updates == [("o1", "PAYMENT RECEIVED")]
        assert fake_sleep.calls == []

    def test_always_timing_out(self, fake_sleep, propagation_config):
        store = FakeOrderStore(failures=[store_timeout()] * 3)
        retrier = StatusPropagationRetrier(store, propagation_config, sleep=fake_sleep)
        outcome = retrier.propagate("o1")
        assert not outcome.delivered
        assert not outcome.permanent
        assert outcome.attempts == 3
        assert outcome.delays_ms == [1000, 2000, 4000]
        assert fake_sleep.calls == [1.0, 2.0, 4.0]
        assert len(store.updates) == 3

    def test_recovers_on_retry(self, fake_sleep, propagation_config):
        store = FakeOrderStore(failures=[store_http_error(503), None])
        retrier = StatusPropagationRetrier(store, propagation_config, sleep=fake_sleep)
        outcome = retrier.propagate("o1")
        assert outcome.delivered
        assert outcome.attempts == 2
        assert outcome.delays_ms == [1000]

    def test_client_error_is_permanent(self, fake_sleep, propagation_config):
        store = FakeOrderStore(failures=[store_http_error(404)])
        retrier = StatusPropagationRetrier(store, propagation_config, sleep=fake_sleep)
        outcome = retrier.propagate("o1")
        assert not outcome.delivered
        assert outcome.permanent
        assert outcome.attempts == 1
        assert len(store.updates) == 1
        assert fake_sleep.calls == []

    def test_custom_status_text(self, fake_sleep):
        store = FakeOrderStore()
        config = PropagationConfig(status_text="PAID")
        StatusPropagationRetrier(store, config, sleep=fake_sleep).propagate("o1")
        assert store.updates == [("o1", "PAID")]


class TestSubmit:
    def test_runs_in_background_and_reports(self, fake_sleep, propagation_config):
        store = FakeOrderStore()
        retrier = StatusPropagationRetrier(store, propagation_config, sleep=fake_sleep)
        outcomes = []
        thread = retrier.submit("o1", on_complete=outcomes.append)
        assert thread is not None
        assert retrier.join(5)
        assert outcomes[0].delivered
        assert retrier.in_flight() == []

    def test_one_propagation_per_order(self, fake_sleep, propagation_config):
        store = FakeOrderStore()
        store.block = threading.Event()
        retrier = StatusPropagationRetrier(store, propagation_config, sleep=fake_sleep)
        assert retrier.submit("o1") is not None
        assert store.entered.wait(5)
        assert retrier.submit("o1") is None
        assert retrier.in_flight() == ["o1"]
        store.block.set()
        assert retrier.join(5)
        assert store.updates == [("o1", "PAYMENT RECEIVED")]

    def test_callback_failure_does_not_leak(self, fake_sleep, propagation_config):
        store = FakeOrderStore()
        retrier = StatusPropagationRetrier(store, propagation_config, sleep=fake_sleep)

        def broken(outcome):
            raise RuntimeError("db gone")

        retrier.submit("o1", on_complete=broken)
        assert retrier.join(5)
        assert retrier.in_flight() == []
