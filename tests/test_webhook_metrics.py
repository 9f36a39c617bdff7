"""
Tests for MetricsCollector - app/domain/services/stripe_webhook/metrics.py
"""
import pytest

from app.domain.services.stripe_webhook.metrics import MetricsCollector


@pytest.mark.unit
def test_empty_snapshot() -> None:
    snapshot = MetricsCollector().snapshot()

    assert snapshot["processed"] == 0
    assert snapshot["avg_duration_ms"] == 0.0
    assert snapshot["success_rate"] == 0.0
    assert snapshot["by_type"] == {}


@pytest.mark.unit
def test_success_and_failure_aggregation() -> None:
    metrics = MetricsCollector()
    metrics.record_success("checkout.session.completed", 40)
    metrics.record_success("checkout.session.completed", 60)
    metrics.record_success("payment_intent.succeeded", 20)
    metrics.record_failure("checkout.session.completed", retryable=True)
    metrics.record_failure("customer.created", retryable=False)
    metrics.record_dlq()

    snapshot = metrics.snapshot()

    assert snapshot["processed"] == 3
    assert snapshot["failed"] == 2
    assert snapshot["retried"] == 1
    assert snapshot["dead_lettered"] == 1
    assert snapshot["avg_duration_ms"] == pytest.approx(40.0)
    assert snapshot["success_rate"] == pytest.approx(0.6)
    assert snapshot["by_type"]["checkout.session.completed"] == {
        "processed": 2,
        "failed": 1,
        "avg_duration_ms": 50.0,
    }
    assert snapshot["by_type"]["customer.created"]["processed"] == 0


@pytest.mark.unit
def test_reset() -> None:
    metrics = MetricsCollector()
    metrics.record_success("a", 10)
    metrics.record_dlq()

    metrics.reset()

    assert metrics.snapshot()["processed"] == 0
    assert metrics.snapshot()["dead_lettered"] == 0
    assert metrics.by_type == {}
