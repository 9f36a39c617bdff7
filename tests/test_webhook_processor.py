"""
Tests for the Event Processor - app/domain/services/stripe_webhook/processor.py

Covers:
- Handler dispatch in a transaction, processed marker written atomically
- Outcome classification: unsupported (fatal), timeout / unknown errors (retryable)
- Lost commit race against another worker reported as a duplicate success
- Metrics recorded for every outcome
"""
import asyncio

import pytest
from sqlalchemy import select

from app.core.exceptions import ErrorCode, InvalidSignatureError, OrderNotFoundError
from app.db.models.payment_log import PaymentLog, PaymentLogStatus
from app.domain.services.stripe_webhook.events import InboundEvent, ProcessingContext
from app.domain.services.stripe_webhook.metrics import MetricsCollector
from app.domain.services.stripe_webhook.processor import EventProcessor
from app.domain.services.stripe_webhook.registry import HandlerRegistry

from webhook_helpers import build_event


def _event(event_id: str = "evt_p1", event_type: str = "test.event") -> InboundEvent:
    return InboundEvent.from_envelope(build_event(event_id, event_type, {"id": "obj_1"}))


def _context(event: InboundEvent, attempt: int = 0) -> ProcessingContext:
    return ProcessingContext(
        event_id=event.id, event_type=event.type, trace_id="trace-1", attempt=attempt
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def processor(registry, session_factory, metrics) -> EventProcessor:
    return EventProcessor(registry, session_factory, metrics, timeout_ms=200)


class TestSuccessfulProcessing:

    @pytest.mark.unit
    async def test_handler_success_writes_processed_marker(
        self, processor, registry, metrics, fetch_all
    ) -> None:
        calls: list[str] = []

        @registry.register("test.event")
        async def handler(event, session):
            calls.append(event.id)

        event = _event()
        result = await processor.process(event, _context(event))

        assert result.success is True
        assert result.metadata["attempt"] == 0
        assert calls == ["evt_p1"]
        assert metrics.processed == 1
        assert metrics.by_type["test.event"].processed == 1

        rows = await fetch_all(PaymentLog, PaymentLog.stripe_event_id == "evt_p1")
        assert len(rows) == 1
        assert rows[0].event == "processed:test.event"
        assert rows[0].status == PaymentLogStatus.PROCESSED
        assert rows[0].raw_data["id"] == "evt_p1"

    @pytest.mark.unit
    async def test_handler_log_replaces_marker(self, processor, registry, fetch_all) -> None:
        @registry.register("test.event")
        async def handler(event, session):
            session.add(PaymentLog(
                event=event.type,
                status=PaymentLogStatus.SUCCEEDED,
                stripe_event_id=event.id,
                raw_data=event.raw,
            ))

        event = _event()
        result = await processor.process(event, _context(event))

        assert result.success is True
        rows = await fetch_all(PaymentLog, PaymentLog.stripe_event_id == "evt_p1")
        assert [row.event for row in rows] == ["test.event"]

    @pytest.mark.unit
    async def test_attempt_number_reported(self, processor, registry) -> None:
        @registry.register("test.event")
        async def handler(event, session):
            pass

        event = _event()
        result = await processor.process(event, _context(event, attempt=2))
        assert result.metadata["attempt"] == 2

    @pytest.mark.unit
    async def test_lost_commit_race_reported_as_duplicate(
        self, processor, registry, session_factory, metrics, fetch_all
    ) -> None:
        @registry.register("test.event")
        async def handler(event, session):
            # Another replica commits this event first
            async with session_factory() as other:
                other.add(PaymentLog(
                    event=event.type,
                    status=PaymentLogStatus.SUCCEEDED,
                    stripe_event_id=event.id,
                    raw_data={"replica": "other"},
                ))
                await other.commit()
            session.add(PaymentLog(
                event=event.type,
                status=PaymentLogStatus.SUCCEEDED,
                stripe_event_id=event.id,
                raw_data=event.raw,
            ))

        event = _event()
        result = await processor.process(event, _context(event))

        assert result.success is True
        assert result.metadata["duplicate"] is True
        rows = await fetch_all(PaymentLog, PaymentLog.stripe_event_id == "evt_p1")
        assert len(rows) == 1
        assert rows[0].raw_data == {"replica": "other"}

    @pytest.mark.unit
    async def test_event_recorded_since_duplicate_check_skips_handler(
        self, processor, registry, db_session
    ) -> None:
        calls = []

        @registry.register("test.event")
        async def handler(event, session):
            calls.append(event.id)

        db_session.add(PaymentLog(
            event="processed:test.event",
            status=PaymentLogStatus.PROCESSED,
            stripe_event_id="evt_p1",
            raw_data={},
        ))
        await db_session.commit()

        event = _event()
        result = await processor.process(event, _context(event))

        assert result.success is True
        assert result.metadata["duplicate"] is True
        assert calls == []


class TestFailureClassification:

    @pytest.mark.unit
    async def test_unsupported_event_type_is_fatal(self, processor, metrics) -> None:
        event = _event(event_type="customer.created")
        result = await processor.process(event, _context(event))

        assert result.success is False
        assert result.retryable is False
        assert result.status_code == 422
        assert result.error_code == ErrorCode.EVENT_NOT_SUPPORTED.value
        assert metrics.failed == 1
        assert metrics.retried == 0

    @pytest.mark.unit
    async def test_timeout_is_retryable(self, processor, registry, metrics) -> None:
        @registry.register("test.event")
        async def handler(event, session):
            await asyncio.sleep(5)

        event = _event()
        result = await processor.process(event, _context(event))

        assert result.success is False
        assert result.retryable is True
        assert result.status_code == 504
        assert result.error_code == ErrorCode.PROCESSING_TIMEOUT.value
        assert metrics.retried == 1

    @pytest.mark.unit
    async def test_unknown_exception_is_retryable_and_rolled_back(
        self, processor, registry, fetch_all
    ) -> None:
        @registry.register("test.event")
        async def handler(event, session):
            session.add(PaymentLog(
                event=event.type,
                status=PaymentLogStatus.SUCCEEDED,
                stripe_event_id=event.id,
                raw_data=event.raw,
            ))
            raise RuntimeError("database hiccup")

        event = _event()
        result = await processor.process(event, _context(event))

        assert result.success is False
        assert result.retryable is True
        assert result.error == "database hiccup"
        assert await fetch_all(PaymentLog) == []

    @pytest.mark.unit
    async def test_webhook_error_keeps_its_retryable_flag(self, processor, registry) -> None:
        @registry.register("test.event")
        async def handler(event, session):
            raise InvalidSignatureError("nested verification failed")

        event = _event()
        result = await processor.process(event, _context(event))

        assert result.retryable is False
        assert result.status_code == 401

    @pytest.mark.unit
    async def test_missing_order_is_retryable(self, processor, registry) -> None:
        @registry.register("test.event")
        async def handler(event, session):
            raise OrderNotFoundError("stripe_session_id", "cs_missing")

        event = _event()
        result = await processor.process(event, _context(event))

        assert result.retryable is True
        assert result.error_code == ErrorCode.ORDER_NOT_FOUND.value

    @pytest.mark.unit
    async def test_failure_writes_no_marker(self, processor, registry, session_factory) -> None:
        @registry.register("test.event")
        async def handler(event, session):
            raise RuntimeError("nope")

        event = _event()
        await processor.process(event, _context(event))

        async with session_factory() as session:
            count = (await session.execute(select(PaymentLog.id))).all()
        assert count == []


class TestHandlerRegistry:

    @pytest.mark.unit
    def test_duplicate_registration_rejected(self, registry) -> None:
        async def handler(event, session):
            pass

        registry.add("a.b", handler)
        with pytest.raises(ValueError):
            registry.add("a.b", handler)

    @pytest.mark.unit
    def test_lookup(self, registry) -> None:
        async def handler(event, session):
            pass

        registry.add("b.c", handler)
        registry.add("a.b", handler)

        assert "a.b" in registry
        assert registry.get("missing") is None
        assert registry.event_types == ["a.b", "b.c"]
        assert len(registry) == 2
