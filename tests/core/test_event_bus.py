"""Tests for EventBus."""

import logging
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from core.event_bus import EventBus
from core.events import InvoiceCreated, InvoicePaid, PaymentRecorded
from core.invoice import InvoiceAggregate
from core.models import LineItemCreate
from utils.timezone import now_utc


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def invoice_snapshot():
    now = now_utc()
    return InvoiceAggregate(
        client_id=uuid4(), invoice_number="INV-00001", currency="USD",
        invoice_date=now, due_date=now + timedelta(days=30),
        items=[LineItemCreate(description="Work", rate=Decimal("50.00"))],
    ).snapshot(now)


# =============================================================================
# SUBSCRIBE AND PUBLISH
# =============================================================================


class TestSubscribeAndPublish:

    def test_single_handler_receives_the_exact_event_object(self, invoice_snapshot):
        bus = EventBus()
        received = []
        bus.subscribe("InvoiceCreated", received.append)

        event = InvoiceCreated.create(invoice=invoice_snapshot)
        bus.publish(event)

        assert len(received) == 1
        assert received[0] is event

    def test_multiple_handlers_called_in_subscription_order(self, invoice_snapshot):
        bus = EventBus()
        order = []
        bus.subscribe("InvoicePaid", lambda e: order.append("A"))
        bus.subscribe("InvoicePaid", lambda e: order.append("B"))
        bus.subscribe("InvoicePaid", lambda e: order.append("C"))

        bus.publish(InvoicePaid.create(invoice=invoice_snapshot))

        assert order == ["A", "B", "C"]

    def test_type_isolation_only_matching_subscribers_called(self, invoice_snapshot):
        bus = EventBus()
        created_calls = []
        paid_calls = []
        bus.subscribe("InvoiceCreated", created_calls.append)
        bus.subscribe("InvoicePaid", paid_calls.append)

        bus.publish(InvoiceCreated.create(invoice=invoice_snapshot))

        assert len(created_calls) == 1
        assert paid_calls == []

    def test_subclass_name_is_the_subscription_key(self, invoice_snapshot):
        """Subscribing to a base class name does not catch subclasses."""
        bus = EventBus()
        received = []
        bus.subscribe("PaymentEvent", received.append)

        bus.publish(PaymentRecorded.create(invoice=invoice_snapshot, payment=None))

        assert received == []

    def test_no_subscribers_does_not_raise(self, invoice_snapshot):
        EventBus().publish(InvoiceCreated.create(invoice=invoice_snapshot))

    def test_unsubscribe(self, invoice_snapshot):
        bus = EventBus()
        received = []
        bus.subscribe("InvoiceCreated", received.append)
        bus.unsubscribe("InvoiceCreated", received.append)

        bus.publish(InvoiceCreated.create(invoice=invoice_snapshot))

        assert received == []


# =============================================================================
# HANDLER ERROR ISOLATION
# =============================================================================


class TestHandlerErrorIsolation:

    def test_handler_exception_is_logged_with_event_type_and_event_id(self, invoice_snapshot, caplog):
        bus = EventBus()

        def failing_handler(event):
            raise ValueError("mailer down")

        bus.subscribe("InvoicePaid", failing_handler)

        with caplog.at_level(logging.ERROR, logger="core.event_bus"):
            event = InvoicePaid.create(invoice=invoice_snapshot)
            bus.publish(event)

        assert "mailer down" in caplog.text
        assert "InvoicePaid" in caplog.text
        assert event.event_id in caplog.text

    def test_all_handlers_run_even_if_multiple_fail(self, invoice_snapshot):
        bus = EventBus()
        results = []

        bus.subscribe("InvoicePaid", lambda e: (_ for _ in ()).throw(RuntimeError("fail 1")))
        bus.subscribe("InvoicePaid", lambda e: results.append("survived_1"))
        bus.subscribe("InvoicePaid", lambda e: (_ for _ in ()).throw(RuntimeError("fail 2")))
        bus.subscribe("InvoicePaid", lambda e: results.append("survived_2"))

        bus.publish(InvoicePaid.create(invoice=invoice_snapshot))

        assert results == ["survived_1", "survived_2"]
