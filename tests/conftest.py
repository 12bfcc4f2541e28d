"""Shared test fixtures for the invoicing test suite."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.models import ClientCreate, InvoiceCreate, LineItemCreate
from core.repository import InvoiceRepository
from core.services.client_service import ClientDirectory
from core.services.invoice_service import InvoiceService
from utils.user_context import user_context, clear_current_user_id


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")

# Fixed "now" for every service test
T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

ALL_EVENTS = [
    "InvoiceCreated", "InvoiceUpdated", "InvoiceSent", "InvoiceViewed",
    "InvoicePaid", "InvoiceCancelled", "InvoiceDeleted", "InvoiceOverdue",
    "InvoiceShareUpdated",
    "PaymentRecorded", "PaymentFailed", "PaymentRefunded",
]


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> UUID:
    """The primary test user's ID."""
    return TEST_USER_ID


@pytest.fixture
def test_user_b_id() -> UUID:
    return TEST_USER_B_ID


@pytest.fixture
def as_test_user(test_user_id):
    """Context manager that sets primary test user context."""
    with user_context(test_user_id):
        yield test_user_id


# =============================================================================
# CLOCK
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(T0)


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def config():
    return BillingConfig()


@pytest.fixture
def repository():
    return InvoiceRepository()


@pytest.fixture
def client_directory():
    return ClientDirectory()


@pytest.fixture
def audit():
    return AuditLogger()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published on the bus, in order."""
    received = []
    for name in ALL_EVENTS:
        event_bus.subscribe(name, received.append)
    return received


@pytest.fixture
def invoice_service(repository, client_directory, audit, event_bus, config, clock):
    return InvoiceService(repository, client_directory, audit, event_bus, config, clock=clock)


# =============================================================================
# TEST DATA FIXTURES
# =============================================================================


@pytest.fixture
def acme(client_directory):
    """Client with a recipient address."""
    return client_directory.register(ClientCreate(name="Acme Corp", email="billing@acme.test"))


@pytest.fixture
def no_email_client(client_directory):
    return client_directory.register(ClientCreate(name="Walk-in"))


@pytest.fixture
def make_invoice(invoice_service, acme):
    """Factory creating DRAFT invoices for Acme; one 100.00 item by default."""

    def _make(items=None, **kwargs):
        if items is None:
            items = [LineItemCreate(description="Consulting", quantity=Decimal("1"), rate=Decimal("100.00"))]
        kwargs.setdefault("client_id", acme.id)
        return invoice_service.create_invoice(InvoiceCreate(items=items, **kwargs))

    return _make


@pytest.fixture
def sent_invoice(invoice_service, make_invoice):
    """SENT invoice totalling 100.00, due in 30 days."""
    invoice = make_invoice()
    return invoice_service.send(invoice.id)
