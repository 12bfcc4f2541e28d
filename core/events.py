"""
Domain events for invoicing.

Immutable event objects published after an invoice mutation has been
committed. A service publishes what happened; handlers (reminder mailers,
accounting exports) react without the publisher knowing who's listening.

Event Categories:
- InvoiceEvent: Invoice lifecycle (create, update, send, view, paid, cancel,
  delete, share link, overdue)
- PaymentEvent: Payment lifecycle (recorded, failed, refunded)

Events carry the invoice snapshot taken at commit time so handlers never see
a later state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all invoicing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None  # Invoice snapshot

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceEvent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """A new DRAFT invoice was created (including duplicates)."""


@dataclass(frozen=True)
class InvoiceUpdated(InvoiceEvent):
    """Line items, charges, dates or details of an invoice changed."""
    changes: dict = field(default_factory=dict)

    @classmethod
    def create(cls, invoice: Any, changes: dict | None = None) -> "InvoiceUpdated":
        return cls(invoice=invoice, changes=changes or {})


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice was sent to the client."""
    recipient_email: str | None = None

    @classmethod
    def create(cls, invoice: Any, recipient_email: str | None = None) -> "InvoiceSent":
        return cls(invoice=invoice, recipient_email=recipient_email)


@dataclass(frozen=True)
class InvoiceViewed(InvoiceEvent):
    """The client opened the invoice for the first time."""


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice was fully paid."""


@dataclass(frozen=True)
class InvoiceCancelled(InvoiceEvent):
    """Invoice was cancelled."""


@dataclass(frozen=True)
class InvoiceDeleted(InvoiceEvent):
    """Invoice was removed from the store."""


@dataclass(frozen=True)
class InvoiceShareUpdated(InvoiceEvent):
    """The public share link was enabled, disabled or regenerated."""


@dataclass(frozen=True)
class InvoiceOverdue(InvoiceEvent):
    """Invoice passed its due date with a balance. Published once per due date."""
    days_overdue: int = 0

    @classmethod
    def create(cls, invoice: Any, days_overdue: int = 0) -> "InvoiceOverdue":
        return cls(invoice=invoice, days_overdue=days_overdue)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(BillingEvent):
    """Events related to payments on an invoice."""
    invoice: Any = None
    payment: Any = None

    @classmethod
    def create(cls, invoice: Any, payment: Any) -> "PaymentEvent":
        return cls(invoice=invoice, payment=payment)


@dataclass(frozen=True)
class PaymentRecorded(PaymentEvent):
    """A payment was recorded or completed."""


@dataclass(frozen=True)
class PaymentFailed(PaymentEvent):
    """A payment failed. The invoice balance is unchanged."""


@dataclass(frozen=True)
class PaymentRefunded(PaymentEvent):
    """All or part of a completed payment was refunded; the balance reopened."""
    refund_amount_cents: int = 0

    @classmethod
    def create(cls, invoice: Any, payment: Any, refund_amount_cents: int = 0) -> "PaymentRefunded":
        return cls(invoice=invoice, payment=payment, refund_amount_cents=refund_amount_cents)
