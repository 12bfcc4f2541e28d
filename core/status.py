"""
Invoice status state machine.

Status only changes through ``transition``: each lifecycle event names the
states it may fire from and a guard that either yields the next state or
raises TransitionRefused with the unmet condition. Nothing here corrects a
state on its own.

OVERDUE is never stored. ``project_status`` derives it at read time from the
stored status, the balance and the due date.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from core.exceptions import InvariantViolation, TransitionRefused
from core.models import InvoiceStatus


class LifecycleEvent(str, Enum):
    """Events that can move an invoice between statuses."""

    SEND = "send"
    VIEW = "view"
    SETTLE = "settle"  # A payment became COMPLETED
    REFUND = "refund"  # A COMPLETED payment became REFUNDED
    CANCEL = "cancel"


OPEN_STATUSES = frozenset({
    InvoiceStatus.SENT,
    InvoiceStatus.VIEWED,
    InvoiceStatus.PARTIALLY_PAID,
})

TERMINAL_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})


@dataclass(frozen=True)
class GuardContext:
    """Facts about the invoice that transition guards inspect."""

    line_item_count: int = 0
    subtotal_cents: int = 0
    total_amount_cents: int = 0
    paid_amount_cents: int = 0
    has_completed_payments: bool = False
    viewed: bool = False
    recipient_email: str | None = None


def _unpaid_status(ctx: GuardContext) -> InvoiceStatus:
    return InvoiceStatus.VIEWED if ctx.viewed else InvoiceStatus.SENT


def settled_status(ctx: GuardContext) -> InvoiceStatus:
    """Status implied by the ledger for a sent, non-cancelled invoice."""
    if ctx.paid_amount_cents > 0 and ctx.paid_amount_cents >= ctx.total_amount_cents:
        return InvoiceStatus.PAID
    if ctx.paid_amount_cents > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return _unpaid_status(ctx)


def _guard_send(status: InvoiceStatus, ctx: GuardContext) -> InvoiceStatus:
    if ctx.line_item_count == 0:
        raise TransitionRefused(
            "Cannot send invoice with zero line items", code="NO_LINE_ITEMS"
        )
    if ctx.subtotal_cents <= 0:
        raise TransitionRefused(
            "Cannot send invoice with a zero subtotal", code="ZERO_SUBTOTAL"
        )
    if not (ctx.recipient_email or "").strip():
        raise TransitionRefused(
            "Cannot send invoice: client has no recipient email address",
            code="MISSING_RECIPIENT",
        )
    return InvoiceStatus.SENT


def _guard_view(status: InvoiceStatus, ctx: GuardContext) -> InvoiceStatus:
    if status == InvoiceStatus.SENT:
        return InvoiceStatus.VIEWED
    return status


def _guard_settle(status: InvoiceStatus, ctx: GuardContext) -> InvoiceStatus:
    return settled_status(ctx)


def _guard_cancel(status: InvoiceStatus, ctx: GuardContext) -> InvoiceStatus:
    if ctx.has_completed_payments:
        raise TransitionRefused(
            "Cannot cancel invoice with completed payments; refund them first",
            code="HAS_COMPLETED_PAYMENTS",
        )
    return InvoiceStatus.CANCELLED


_Guard = Callable[[InvoiceStatus, GuardContext], InvoiceStatus]

_TRANSITIONS: dict[LifecycleEvent, tuple[frozenset[InvoiceStatus], _Guard]] = {
    LifecycleEvent.SEND: (frozenset({InvoiceStatus.DRAFT}), _guard_send),
    LifecycleEvent.VIEW: (
        frozenset({
            InvoiceStatus.SENT,
            InvoiceStatus.VIEWED,
            InvoiceStatus.PARTIALLY_PAID,
            InvoiceStatus.PAID,
        }),
        _guard_view,
    ),
    LifecycleEvent.SETTLE: (OPEN_STATUSES | {InvoiceStatus.PAID}, _guard_settle),
    LifecycleEvent.REFUND: (
        frozenset({InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID}),
        _guard_settle,
    ),
    LifecycleEvent.CANCEL: (
        frozenset({InvoiceStatus.DRAFT}) | OPEN_STATUSES,
        _guard_cancel,
    ),
}

_REFUSAL_REASONS = {
    (LifecycleEvent.SEND, InvoiceStatus.CANCELLED): "Cannot send a cancelled invoice",
    (LifecycleEvent.VIEW, InvoiceStatus.DRAFT): "Cannot view an invoice that has not been sent",
    (LifecycleEvent.VIEW, InvoiceStatus.CANCELLED): "Cannot view a cancelled invoice",
    (LifecycleEvent.SETTLE, InvoiceStatus.DRAFT): "Cannot record payment on an invoice that has not been sent",
    (LifecycleEvent.SETTLE, InvoiceStatus.CANCELLED): "Cannot record payment on a cancelled invoice",
    (LifecycleEvent.CANCEL, InvoiceStatus.PAID): "Cannot cancel a paid invoice",
    (LifecycleEvent.CANCEL, InvoiceStatus.CANCELLED): "Invoice is already cancelled",
}


def transition(status: InvoiceStatus, event: LifecycleEvent, ctx: GuardContext) -> InvoiceStatus:
    """
    Compute the status after ``event``.

    Args:
        status: Current stored status (never OVERDUE)
        event: Lifecycle event being applied
        ctx: Guard inputs, taken after the event's effect on the ledger

    Returns:
        The new status (may equal the current one, e.g. a repeat view)

    Raises:
        TransitionRefused: Event not allowed from ``status`` or a guard failed
    """
    allowed_from, guard = _TRANSITIONS[event]
    if status not in allowed_from:
        reason = _REFUSAL_REASONS.get(
            (event, status),
            f"Cannot {event.value} invoice in status {status.value}",
        )
        raise TransitionRefused(reason, code="INVALID_STATUS_TRANSITION")
    return guard(status, ctx)


def check_transition(status: InvoiceStatus, event: LifecycleEvent) -> None:
    """Raise TransitionRefused if ``event`` can never fire from ``status``."""
    allowed_from, _ = _TRANSITIONS[event]
    if status not in allowed_from:
        transition(status, event, GuardContext())


def project_status(
    status: InvoiceStatus,
    balance_due_cents: int,
    due_date: datetime | None,
    now: datetime,
) -> InvoiceStatus:
    """Stored status with the OVERDUE projection applied for ``now``."""
    if (
        status in OPEN_STATUSES
        and balance_due_cents > 0
        and due_date is not None
        and now > due_date
    ):
        return InvoiceStatus.OVERDUE
    return status


def can_edit(status: InvoiceStatus, viewed: bool, has_payments: bool) -> bool:
    """Editable while DRAFT, or SENT before the first view or payment."""
    if status == InvoiceStatus.DRAFT:
        return True
    return status == InvoiceStatus.SENT and not viewed and not has_payments


def ensure_editable(status: InvoiceStatus, viewed: bool, has_payments: bool) -> None:
    """Raise InvariantViolation if line items, charges or dates are locked."""
    if not can_edit(status, viewed, has_payments):
        raise InvariantViolation(
            f"Invoice in status {status.value} can no longer be edited once "
            "viewed or paid; duplicate it instead",
            code="INVOICE_LOCKED",
        )
