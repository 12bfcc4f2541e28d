"""
Invoice service for billing and payments.

Orchestrates the invoice aggregate: loads it from the repository, applies one
operation, saves it under the optimistic version check, then records history
and publishes events. Mutations of one invoice are serialized by a
per-invoice lock; a write that still loses a version race is re-applied from
freshly read state a bounded number of times.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from core.audit import AuditLogger, HistoryAction, HistoryEntry, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import (
    InvoiceCancelled,
    InvoiceCreated,
    InvoiceDeleted,
    InvoiceOverdue,
    InvoicePaid,
    InvoiceSent,
    InvoiceShareUpdated,
    InvoiceUpdated,
    InvoiceViewed,
    PaymentFailed,
    PaymentRecorded,
    PaymentRefunded,
)
from core.exceptions import (
    ConcurrencyConflict,
    InvariantViolation,
    InvoiceValidationError,
    NotFound,
    TransitionRefused,
)
from core.invoice import InvoiceAggregate
from core.models import (
    BulkItemResult,
    BulkItemStatus,
    BulkResult,
    Invoice,
    InvoiceCreate,
    InvoiceStatistics,
    InvoiceStatus,
    InvoiceUpdate,
    LineItem,
    LineItemCreate,
    LineItemUpdate,
    Payment,
    PaymentCreate,
    PaymentStatistics,
    PaymentStatus,
)
from core.repository import InvoiceRepository
from core.services.client_service import ClientDirectory
from core.status import OPEN_STATUSES
from utils.timezone import add_days, days_past, now_utc

logger = logging.getLogger(__name__)

# Snapshot fields that never show up in update diffs
_DIFF_EXCLUDE = {"payments", "updated_at", "created_at", "version"}

_PAYMENT_HISTORY_ACTIONS = {
    PaymentStatus.COMPLETED: HistoryAction.PAYMENT_RECEIVED,
    PaymentStatus.FAILED: HistoryAction.PAYMENT_FAILED,
}


@dataclass
class _Mutation:
    """Outcome of one committed (or no-op) operation."""

    before: Invoice
    after: Invoice
    result: Any = None

    @property
    def status_changed(self) -> bool:
        return self.before.status != self.after.status

    @property
    def became_paid(self) -> bool:
        return self.after.status == InvoiceStatus.PAID and self.before.status != InvoiceStatus.PAID


def _diff(before: Invoice, after: Invoice) -> dict[str, dict[str, Any]]:
    return compute_changes(
        before.model_dump(mode="json", exclude=_DIFF_EXCLUDE),
        after.model_dump(mode="json", exclude=_DIFF_EXCLUDE),
    )


def _payment_details(payment: Payment) -> dict[str, Any]:
    return payment.model_dump(
        mode="json",
        include={"id", "payment_number", "amount_cents", "refunded_amount_cents", "method", "status"},
    )


def _add_cents(totals: dict[str, int], currency: str, cents: int) -> None:
    totals[currency] = totals.get(currency, 0) + cents


class InvoiceService:
    """
    Service for invoice operations.

    Args:
        repository: Invoice store
        clients: Directory used to validate client ids and find recipients
        audit: Invoice history
        event_bus: Receives events after each committed change
        config: Defaults for new invoices and retry policy
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        repository: InvoiceRepository,
        clients: ClientDirectory,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.repository = repository
        self.clients = clients
        self.audit = audit
        self.event_bus = event_bus
        self.config = config or BillingConfig()
        self.clock = clock
        self._locks: dict[UUID, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _lock_for(self, invoice_id: UUID) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(invoice_id, threading.Lock())

    def _load(self, invoice_id: UUID) -> InvoiceAggregate:
        invoice = self.repository.get(invoice_id)
        if invoice is None:
            raise NotFound(f"Invoice {invoice_id} not found")
        return invoice

    def _mutate(
        self,
        invoice_id: UUID,
        operation: Callable[[InvoiceAggregate, datetime], Any],
        expected_version: int | None = None,
    ) -> _Mutation:
        """
        Apply ``operation`` to a fresh copy and save it.

        Args:
            invoice_id: Invoice to change
            operation: Called with (aggregate, now); may raise to abort
            expected_version: Version the caller based its request on

        Raises:
            NotFound: Invoice does not exist
            ConcurrencyConflict: Caller's version is stale, or retries ran out
        """
        attempts = self.config.conflict_retries + 1

        with self._lock_for(invoice_id):
            for attempt in range(1, attempts + 1):
                invoice = self._load(invoice_id)
                if expected_version is not None and invoice.version != expected_version:
                    raise ConcurrencyConflict(
                        f"Invoice {invoice_id} is at version {invoice.version}, "
                        f"request was based on version {expected_version}",
                        expected_version=expected_version,
                        actual_version=invoice.version,
                    )

                now = self.clock()
                read_version = invoice.version
                before = invoice.snapshot(now)
                result = operation(invoice, now)

                if invoice.version == read_version:
                    return _Mutation(before=before, after=before, result=result)

                try:
                    self.repository.save(invoice, read_version)
                except ConcurrencyConflict:
                    if attempt == attempts:
                        raise
                    logger.warning(
                        "Version conflict on invoice %s (attempt %d/%d), retrying",
                        invoice_id, attempt, attempts,
                    )
                    continue

                return _Mutation(before=before, after=invoice.snapshot(now), result=result)

        raise AssertionError("unreachable")

    def _recipient_email(self, client_id: UUID) -> str | None:
        client = self.clients.get_by_id(client_id)
        return client.email if client is not None else None

    def _log_status_change(self, mutation: _Mutation) -> None:
        if mutation.status_changed:
            self.audit.log_change(
                mutation.after.id,
                HistoryAction.STATUS_CHANGED,
                f"Status changed from {mutation.before.status.value} to {mutation.after.status.value}",
                {"status": {"old": mutation.before.status.value, "new": mutation.after.status.value}},
            )

    # -------------------------------------------------------------------------
    # Create / read
    # -------------------------------------------------------------------------

    def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """
        Create an invoice in DRAFT status.

        Currency, tax rate and due date fall back to the configured defaults.

        Raises:
            NotFound: Client does not exist
            InvoiceValidationError: Invalid currency, precision or dates
            InvariantViolation: Invoice number already taken
        """
        self.clients.require(data.client_id)
        now = self.clock()

        invoice_date = data.invoice_date or now
        due_date = data.due_date or add_days(invoice_date, self.config.default_payment_terms_days)
        invoice_number = data.invoice_number or self.repository.next_invoice_number(
            self.config.invoice_prefix
        )

        invoice = InvoiceAggregate(
            client_id=data.client_id,
            invoice_number=invoice_number,
            currency=data.currency or self.config.default_currency,
            invoice_date=invoice_date,
            due_date=due_date,
            items=data.items,
            tax_rate=data.tax_rate if data.tax_rate is not None else self.config.default_tax_rate,
            discount=data.discount,
            notes=data.notes,
            terms=data.terms,
            footer=data.footer,
            overpayment_tolerance_cents=self.config.overpayment_tolerance_cents,
            now=now,
        )
        self.repository.add(invoice)
        created = invoice.snapshot(now)

        self.audit.log_change(
            created.id,
            HistoryAction.CREATED,
            f"Invoice {created.invoice_number} created",
            {"created": created.model_dump(mode="json", exclude=_DIFF_EXCLUDE)},
        )
        self.event_bus.publish(InvoiceCreated.create(invoice=created))
        logger.info("Created invoice %s (%s)", created.invoice_number, created.id)

        return created

    def get_by_id(self, invoice_id: UUID, now: datetime | None = None) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Snapshot with OVERDUE projected for ``now``, None if not found
        """
        invoice = self.repository.get(invoice_id)
        if invoice is None:
            return None
        return invoice.snapshot(now or self.clock())

    def get_by_number(self, invoice_number: str) -> Invoice | None:
        invoice = self.repository.find_by_number(invoice_number)
        if invoice is None:
            return None
        return invoice.snapshot(self.clock())

    def get_history(self, invoice_id: UUID) -> list[HistoryEntry]:
        """Invoice history, newest first. Kept after the invoice is deleted."""
        return self.audit.get_invoice_history(invoice_id)

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def _edit(
        self,
        invoice_id: UUID,
        operation: Callable[[InvoiceAggregate, datetime], Any],
        description: str,
        expected_version: int | None = None,
    ) -> _Mutation:
        mutation = self._mutate(invoice_id, operation, expected_version)
        changes = _diff(mutation.before, mutation.after)
        if changes:
            self.audit.log_change(invoice_id, HistoryAction.UPDATED, description, changes)
            self.event_bus.publish(InvoiceUpdated.create(invoice=mutation.after, changes=changes))
        return mutation

    def update_invoice(
        self,
        invoice_id: UUID,
        data: InvoiceUpdate,
        expected_version: int | None = None,
    ) -> Invoice:
        """
        Update line items, charges, dates or details.

        Args:
            invoice_id: Invoice UUID
            data: Fields to change (``items`` replaces the whole list)
            expected_version: Reject the update if the invoice moved on

        Raises:
            NotFound: Invoice does not exist
            InvariantViolation: Invoice was already viewed or paid
            ConcurrencyConflict: expected_version is stale
        """
        mutation = self._edit(
            invoice_id,
            lambda invoice, now: invoice.update(data, now),
            "Invoice updated",
            expected_version,
        )
        return mutation.after

    def add_line_item(self, invoice_id: UUID, data: LineItemCreate) -> LineItem:
        mutation = self._edit(
            invoice_id,
            lambda invoice, now: invoice.add_line_item(data, now),
            f"Line item '{data.description}' added",
        )
        return mutation.result

    def update_line_item(self, invoice_id: UUID, item_id: UUID, data: LineItemUpdate) -> LineItem:
        mutation = self._edit(
            invoice_id,
            lambda invoice, now: invoice.update_line_item(item_id, data, now),
            "Line item updated",
        )
        return mutation.result

    def remove_line_item(self, invoice_id: UUID, item_id: UUID) -> Invoice:
        mutation = self._edit(
            invoice_id,
            lambda invoice, now: invoice.remove_line_item(item_id, now),
            "Line item removed",
        )
        return mutation.after

    def extend_due_date(self, invoice_id: UUID, due_date: datetime) -> Invoice:
        """
        Move the due date of an unpaid invoice, including a locked one.

        A later due date lifts the OVERDUE projection and re-arms the overdue
        notice.
        """
        mutation = self._edit(
            invoice_id,
            lambda invoice, now: invoice.extend_due_date(due_date, now),
            "Due date changed",
        )
        return mutation.after

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def send(self, invoice_id: UUID) -> Invoice:
        """
        Send an invoice (DRAFT -> SENT).

        Raises:
            NotFound: Invoice does not exist
            TransitionRefused: Not a draft, no line items, zero subtotal, or
                the client has no email address
        """
        recipient: dict[str, str | None] = {}

        def operation(invoice: InvoiceAggregate, now: datetime) -> None:
            recipient["email"] = self._recipient_email(invoice.client_id)
            invoice.send(recipient["email"], now)

        mutation = self._mutate(invoice_id, operation)
        sent = mutation.after

        self.audit.log_change(
            invoice_id,
            HistoryAction.SENT,
            f"Invoice sent to {recipient['email']}",
            {
                "status": {"old": mutation.before.status.value, "new": sent.status.value},
                "recipient": recipient["email"],
            },
        )
        self.event_bus.publish(InvoiceSent.create(invoice=sent, recipient_email=recipient["email"]))
        logger.info("Sent invoice %s to %s", sent.invoice_number, recipient["email"])

        return sent

    def record_view(self, invoice_id: UUID) -> Invoice:
        """
        Register that the client opened the invoice.

        The first view moves SENT to VIEWED and locks editing. Later views
        only refresh ``viewed_at``.

        Raises:
            TransitionRefused: Invoice is DRAFT or CANCELLED
        """
        mutation = self._mutate(invoice_id, lambda invoice, now: invoice.record_view(now))

        if mutation.result:
            self.audit.log_change(
                invoice_id,
                HistoryAction.VIEWED,
                "Invoice viewed by client",
                {"status": {"old": mutation.before.status.value, "new": mutation.after.status.value}},
            )
            self.event_bus.publish(InvoiceViewed.create(invoice=mutation.after))

        return mutation.after

    def cancel(self, invoice_id: UUID) -> Invoice:
        """
        Cancel an invoice.

        Raises:
            TransitionRefused: Already PAID or CANCELLED, or a COMPLETED
                payment exists
        """
        mutation = self._mutate(invoice_id, lambda invoice, now: invoice.cancel(now))
        cancelled = mutation.after

        self.audit.log_change(
            invoice_id,
            HistoryAction.CANCELLED,
            f"Invoice {cancelled.invoice_number} cancelled",
            {"status": {"old": mutation.before.status.value, "new": cancelled.status.value}},
        )
        self.event_bus.publish(InvoiceCancelled.create(invoice=cancelled))
        logger.info("Cancelled invoice %s", cancelled.invoice_number)

        return cancelled

    def delete(self, invoice_id: UUID) -> bool:
        """
        Delete an invoice.

        Returns:
            True if deleted, False if not found

        Raises:
            InvariantViolation: Invoice holds COMPLETED payments
        """
        with self._lock_for(invoice_id):
            invoice = self.repository.get(invoice_id)
            if invoice is None:
                return False

            invoice.ensure_deletable()
            snapshot = invoice.snapshot(self.clock())
            self.repository.delete(invoice_id, expected_version=invoice.version)
            with self._locks_guard:
                self._locks.pop(invoice_id, None)

        self.audit.log_change(
            invoice_id,
            HistoryAction.DELETED,
            f"Invoice {snapshot.invoice_number} deleted",
            {"deleted": snapshot.model_dump(mode="json", exclude=_DIFF_EXCLUDE)},
        )
        self.event_bus.publish(InvoiceDeleted.create(invoice=snapshot))
        logger.info("Deleted invoice %s", snapshot.invoice_number)

        return True

    def duplicate(self, invoice_id: UUID) -> Invoice:
        """
        Copy an invoice into a new DRAFT.

        Line items, charges and notes are copied; the new invoice is dated
        today with the same payment term length. Payments are not copied.
        """
        source = self._load(invoice_id)
        now = self.clock()

        invoice = source.duplicate(
            self.repository.next_invoice_number(self.config.invoice_prefix), now
        )
        self.repository.add(invoice)
        created = invoice.snapshot(now)

        self.audit.log_change(
            created.id,
            HistoryAction.CREATED,
            f"Invoice {created.invoice_number} duplicated from {source.invoice_number}",
            {"duplicated_from": str(source.id)},
        )
        self.event_bus.publish(InvoiceCreated.create(invoice=created))
        logger.info("Duplicated invoice %s as %s", source.invoice_number, created.invoice_number)

        return created

    # -------------------------------------------------------------------------
    # Share link
    # -------------------------------------------------------------------------

    def update_share(
        self,
        invoice_id: UUID,
        enable: bool | None = None,
        regenerate: bool = False,
    ) -> Invoice:
        """
        Enable, disable or regenerate the invoice's public share link.

        Regenerating retires the old link immediately.
        """
        mutation = self._mutate(
            invoice_id,
            lambda invoice, now: invoice.update_share(enable, regenerate, now),
        )
        shared = mutation.after

        if mutation.result:
            state = "enabled" if shared.share_enabled else "disabled"
            self.audit.log_change(
                invoice_id,
                HistoryAction.SHARE_UPDATED,
                f"Share link {state}",
                _diff(mutation.before, shared),
            )
            self.event_bus.publish(InvoiceShareUpdated.create(invoice=shared))

        return shared

    def view_shared(
        self,
        share_id: UUID,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> Invoice:
        """
        Open an invoice through its public share link.

        Each open of a SENT, VIEWED or PARTIALLY_PAID invoice is a recipient
        view, recorded with the caller's ip and user agent. DRAFT, PAID and
        CANCELLED invoices are shown without recording anything.

        Raises:
            NotFound: No enabled link with this id
        """
        candidate = self.repository.find_by_share_id(share_id)
        if candidate is None:
            raise NotFound(f"No shared invoice for link {share_id}", code="SHARE_NOT_FOUND")
        if candidate.status not in OPEN_STATUSES:
            return candidate.snapshot(self.clock())

        def operation(invoice: InvoiceAggregate, now: datetime) -> bool | None:
            if invoice.status not in OPEN_STATUSES:
                return None
            if not invoice.share_enabled or invoice.share_id != share_id:
                return None
            return invoice.record_view(now)

        mutation = self._mutate(candidate.id, operation)
        viewed = mutation.after
        if mutation.result is None:
            return viewed

        self.audit.log_change(
            viewed.id,
            HistoryAction.VIEWED,
            "Invoice viewed via share link",
            {
                "status": {"old": mutation.before.status.value, "new": viewed.status.value},
                "ip": ip,
                "user_agent": user_agent,
            },
        )
        if mutation.result:
            self.event_bus.publish(InvoiceViewed.create(invoice=viewed))

        return viewed

    # -------------------------------------------------------------------------
    # Bulk
    # -------------------------------------------------------------------------

    def _bulk(self, invoice_ids: list[UUID], operation: Callable[[UUID], Any], verb: str) -> BulkResult:
        if not invoice_ids:
            raise InvoiceValidationError("At least one invoice id is required", code="EMPTY_REQUEST")

        result = BulkResult(requested=len(invoice_ids))
        for invoice_id in invoice_ids:
            try:
                operation(invoice_id)
            except NotFound as exc:
                result.not_found += 1
                result.results.append(BulkItemResult(
                    id=invoice_id, status=BulkItemStatus.NOT_FOUND, code=exc.code, message=exc.message,
                ))
            except (TransitionRefused, InvariantViolation, ConcurrencyConflict) as exc:
                logger.info("Bulk %s skipped invoice %s: %s", verb, invoice_id, exc.message)
                result.skipped += 1
                result.results.append(BulkItemResult(
                    id=invoice_id, status=BulkItemStatus.SKIPPED, code=exc.code, message=exc.message,
                ))
            else:
                result.succeeded += 1
                result.results.append(BulkItemResult(id=invoice_id, status=BulkItemStatus.SUCCEEDED))

        logger.info(
            "Bulk %s: %d requested, %d succeeded, %d skipped, %d not found",
            verb, result.requested, result.succeeded, result.skipped, result.not_found,
        )
        return result

    def send_bulk(self, invoice_ids: list[UUID]) -> BulkResult:
        """
        Send several invoices. Each goes through the same guards as ``send``.

        Raises:
            InvoiceValidationError: ``invoice_ids`` is empty
        """
        return self._bulk(invoice_ids, self.send, "send")

    def delete_bulk(self, invoice_ids: list[UUID]) -> BulkResult:
        """
        Delete several invoices. Invoices holding COMPLETED payments are skipped.

        Raises:
            InvoiceValidationError: ``invoice_ids`` is empty
        """

        def delete(invoice_id: UUID) -> None:
            if not self.delete(invoice_id):
                raise NotFound(f"Invoice {invoice_id} not found")

        return self._bulk(invoice_ids, delete, "delete")

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def record_payment(self, invoice_id: UUID, data: PaymentCreate) -> Payment:
        """
        Record a payment against an invoice.

        Args:
            invoice_id: Invoice UUID
            data: Amount (major units), method and initial status

        Returns:
            The stored payment

        Raises:
            NotFound: Invoice does not exist
            TransitionRefused: Invoice is DRAFT or CANCELLED
            InvariantViolation: Amount exceeds the balance due
            InvoiceValidationError: Amount has more precision than the currency
        """
        payment_number = self.repository.next_payment_number()
        mutation = self._mutate(
            invoice_id,
            lambda invoice, now: invoice.record_payment(data, payment_number, now),
        )
        payment: Payment = mutation.result
        invoice = mutation.after

        if payment.status == PaymentStatus.FAILED:
            self.audit.log_change(
                invoice_id,
                HistoryAction.PAYMENT_FAILED,
                f"Payment {payment.payment_number} failed",
                {"payment": _payment_details(payment)},
            )
            self.event_bus.publish(PaymentFailed.create(invoice=invoice, payment=payment))
        else:
            self.audit.log_change(
                invoice_id,
                HistoryAction.PAYMENT_RECEIVED,
                f"Payment {payment.payment_number} of {payment.amount_cents} cents recorded",
                {
                    "payment": _payment_details(payment),
                    "balance_due_cents": {
                        "old": mutation.before.balance_due_cents,
                        "new": invoice.balance_due_cents,
                    },
                },
            )
            self.event_bus.publish(PaymentRecorded.create(invoice=invoice, payment=payment))

        self._log_status_change(mutation)
        if mutation.became_paid:
            self.event_bus.publish(InvoicePaid.create(invoice=invoice))
            logger.info("Invoice %s paid in full", invoice.invoice_number)

        return payment

    def update_payment_status(
        self,
        invoice_id: UUID,
        payment_id: UUID,
        status: PaymentStatus,
    ) -> Payment:
        """
        Apply a payment outcome (e.g. from a payment provider).

        Raises:
            NotFound: Invoice or payment does not exist
            InvariantViolation: Illegal payment transition or overpayment
            TransitionRefused: Invoice cannot accept the outcome
        """
        if status == PaymentStatus.REFUNDED:
            return self.refund_payment(invoice_id, payment_id)

        mutation = self._mutate(
            invoice_id,
            lambda invoice, now: invoice.update_payment_status(payment_id, status, now),
        )
        payment: Payment = mutation.result
        invoice = mutation.after

        action = _PAYMENT_HISTORY_ACTIONS.get(status, HistoryAction.UPDATED)
        self.audit.log_change(
            invoice_id,
            action,
            f"Payment {payment.payment_number} is now {status.value}",
            {"payment": _payment_details(payment)},
        )
        self._log_status_change(mutation)

        if status == PaymentStatus.COMPLETED:
            self.event_bus.publish(PaymentRecorded.create(invoice=invoice, payment=payment))
        elif status == PaymentStatus.FAILED:
            self.event_bus.publish(PaymentFailed.create(invoice=invoice, payment=payment))

        if mutation.became_paid:
            self.event_bus.publish(InvoicePaid.create(invoice=invoice))

        return payment

    def refund_payment(self, invoice_id: UUID, payment_id: UUID, amount=None) -> Payment:
        """
        Refund all or part of a COMPLETED payment. The refunded part of the
        balance reopens.

        Args:
            invoice_id: Invoice UUID
            payment_id: Payment to refund
            amount: Major-unit amount, None for whatever is left of the payment

        Raises:
            NotFound: Invoice or payment does not exist
            InvariantViolation: Payment is not COMPLETED, or the amount is
                more than is left to refund
        """
        mutation = self._mutate(
            invoice_id,
            lambda invoice, now: invoice.refund_payment(payment_id, now, amount),
        )
        payment: Payment = mutation.result
        invoice = mutation.after

        previous = next(p for p in mutation.before.payments if p.id == payment_id)
        refund_cents = payment.refunded_amount_cents - previous.refunded_amount_cents

        self.audit.log_change(
            invoice_id,
            HistoryAction.PAYMENT_REFUNDED,
            f"Payment {payment.payment_number} refunded: {refund_cents} cents",
            {
                "payment": _payment_details(payment),
                "refund_amount_cents": refund_cents,
                "balance_due_cents": {
                    "old": mutation.before.balance_due_cents,
                    "new": invoice.balance_due_cents,
                },
            },
        )
        self._log_status_change(mutation)
        self.event_bus.publish(
            PaymentRefunded.create(invoice=invoice, payment=payment, refund_amount_cents=refund_cents)
        )
        logger.info(
            "Refunded %d cents of payment %s on invoice %s",
            refund_cents, payment.payment_number, invoice.invoice_number,
        )

        return payment

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_all(self, now: datetime | None = None) -> list[Invoice]:
        now = now or self.clock()
        return [invoice.snapshot(now) for invoice in self.repository.list_all()]

    def list_for_client(self, client_id: UUID, now: datetime | None = None) -> list[Invoice]:
        """Invoices for a client, newest first."""
        invoices = [i for i in self.list_all(now) if i.client_id == client_id]
        return sorted(invoices, key=lambda i: i.created_at, reverse=True)

    def list_unpaid(self, now: datetime | None = None) -> list[Invoice]:
        """Sent invoices with a balance (including overdue), by due date."""
        unpaid = [
            i for i in self.list_all(now)
            if (i.status in OPEN_STATUSES or i.status == InvoiceStatus.OVERDUE)
            and i.balance_due_cents > 0
        ]
        return sorted(unpaid, key=lambda i: i.due_date)

    def list_overdue(self, now: datetime | None = None) -> list[Invoice]:
        """Invoices past due with a balance at ``now``, most overdue first."""
        overdue = [i for i in self.list_all(now) if i.status == InvoiceStatus.OVERDUE]
        return sorted(overdue, key=lambda i: i.due_date)

    def statistics(self, now: datetime | None = None) -> InvoiceStatistics:
        """
        Counts per status and money sums per currency.

        ``collected_cents`` sums paid amounts, ``outstanding_cents`` sums the
        balance of open and overdue invoices. Currencies are never combined.
        """
        stats = InvoiceStatistics()

        for invoice in self.list_all(now):
            stats.total += 1
            currency = invoice.currency

            if invoice.status == InvoiceStatus.DRAFT:
                stats.draft += 1
            elif invoice.status == InvoiceStatus.CANCELLED:
                stats.cancelled += 1
            elif invoice.status == InvoiceStatus.PAID:
                stats.paid += 1
            elif invoice.status == InvoiceStatus.OVERDUE:
                stats.overdue += 1
            else:
                stats.open += 1

            if invoice.paid_amount_cents:
                _add_cents(stats.collected_cents, currency, invoice.paid_amount_cents)
            if invoice.status in OPEN_STATUSES or invoice.status == InvoiceStatus.OVERDUE:
                _add_cents(stats.outstanding_cents, currency, invoice.balance_due_cents)

        return stats

    def payment_statistics(self, now: datetime | None = None) -> PaymentStatistics:
        """
        Payment figures across every invoice.

        ``received_cents`` sums COMPLETED payments net of refunds and
        ``received_this_month_cents`` narrows that to payments dated in the
        current UTC calendar month. ``pending`` counts PENDING and PROCESSING
        payments.
        """
        now = now or self.clock()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        stats = PaymentStatistics()

        for invoice in self.repository.list_all():
            currency = invoice.currency
            for payment in invoice.payments:
                if payment.status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
                    stats.pending += 1
                elif payment.status == PaymentStatus.FAILED:
                    stats.failed += 1

                if payment.refunded_amount_cents:
                    _add_cents(stats.refunded_cents, currency, payment.refunded_amount_cents)
                if payment.status != PaymentStatus.COMPLETED:
                    continue

                _add_cents(stats.received_cents, currency, payment.net_amount_cents)
                if payment.payment_date >= month_start:
                    _add_cents(stats.received_this_month_cents, currency, payment.net_amount_cents)

        return stats

    # -------------------------------------------------------------------------
    # Scheduled work
    # -------------------------------------------------------------------------

    def sweep_overdue(self, now: datetime | None = None) -> list[Invoice]:
        """
        Publish InvoiceOverdue for invoices that became overdue.

        Each invoice is notified once per due date; extending the due date
        re-arms the notice. Runs without a user context.

        Returns:
            Invoices notified in this sweep
        """
        now = now or self.clock()
        notified = []

        for candidate in self.repository.list_all():
            if candidate.overdue_notified_at is not None:
                continue
            if candidate.effective_status(now) != InvoiceStatus.OVERDUE:
                continue

            def operation(invoice: InvoiceAggregate, _now: datetime) -> bool:
                if invoice.overdue_notified_at is not None:
                    return False
                if invoice.effective_status(now) != InvoiceStatus.OVERDUE:
                    return False
                invoice.mark_overdue_notified(now)
                return True

            try:
                mutation = self._mutate(candidate.id, operation)
            except NotFound:
                logger.info("Invoice %s deleted during overdue sweep", candidate.id)
                continue

            if not mutation.result:
                continue

            invoice = mutation.after.model_copy(update={"status": InvoiceStatus.OVERDUE})
            overdue_days = days_past(invoice.due_date, now)
            self.audit.log_change(
                invoice.id,
                HistoryAction.REMINDER_SENT,
                f"Overdue notice issued ({overdue_days} days overdue)",
                {"days_overdue": overdue_days, "balance_due_cents": invoice.balance_due_cents},
            )
            self.event_bus.publish(InvoiceOverdue.create(invoice=invoice, days_overdue=overdue_days))
            notified.append(invoice)

        if notified:
            logger.info("Overdue sweep notified %d invoices", len(notified))

        return notified
