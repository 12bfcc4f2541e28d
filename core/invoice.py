"""
Invoice aggregate.

The single writer of an invoice's derived figures. Every operation that
changes an input (line items, tax rate, discount, payments) re-runs the whole
derivation: subtotal -> charges -> ledger -> status. Derived values are
computed for the candidate state first and only committed when every check
has passed, so a failed operation leaves the aggregate exactly as it was.

``version`` increases by one per committed operation and is used by the
repository for optimistic concurrency control.
"""

import copy
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from core.exceptions import InvariantViolation, InvoiceValidationError, NotFound
from core.ledger import PaymentLedger, check_payment_transition
from core.models import (
    DiscountSpec,
    Invoice,
    InvoiceStatus,
    InvoiceUpdate,
    LineItem,
    LineItemCreate,
    LineItemUpdate,
    Payment,
    PaymentCreate,
    PaymentStatus,
)
from core.money import HUNDRED, Money, normalize_currency, parse_decimal
from core.pricing import ChargeBreakdown, aggregate_subtotal, calculate_charges
from core.status import (
    TERMINAL_STATUSES,
    GuardContext,
    LifecycleEvent,
    check_transition,
    ensure_editable,
    project_status,
    transition,
)
from utils.timezone import now_utc, to_utc

logger = logging.getLogger(__name__)

_FINANCIAL_INPUTS = ("line_items", "tax_rate", "discount", "payments")
_DETAIL_FIELDS = ("notes", "terms", "footer")


@dataclass(frozen=True)
class Totals:
    """Every derived monetary figure of an invoice."""

    charges: ChargeBreakdown
    paid_amount: Money
    balance_due: Money
    has_completed_payments: bool


def _validate_tax_rate(tax_rate) -> Decimal:
    rate = parse_decimal(tax_rate, code="INVALID_TAX_RATE")
    if rate < 0 or rate > HUNDRED:
        raise InvoiceValidationError(
            f"Tax rate must be between 0 and 100, got {tax_rate}", code="INVALID_TAX_RATE"
        )
    return rate


def _validate_dates(invoice_date: datetime, due_date: datetime) -> tuple[datetime, datetime]:
    try:
        invoice_date, due_date = to_utc(invoice_date), to_utc(due_date)
    except ValueError as exc:
        raise InvoiceValidationError(str(exc), code="INVALID_DATE")
    if due_date < invoice_date:
        raise InvoiceValidationError(
            "Due date cannot be before invoice date", code="INVALID_DATE"
        )
    return invoice_date, due_date


class InvoiceAggregate:
    """
    One invoice with its line items and payments.

    Args:
        client_id: Client the invoice is addressed to
        invoice_number: Human-facing number, unique per store
        currency: ISO 4217 code, fixed for the invoice's life
        invoice_date: Issue date (timezone-aware)
        due_date: Payment due date (timezone-aware, not before invoice_date)
        items: Initial line items
        tax_rate: Percent, 0-100, applied to the pre-discount subtotal
        discount: Fixed or percentage discount
        overpayment_tolerance_cents: How far payments may exceed the total
    """

    def __init__(
        self,
        *,
        client_id: UUID,
        invoice_number: str,
        currency: str,
        invoice_date: datetime,
        due_date: datetime,
        items: Iterable[LineItemCreate] = (),
        tax_rate=Decimal(0),
        discount: DiscountSpec | None = None,
        notes: str | None = None,
        terms: str | None = None,
        footer: str | None = None,
        overpayment_tolerance_cents: int = 0,
        invoice_id: UUID | None = None,
        now: datetime | None = None,
    ):
        now = now or now_utc()
        if overpayment_tolerance_cents < 0:
            raise InvoiceValidationError(
                "Overpayment tolerance cannot be negative", code="INVALID_AMOUNT"
            )

        self.id = invoice_id or uuid4()
        self.invoice_number = invoice_number
        self.client_id = client_id
        self.currency = normalize_currency(currency)
        self.overpayment_tolerance = Money(overpayment_tolerance_cents, self.currency)
        self.invoice_date, self.due_date = _validate_dates(invoice_date, due_date)

        self.status = InvoiceStatus.DRAFT
        self.line_items: tuple[LineItem, ...] = tuple(self._build_item(i) for i in items)
        self.tax_rate = _validate_tax_rate(tax_rate)
        self.discount = discount or DiscountSpec()
        self.payments: tuple[Payment, ...] = ()
        self.notes = notes
        self.terms = terms
        self.footer = footer

        self.sent_at: datetime | None = None
        self.viewed_at: datetime | None = None
        self.paid_at: datetime | None = None
        self.cancelled_at: datetime | None = None
        self.overdue_notified_at: datetime | None = None
        self.share_id: UUID | None = None
        self.share_enabled = False
        self.created_at = now
        self.updated_at = now

        self._totals = self._derive()
        self.version = 1

    # -------------------------------------------------------------------------
    # Derived figures
    # -------------------------------------------------------------------------

    @property
    def subtotal(self) -> Money:
        return self._totals.charges.subtotal

    @property
    def tax_amount(self) -> Money:
        return self._totals.charges.tax_amount

    @property
    def discount_amount(self) -> Money:
        return self._totals.charges.discount_amount

    @property
    def total_amount(self) -> Money:
        return self._totals.charges.total_amount

    @property
    def paid_amount(self) -> Money:
        return self._totals.paid_amount

    @property
    def balance_due(self) -> Money:
        return self._totals.balance_due

    @property
    def has_completed_payments(self) -> bool:
        return self._totals.has_completed_payments

    @property
    def viewed(self) -> bool:
        return self.viewed_at is not None

    def _derive(self, **overrides) -> Totals:
        """Run the full pipeline for the current inputs with ``overrides`` applied."""
        inputs = {name: overrides.get(name, getattr(self, name)) for name in _FINANCIAL_INPUTS}

        subtotal = aggregate_subtotal(inputs["line_items"], self.currency)
        charges = calculate_charges(subtotal, inputs["tax_rate"], inputs["discount"])
        ledger = PaymentLedger(inputs["payments"], charges.total_amount, self.overpayment_tolerance)

        return Totals(
            charges=charges,
            paid_amount=ledger.paid_amount,
            balance_due=ledger.balance_due,
            has_completed_payments=ledger.has_completed_payments,
        )

    def _ledger(self, payments: Iterable[Payment] | None = None) -> PaymentLedger:
        return PaymentLedger(
            self.payments if payments is None else payments,
            self.total_amount,
            self.overpayment_tolerance,
        )

    def _guard_context(self, totals: Totals | None = None, recipient_email: str | None = None) -> GuardContext:
        totals = totals or self._totals
        return GuardContext(
            line_item_count=len(self.line_items),
            subtotal_cents=totals.charges.subtotal.cents,
            total_amount_cents=totals.charges.total_amount.cents,
            paid_amount_cents=totals.paid_amount.cents,
            has_completed_payments=totals.has_completed_payments,
            viewed=self.viewed,
            recipient_email=recipient_email,
        )

    def _commit(self, totals: Totals, now: datetime | None, **changes) -> None:
        """Apply already-validated changes together with their derived totals."""
        for name, value in changes.items():
            setattr(self, name, value)
        self._totals = totals
        self.version += 1
        self.updated_at = now or now_utc()

    def recompute(self) -> Totals:
        """
        Re-derive every figure from the stored inputs.

        Idempotent: the result only changes if the inputs changed.
        """
        totals = self._derive()
        if totals != self._totals:
            logger.warning(
                "Derived totals for invoice %s drifted from inputs; replaced", self.id
            )
            self._totals = totals
        return totals

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def _build_item(self, data: LineItemCreate, item_id: UUID | None = None) -> LineItem:
        if data.quantity <= 0:
            raise InvoiceValidationError("Quantity must be positive", code="INVALID_QUANTITY")
        if data.rate < 0:
            raise InvoiceValidationError("Rate cannot be negative", code="INVALID_RATE")
        if not data.description or not data.description.strip():
            raise InvoiceValidationError("Description must not be empty", code="INVALID_DESCRIPTION")

        return LineItem(
            id=item_id or uuid4(),
            description=data.description.strip(),
            quantity=data.quantity,
            rate_cents=Money.from_decimal(data.rate, self.currency).cents,
        )

    def _edit(self, now: datetime | None, **changes) -> None:
        """Commit an edit of line items, charges, dates or details."""
        ensure_editable(self.status, self.viewed, bool(self.payments))

        totals = self._derive(**{k: v for k, v in changes.items() if k in _FINANCIAL_INPUTS})

        if self.status != InvoiceStatus.DRAFT:
            line_items = changes.get("line_items", self.line_items)
            if not line_items or not totals.charges.subtotal.is_positive:
                raise InvariantViolation(
                    "A sent invoice must keep at least one line item and a positive subtotal",
                    code="EMPTY_FINALIZED_INVOICE",
                )

        if "due_date" in changes and changes["due_date"] != self.due_date:
            changes["overdue_notified_at"] = None

        self._commit(totals, now, **changes)

    def _find_item(self, item_id: UUID) -> int:
        for index, item in enumerate(self.line_items):
            if item.id == item_id:
                return index
        raise NotFound(f"Line item {item_id} not found on invoice {self.id}")

    def add_line_item(self, data: LineItemCreate, now: datetime | None = None) -> LineItem:
        """Append a line item. Returns the stored item."""
        ensure_editable(self.status, self.viewed, bool(self.payments))
        item = self._build_item(data)
        self._edit(now, line_items=self.line_items + (item,))
        return item

    def update_line_item(self, item_id: UUID, data: LineItemUpdate, now: datetime | None = None) -> LineItem:
        """Change description, quantity or rate of one item in place (order kept)."""
        ensure_editable(self.status, self.viewed, bool(self.payments))
        index = self._find_item(item_id)
        current = self.line_items[index]

        merged = LineItemCreate(
            description=data.description if data.description is not None else current.description,
            quantity=data.quantity if data.quantity is not None else current.quantity,
            rate=data.rate if data.rate is not None else Money(current.rate_cents, self.currency).amount,
        )
        item = self._build_item(merged, item_id=current.id)

        items = list(self.line_items)
        items[index] = item
        self._edit(now, line_items=tuple(items))
        return item

    def remove_line_item(self, item_id: UUID, now: datetime | None = None) -> None:
        ensure_editable(self.status, self.viewed, bool(self.payments))
        index = self._find_item(item_id)
        self._edit(now, line_items=self.line_items[:index] + self.line_items[index + 1:])

    def set_tax_rate(self, tax_rate, now: datetime | None = None) -> None:
        self._edit(now, tax_rate=_validate_tax_rate(tax_rate))

    def set_discount(self, discount: DiscountSpec, now: datetime | None = None) -> None:
        if discount.value < 0:
            raise InvoiceValidationError("Discount cannot be negative", code="INVALID_DISCOUNT")
        self._edit(now, discount=discount)

    def set_details(self, now: datetime | None = None, **details) -> None:
        """Change notes, terms or footer. Same lock rule as financial edits."""
        unknown = set(details) - set(_DETAIL_FIELDS)
        if unknown:
            raise InvoiceValidationError(
                f"Unknown invoice detail(s): {', '.join(sorted(unknown))}", code="INVALID_FIELD"
            )
        self._edit(now, **details)

    def extend_due_date(self, due_date: datetime, now: datetime | None = None) -> None:
        """
        Correct the due date of an invoice that is otherwise locked.

        Allowed until the invoice is PAID or CANCELLED, since it changes no
        financial figure. Moving the date forward lifts an OVERDUE projection.
        """
        if self.status in TERMINAL_STATUSES:
            raise InvariantViolation(
                f"Cannot change due date of a {self.status.value} invoice",
                code="INVOICE_LOCKED",
            )
        _, due_date = _validate_dates(self.invoice_date, due_date)
        self._commit(self._totals, now, due_date=due_date, overdue_notified_at=None)

    def update(self, data: InvoiceUpdate, now: datetime | None = None) -> bool:
        """
        Apply an InvoiceUpdate as one atomic edit.

        Returns:
            True if anything changed, False for an empty update
        """
        provided = data.model_fields_set
        changes = {}

        if "items" in provided and data.items is not None:
            ensure_editable(self.status, self.viewed, bool(self.payments))
            changes["line_items"] = tuple(self._build_item(i) for i in data.items)
        if "tax_rate" in provided and data.tax_rate is not None:
            changes["tax_rate"] = _validate_tax_rate(data.tax_rate)
        if "discount" in provided and data.discount is not None:
            changes["discount"] = data.discount
        if {"invoice_date", "due_date"} & provided:
            invoice_date, due_date = _validate_dates(
                data.invoice_date or self.invoice_date, data.due_date or self.due_date
            )
            changes["invoice_date"] = invoice_date
            changes["due_date"] = due_date
        for name in _DETAIL_FIELDS:
            if name in provided:
                changes[name] = getattr(data, name)

        if not changes:
            return False

        self._edit(now, **changes)
        return True

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def send(self, recipient_email: str | None, now: datetime | None = None) -> None:
        """DRAFT -> SENT. Needs line items, a positive subtotal and a recipient."""
        now = now or now_utc()
        new_status = transition(
            self.status, LifecycleEvent.SEND, self._guard_context(recipient_email=recipient_email)
        )
        self._commit(self._totals, now, status=new_status, sent_at=now)

    def record_view(self, now: datetime | None = None) -> bool:
        """
        Register that the recipient opened the invoice.

        Returns:
            True if this view moved the invoice from SENT to VIEWED
        """
        now = now or now_utc()
        new_status = transition(self.status, LifecycleEvent.VIEW, self._guard_context())
        changed = new_status != self.status
        self._commit(self._totals, now, status=new_status, viewed_at=now)
        return changed

    def _settlement(self, event: LifecycleEvent, totals: Totals, now: datetime) -> dict:
        new_status = transition(self.status, event, self._guard_context(totals))
        changes = {"status": new_status}
        if new_status == InvoiceStatus.PAID:
            if self.status != InvoiceStatus.PAID:
                changes["paid_at"] = now
        else:
            changes["paid_at"] = None
        return changes

    def record_payment(self, data: PaymentCreate, payment_number: str, now: datetime | None = None) -> Payment:
        """
        Append a payment.

        COMPLETED payments settle immediately (PARTIALLY_PAID or PAID).
        PENDING/PROCESSING payments are held until their status is updated.
        FAILED payments are kept for the record and change nothing.

        Raises:
            TransitionRefused: Invoice is DRAFT or CANCELLED
            InvariantViolation: Payment would exceed the balance due
        """
        now = now or now_utc()
        check_transition(self.status, LifecycleEvent.SETTLE)

        amount = Money.from_decimal(data.amount, self.currency)
        if data.status == PaymentStatus.FAILED:
            if not amount.is_positive:
                raise InvoiceValidationError(
                    "Payment amount must be greater than zero", code="INVALID_AMOUNT"
                )
        else:
            self._ledger().check_can_record(amount)

        payment = Payment(
            id=uuid4(),
            payment_number=payment_number,
            amount_cents=amount.cents,
            method=data.method,
            status=data.status,
            payment_date=data.payment_date or now,
            external_reference=data.external_reference,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )

        payments = self.payments + (payment,)
        totals = self._derive(payments=payments)
        changes = {"payments": payments}
        if payment.status == PaymentStatus.COMPLETED:
            changes.update(self._settlement(LifecycleEvent.SETTLE, totals, now))

        self._commit(totals, now, **changes)
        return payment

    def find_payment(self, payment_id: UUID) -> Payment:
        for payment in self.payments:
            if payment.id == payment_id:
                return payment
        raise NotFound(f"Payment {payment_id} not found on invoice {self.id}")

    def update_payment_status(
        self,
        payment_id: UUID,
        status: PaymentStatus,
        now: datetime | None = None,
    ) -> Payment:
        """
        Move a payment through its own lifecycle.

        PENDING/PROCESSING -> COMPLETED settles the invoice (re-checking the
        overpayment rule); COMPLETED -> REFUNDED refunds whatever is left of
        the payment and reopens the balance.
        """
        if status == PaymentStatus.REFUNDED:
            return self.refund_payment(payment_id, now)

        now = now or now_utc()
        current = self.find_payment(payment_id)
        check_payment_transition(current.status, status)

        if status == PaymentStatus.COMPLETED:
            check_transition(self.status, LifecycleEvent.SETTLE)
            others = [p for p in self.payments if p.id != payment_id]
            self._ledger(others).check_can_record(Money(current.amount_cents, self.currency))

        updated = current.model_copy(update={"status": status, "updated_at": now})
        payments = tuple(updated if p.id == payment_id else p for p in self.payments)
        totals = self._derive(payments=payments)

        changes = {"payments": payments}
        if status == PaymentStatus.COMPLETED:
            changes.update(self._settlement(LifecycleEvent.SETTLE, totals, now))

        self._commit(totals, now, **changes)
        return updated

    def refund_payment(self, payment_id: UUID, now: datetime | None = None, amount=None) -> Payment:
        """
        Refund all or part of a COMPLETED payment.

        Args:
            payment_id: Payment to refund
            now: Time of the refund
            amount: Major-unit amount; None refunds what is left of the payment

        A partial refund keeps the payment COMPLETED with a lower net amount.
        Once nothing is left it becomes REFUNDED.

        Raises:
            InvariantViolation: Payment is not COMPLETED, or the amount is
                larger than what is left to refund
        """
        now = now or now_utc()
        current = self.find_payment(payment_id)
        check_payment_transition(current.status, PaymentStatus.REFUNDED)

        refundable = Money(current.net_amount_cents, self.currency)
        refund = refundable if amount is None else Money.from_decimal(amount, self.currency)
        if not refund.is_positive:
            raise InvoiceValidationError(
                "Refund amount must be greater than zero", code="INVALID_AMOUNT"
            )
        if refund.cents > refundable.cents:
            raise InvariantViolation(
                f"Refund of {refund} {self.currency} exceeds the {refundable} {self.currency} "
                f"left on payment {current.payment_number}",
                code="REFUND_EXCEEDS_PAYMENT",
            )

        refunded_cents = current.refunded_amount_cents + refund.cents
        updated = current.model_copy(update={
            "status": PaymentStatus.REFUNDED if refunded_cents == current.amount_cents else PaymentStatus.COMPLETED,
            "refunded_amount_cents": refunded_cents,
            "updated_at": now,
        })
        payments = tuple(updated if p.id == payment_id else p for p in self.payments)
        totals = self._derive(payments=payments)

        changes = {"payments": payments}
        changes.update(self._settlement(LifecycleEvent.REFUND, totals, now))
        self._commit(totals, now, **changes)
        return updated

    def cancel(self, now: datetime | None = None) -> None:
        """
        Cancel the invoice. Refused once PAID or while any payment is COMPLETED.

        Payments still in flight are cancelled along with it.
        """
        now = now or now_utc()
        new_status = transition(self.status, LifecycleEvent.CANCEL, self._guard_context())

        in_flight = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)
        payments = tuple(
            p.model_copy(update={"status": PaymentStatus.CANCELLED, "updated_at": now})
            if p.status in in_flight else p
            for p in self.payments
        )
        totals = self._derive(payments=payments)
        self._commit(totals, now, status=new_status, cancelled_at=now, payments=payments)

    def ensure_deletable(self) -> None:
        if self.has_completed_payments:
            raise InvariantViolation(
                "Cannot delete an invoice with recorded payments",
                code="INVOICE_HAS_PAYMENTS",
            )

    def update_share(
        self,
        enable: bool | None = None,
        regenerate: bool = False,
        now: datetime | None = None,
    ) -> bool:
        """
        Turn the public share link on or off, or replace it.

        Enabling for the first time creates the link id. Disabling keeps the
        id so re-enabling restores the same link; ``regenerate`` retires it.
        Figures are untouched, so this works in any status.

        Returns:
            True if the link changed
        """
        share_id, share_enabled = self.share_id, self.share_enabled
        if enable is not None:
            share_enabled = enable
        if regenerate or (share_enabled and share_id is None):
            share_id = uuid4()

        if (share_id, share_enabled) == (self.share_id, self.share_enabled):
            return False
        self._commit(self._totals, now, share_id=share_id, share_enabled=share_enabled)
        return True

    def mark_overdue_notified(self, now: datetime | None = None) -> None:
        self._commit(self._totals, now, overdue_notified_at=now or now_utc())

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def effective_status(self, now: datetime | None = None) -> InvoiceStatus:
        """Stored status with the OVERDUE projection for ``now``."""
        return project_status(
            self.status, self.balance_due.cents, self.due_date, now or now_utc()
        )

    def snapshot(self, now: datetime | None = None) -> Invoice:
        totals = self._totals
        return Invoice(
            id=self.id,
            invoice_number=self.invoice_number,
            client_id=self.client_id,
            currency=self.currency,
            status=self.effective_status(now),
            invoice_date=self.invoice_date,
            due_date=self.due_date,
            line_items=list(self.line_items),
            tax_rate=self.tax_rate,
            discount=self.discount,
            payments=list(self.payments),
            subtotal_cents=totals.charges.subtotal.cents,
            tax_amount_cents=totals.charges.tax_amount.cents,
            discount_amount_cents=totals.charges.discount_amount.cents,
            total_amount_cents=totals.charges.total_amount.cents,
            paid_amount_cents=totals.paid_amount.cents,
            balance_due_cents=totals.balance_due.cents,
            notes=self.notes,
            terms=self.terms,
            footer=self.footer,
            sent_at=self.sent_at,
            viewed_at=self.viewed_at,
            paid_at=self.paid_at,
            cancelled_at=self.cancelled_at,
            share_id=self.share_id,
            share_enabled=self.share_enabled,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    def duplicate(self, invoice_number: str, now: datetime | None = None) -> "InvoiceAggregate":
        """New DRAFT with the same items and charges, dated ``now`` with the same payment term."""
        now = now or now_utc()
        term = self.due_date - self.invoice_date
        items = [
            LineItemCreate(
                description=item.description,
                quantity=item.quantity,
                rate=Money(item.rate_cents, self.currency).amount,
            )
            for item in self.line_items
        ]
        return InvoiceAggregate(
            client_id=self.client_id,
            invoice_number=invoice_number,
            currency=self.currency,
            invoice_date=now,
            due_date=now + term,
            items=items,
            tax_rate=self.tax_rate,
            discount=self.discount,
            notes=self.notes,
            terms=self.terms,
            footer=self.footer,
            overpayment_tolerance_cents=self.overpayment_tolerance.cents,
            now=now,
        )

    def copy(self) -> "InvoiceAggregate":
        return copy.deepcopy(self)
