"""Tests for the invoice aggregate."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from core.exceptions import (
    InvariantViolation,
    InvoiceValidationError,
    NotFound,
    TransitionRefused,
)
from core.invoice import InvoiceAggregate
from core.models import (
    DiscountSpec,
    DiscountType,
    InvoiceStatus,
    InvoiceUpdate,
    LineItemCreate,
    LineItemUpdate,
    PaymentCreate,
    PaymentMethod,
    PaymentStatus,
)

T0 = datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)
EMAIL = "billing@acme.test"


def _item(description="Consulting", quantity="1", rate="100.00") -> LineItemCreate:
    return LineItemCreate(description=description, quantity=Decimal(quantity), rate=Decimal(rate))


def _pay(amount: str, status=PaymentStatus.COMPLETED) -> PaymentCreate:
    return PaymentCreate(amount=Decimal(amount), method=PaymentMethod.BANK_TRANSFER, status=status)


@pytest.fixture
def draft():
    return InvoiceAggregate(
        client_id=uuid4(),
        invoice_number="INV-00001",
        currency="usd",
        invoice_date=T0,
        due_date=T0 + timedelta(days=30),
        items=[_item()],
        now=T0,
    )


@pytest.fixture
def sent(draft):
    draft.send(EMAIL, T0)
    return draft


class TestCreation:

    def test_starts_as_draft_at_version_1(self, draft):
        assert draft.status == InvoiceStatus.DRAFT
        assert draft.version == 1
        assert draft.currency == "USD"
        assert draft.payments == ()

    def test_derives_on_creation(self, draft):
        assert draft.subtotal.cents == 10000
        assert draft.total_amount.cents == 10000
        assert draft.balance_due.cents == 10000

    def test_empty_draft_allowed(self):
        invoice = InvoiceAggregate(
            client_id=uuid4(), invoice_number="INV-00002", currency="USD",
            invoice_date=T0, due_date=T0,
        )

        assert invoice.subtotal.is_zero

    def test_due_before_invoice_date_rejected(self):
        with pytest.raises(InvoiceValidationError):
            InvoiceAggregate(
                client_id=uuid4(), invoice_number="INV-00003", currency="USD",
                invoice_date=T0, due_date=T0 - timedelta(days=1),
            )

    def test_naive_dates_rejected(self):
        with pytest.raises(InvoiceValidationError):
            InvoiceAggregate(
                client_id=uuid4(), invoice_number="INV-00004", currency="USD",
                invoice_date=datetime(2026, 1, 1), due_date=datetime(2026, 2, 1),
            )

    def test_rate_precision_checked_against_currency(self):
        with pytest.raises(InvoiceValidationError):
            InvoiceAggregate(
                client_id=uuid4(), invoice_number="INV-00005", currency="JPY",
                invoice_date=T0, due_date=T0, items=[_item(rate="10.50")],
            )


class TestWorkedExample:

    def test_125_50_with_tax_and_discount(self):
        """2 x 50.00 + 1 x 25.50, 10% tax, 10.00 off -> 128.05."""
        invoice = InvoiceAggregate(
            client_id=uuid4(), invoice_number="INV-00010", currency="USD",
            invoice_date=T0, due_date=T0 + timedelta(days=14),
            items=[_item("Design", "2", "50.00"), _item("Hosting", "1", "25.50")],
            tax_rate=Decimal("10"),
            discount=DiscountSpec(type=DiscountType.FIXED, value=Decimal("10.00")),
        )

        assert invoice.subtotal.cents == 12550
        assert invoice.tax_amount.cents == 1255
        assert invoice.discount_amount.cents == 1000
        assert invoice.total_amount.cents == 12805


class TestEditing:

    def test_add_line_item_rederives(self, draft):
        draft.add_line_item(_item("Extra", "2", "25.00"), T0)

        assert draft.subtotal.cents == 15000
        assert draft.version == 2

    def test_update_line_item_keeps_order(self, draft):
        draft.add_line_item(_item("Second", "1", "10.00"), T0)
        first = draft.line_items[0]

        draft.update_line_item(first.id, LineItemUpdate(quantity=Decimal("3")), T0)

        assert draft.line_items[0].id == first.id
        assert draft.line_items[0].quantity == Decimal("3")
        assert draft.subtotal.cents == 31000

    def test_remove_line_item(self, draft):
        draft.remove_line_item(draft.line_items[0].id, T0)

        assert draft.line_items == ()
        assert draft.subtotal.is_zero

    def test_remove_unknown_item(self, draft):
        with pytest.raises(NotFound):
            draft.remove_line_item(uuid4(), T0)

    def test_set_tax_and_discount(self, draft):
        draft.set_tax_rate(Decimal("8.25"), T0)
        draft.set_discount(DiscountSpec(type=DiscountType.PERCENTAGE, value=Decimal("10")), T0)

        assert draft.tax_amount.cents == 825
        assert draft.discount_amount.cents == 1000
        assert draft.total_amount.cents == 9825

    @pytest.mark.parametrize("rate", ["-1", "100.01", "abc", "NaN"])
    def test_tax_rate_bounds(self, draft, rate):
        with pytest.raises(InvoiceValidationError):
            draft.set_tax_rate(rate, T0)

    def test_non_numeric_tax_rate_leaves_invoice_untouched(self, draft):
        with pytest.raises(InvoiceValidationError) as exc_info:
            draft.set_tax_rate("abc", T0)

        assert exc_info.value.code == "INVALID_TAX_RATE"
        assert draft.tax_rate == Decimal(0)
        assert draft.version == 1

    def test_sent_invoice_editable_before_view(self, sent):
        sent.set_tax_rate(Decimal("5"), T0)

        assert sent.total_amount.cents == 10500

    def test_sent_invoice_cannot_lose_all_items(self, sent):
        with pytest.raises(InvariantViolation) as exc_info:
            sent.remove_line_item(sent.line_items[0].id, T0)

        assert exc_info.value.code == "EMPTY_FINALIZED_INVOICE"
        assert len(sent.line_items) == 1

    def test_viewed_invoice_locked(self, sent):
        sent.record_view(T0)

        with pytest.raises(InvariantViolation) as exc_info:
            sent.add_line_item(_item(), T0)

        assert exc_info.value.code == "INVOICE_LOCKED"

    def test_update_applies_all_fields_atomically(self, draft):
        draft.update(InvoiceUpdate(
            items=[_item("A", "1", "40.00"), _item("B", "1", "60.00")],
            tax_rate=Decimal("10"),
            notes="Thanks",
        ), T0)

        assert [i.description for i in draft.line_items] == ["A", "B"]
        assert draft.total_amount.cents == 11000
        assert draft.notes == "Thanks"
        assert draft.version == 2

    def test_failed_update_changes_nothing(self, draft):
        before = (draft.line_items, draft.tax_rate, draft.version, draft.total_amount)

        with pytest.raises(InvoiceValidationError):
            draft.update(InvoiceUpdate(
                items=[_item("A", "1", "40.00")],
                due_date=T0 - timedelta(days=1),
            ), T0)

        assert (draft.line_items, draft.tax_rate, draft.version, draft.total_amount) == before

    def test_set_details(self, draft):
        draft.set_details(T0, terms="Net 15", footer="Thank you")

        assert draft.terms == "Net 15"
        assert draft.footer == "Thank you"
        assert draft.total_amount.cents == 10000

    def test_set_details_rejects_financial_fields(self, draft):
        with pytest.raises(InvoiceValidationError):
            draft.set_details(T0, tax_rate=Decimal("50"))

        assert draft.tax_rate == Decimal(0)

    def test_empty_update_is_noop(self, draft):
        assert draft.update(InvoiceUpdate(), T0) is False
        assert draft.version == 1


class TestLifecycle:

    def test_send(self, draft):
        draft.send(EMAIL, T0)

        assert draft.status == InvoiceStatus.SENT
        assert draft.sent_at == T0

    def test_send_empty_refused(self):
        invoice = InvoiceAggregate(
            client_id=uuid4(), invoice_number="INV-00020", currency="USD",
            invoice_date=T0, due_date=T0,
        )

        with pytest.raises(TransitionRefused) as exc_info:
            invoice.send(EMAIL, T0)

        assert "zero line items" in exc_info.value.message
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.version == 1

    def test_first_view_changes_status(self, sent):
        assert sent.record_view(T0) is True
        assert sent.status == InvoiceStatus.VIEWED
        assert sent.record_view(T0 + timedelta(hours=1)) is False
        assert sent.viewed_at == T0 + timedelta(hours=1)

    def test_view_draft_refused(self, draft):
        with pytest.raises(TransitionRefused):
            draft.record_view(T0)


class TestPayments:

    def test_forty_sixty_then_overpayment(self, sent):
        """40 -> PARTIALLY_PAID, 60 -> PAID, 1 more -> refused."""
        sent.record_payment(_pay("40"), "PMT-000001", T0)
        assert sent.status == InvoiceStatus.PARTIALLY_PAID
        assert sent.balance_due.cents == 6000

        sent.record_payment(_pay("60"), "PMT-000002", T0)
        assert sent.status == InvoiceStatus.PAID
        assert sent.balance_due.cents == 0
        assert sent.paid_at == T0

        version = sent.version
        with pytest.raises(InvariantViolation) as exc_info:
            sent.record_payment(_pay("1"), "PMT-000003", T0)

        assert exc_info.value.code == "OVERPAYMENT"
        assert len(sent.payments) == 2
        assert sent.version == version

    def test_payment_on_draft_refused(self, draft):
        with pytest.raises(TransitionRefused):
            draft.record_payment(_pay("10"), "PMT-000001", T0)

    def test_pending_payment_does_not_settle(self, sent):
        sent.record_payment(_pay("100", PaymentStatus.PENDING), "PMT-000001", T0)

        assert sent.status == InvoiceStatus.SENT
        assert sent.paid_amount.is_zero

    def test_pending_then_completed(self, sent):
        payment = sent.record_payment(_pay("100", PaymentStatus.PENDING), "PMT-000001", T0)

        sent.update_payment_status(payment.id, PaymentStatus.COMPLETED, T0)

        assert sent.status == InvoiceStatus.PAID
        assert sent.find_payment(payment.id).status == PaymentStatus.COMPLETED

    def test_completing_pending_rechecks_overpayment(self, sent):
        pending = sent.record_payment(_pay("50", PaymentStatus.PENDING), "PMT-000001", T0)
        sent.record_payment(_pay("100"), "PMT-000002", T0)

        with pytest.raises(InvariantViolation):
            sent.update_payment_status(pending.id, PaymentStatus.COMPLETED, T0)

    def test_failed_payment_recorded_without_effect(self, sent):
        sent.record_payment(_pay("500", PaymentStatus.FAILED), "PMT-000001", T0)

        assert len(sent.payments) == 1
        assert sent.status == InvoiceStatus.SENT
        assert sent.balance_due.cents == 10000

    def test_excess_precision_rejected(self, sent):
        with pytest.raises(InvoiceValidationError):
            sent.record_payment(_pay("10.005"), "PMT-000001", T0)

    def test_refund_reopens_balance(self, sent):
        sent.record_view(T0)
        payment = sent.record_payment(_pay("100"), "PMT-000001", T0)

        sent.refund_payment(payment.id, T0)

        assert sent.status == InvoiceStatus.VIEWED
        assert sent.balance_due.cents == 10000
        assert sent.paid_at is None

    def test_refunding_one_of_two_payments(self, sent):
        first = sent.record_payment(_pay("30"), "PMT-000001", T0)
        sent.record_payment(_pay("70"), "PMT-000002", T0)

        sent.refund_payment(first.id, T0)

        assert sent.status == InvoiceStatus.PARTIALLY_PAID
        assert sent.paid_amount.cents == 7000

    def test_refund_twice_refused(self, sent):
        payment = sent.record_payment(_pay("100"), "PMT-000001", T0)
        sent.refund_payment(payment.id, T0)

        with pytest.raises(InvariantViolation):
            sent.refund_payment(payment.id, T0)

    def test_partial_refund_reopens_only_the_refunded_part(self, sent):
        payment = sent.record_payment(_pay("100"), "PMT-000001", T0)

        refunded = sent.refund_payment(payment.id, T0, amount=Decimal("25.00"))

        assert refunded.status == PaymentStatus.COMPLETED
        assert refunded.refunded_amount_cents == 2500
        assert refunded.net_amount_cents == 7500
        assert sent.paid_amount.cents == 7500
        assert sent.balance_due.cents == 2500
        assert sent.status == InvoiceStatus.PARTIALLY_PAID
        assert sent.paid_at is None

    def test_partial_refunds_add_up_to_a_full_refund(self, sent):
        payment = sent.record_payment(_pay("100"), "PMT-000001", T0)
        sent.refund_payment(payment.id, T0, amount="60")

        remainder = sent.refund_payment(payment.id, T0)

        assert remainder.status == PaymentStatus.REFUNDED
        assert remainder.refunded_amount_cents == 10000
        assert sent.status == InvoiceStatus.SENT
        assert sent.balance_due.cents == 10000

    def test_refund_above_what_is_left_refused(self, sent):
        payment = sent.record_payment(_pay("100"), "PMT-000001", T0)
        sent.refund_payment(payment.id, T0, amount="60")
        version = sent.version

        with pytest.raises(InvariantViolation) as exc_info:
            sent.refund_payment(payment.id, T0, amount="40.01")

        assert exc_info.value.code == "REFUND_EXCEEDS_PAYMENT"
        assert sent.version == version
        assert sent.paid_amount.cents == 4000

    @pytest.mark.parametrize("amount", ["0", "-5", "10.001"])
    def test_refund_amount_validated(self, sent, amount):
        payment = sent.record_payment(_pay("100"), "PMT-000001", T0)

        with pytest.raises(InvoiceValidationError):
            sent.refund_payment(payment.id, T0, amount=amount)

    def test_pay_again_after_partial_refund(self, sent):
        payment = sent.record_payment(_pay("100"), "PMT-000001", T0)
        sent.refund_payment(payment.id, T0, amount="30")

        sent.record_payment(_pay("30"), "PMT-000002", T0)

        assert sent.status == InvoiceStatus.PAID
        with pytest.raises(InvariantViolation):
            sent.record_payment(_pay("0.01"), "PMT-000003", T0)

    def test_pending_payment_cannot_be_refunded(self, sent):
        payment = sent.record_payment(_pay("50", PaymentStatus.PENDING), "PMT-000001", T0)

        with pytest.raises(InvariantViolation) as exc_info:
            sent.refund_payment(payment.id, T0, amount="10")

        assert exc_info.value.code == "INVALID_PAYMENT_TRANSITION"

    def test_refunded_status_update_refunds_the_remainder(self, sent):
        payment = sent.record_payment(_pay("100"), "PMT-000001", T0)
        sent.refund_payment(payment.id, T0, amount="40")

        updated = sent.update_payment_status(payment.id, PaymentStatus.REFUNDED, T0)

        assert updated.refunded_amount_cents == 10000
        assert sent.paid_amount.is_zero

    def test_unknown_payment(self, sent):
        with pytest.raises(NotFound):
            sent.update_payment_status(uuid4(), PaymentStatus.COMPLETED, T0)


class TestCancel:

    def test_cancel_sent(self, sent):
        sent.cancel(T0)

        assert sent.status == InvoiceStatus.CANCELLED
        assert sent.cancelled_at == T0

    def test_cancel_with_completed_payment_refused(self, sent):
        sent.record_payment(_pay("10"), "PMT-000001", T0)

        with pytest.raises(TransitionRefused):
            sent.cancel(T0)
        assert sent.status == InvoiceStatus.PARTIALLY_PAID

    def test_cancel_cancels_pending_payments(self, sent):
        pending = sent.record_payment(_pay("10", PaymentStatus.PENDING), "PMT-000001", T0)

        sent.cancel(T0)

        assert sent.find_payment(pending.id).status == PaymentStatus.CANCELLED

    def test_payment_after_cancel_refused(self, sent):
        sent.cancel(T0)

        with pytest.raises(TransitionRefused):
            sent.record_payment(_pay("10"), "PMT-000001", T0)


class TestOverdue:

    def test_projected_not_stored(self, sent):
        late = sent.due_date + timedelta(days=1)

        assert sent.effective_status(late) == InvoiceStatus.OVERDUE
        assert sent.status == InvoiceStatus.SENT
        assert sent.snapshot(late).status == InvoiceStatus.OVERDUE

    def test_full_payment_lifts_overdue(self, sent):
        late = sent.due_date + timedelta(days=1)
        sent.record_payment(_pay("100"), "PMT-000001", late)

        assert sent.effective_status(late) == InvoiceStatus.PAID

    def test_extend_due_date_lifts_overdue(self, sent):
        sent.record_view(T0)
        late = sent.due_date + timedelta(days=1)
        sent.mark_overdue_notified(late)

        sent.extend_due_date(late + timedelta(days=14), late)

        assert sent.effective_status(late) == InvoiceStatus.VIEWED
        assert sent.overdue_notified_at is None

    def test_extend_due_date_refused_when_paid(self, sent):
        sent.record_payment(_pay("100"), "PMT-000001", T0)

        with pytest.raises(InvariantViolation):
            sent.extend_due_date(T0 + timedelta(days=60), T0)


class TestMisc:

    def test_recompute_is_idempotent(self, sent):
        sent.record_payment(_pay("40"), "PMT-000001", T0)
        first = sent.recompute()

        assert sent.recompute() == first
        assert first.balance_due.cents == 6000

    def test_ensure_deletable(self, sent):
        sent.ensure_deletable()
        sent.record_payment(_pay("40"), "PMT-000001", T0)

        with pytest.raises(InvariantViolation) as exc_info:
            sent.ensure_deletable()

        assert exc_info.value.code == "INVOICE_HAS_PAYMENTS"

    def test_duplicate_keeps_term_length(self, sent):
        later = T0 + timedelta(days=90)

        copy = sent.duplicate("INV-00099", later)

        assert copy.status == InvoiceStatus.DRAFT
        assert copy.invoice_date == later
        assert copy.due_date - copy.invoice_date == timedelta(days=30)
        assert copy.total_amount == sent.total_amount
        assert copy.line_items[0].id != sent.line_items[0].id
        assert copy.payments == ()

    def test_copy_is_independent(self, draft):
        clone = draft.copy()
        clone.add_line_item(_item(), T0)

        assert len(draft.line_items) == 1
        assert draft.version == 1


class TestShareLink:

    def test_enable_creates_link(self, draft):
        assert draft.update_share(enable=True, now=T0)

        assert draft.share_enabled
        assert draft.share_id is not None
        assert draft.version == 2

    def test_disable_keeps_link_for_reenable(self, draft):
        draft.update_share(enable=True, now=T0)
        share_id = draft.share_id

        draft.update_share(enable=False, now=T0)
        assert not draft.share_enabled

        draft.update_share(enable=True, now=T0)
        assert draft.share_id == share_id

    def test_regenerate_replaces_link(self, draft):
        draft.update_share(enable=True, now=T0)
        old = draft.share_id

        draft.update_share(regenerate=True, now=T0)

        assert draft.share_id != old
        assert draft.share_enabled

    def test_no_change_is_not_committed(self, draft):
        draft.update_share(enable=True, now=T0)

        assert not draft.update_share(enable=True, now=T0)
        assert draft.version == 2

    def test_allowed_on_locked_invoice(self, sent):
        sent.record_payment(_pay("100"), "PMT-000001", T0)

        sent.update_share(enable=True, now=T0)

        assert sent.snapshot(T0).share_enabled
