"""
Payment ledger for a single invoice.

Only COMPLETED payments count toward the paid amount, net of any partial
refunds. A payment that moves to REFUNDED stops counting from that moment.
"""

from typing import Iterable

from core.exceptions import InvariantViolation, InvoiceValidationError
from core.models import Payment, PaymentStatus
from core.money import Money

# Allowed payment status transitions. COMPLETED is final except for a refund.
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
}


def check_payment_transition(current: PaymentStatus, new: PaymentStatus) -> None:
    """Raise InvariantViolation unless current -> new is a legal payment transition."""
    if new not in PAYMENT_TRANSITIONS[current]:
        raise InvariantViolation(
            f"Payment cannot move from {current.value} to {new.value}",
            code="INVALID_PAYMENT_TRANSITION",
        )


class PaymentLedger:
    """
    Paid amount and balance due of one invoice.

    Args:
        payments: All payments on the invoice, any status
        total_amount: Invoice total the payments settle
        overpayment_tolerance: How far paid may exceed total (default none)
    """

    def __init__(
        self,
        payments: Iterable[Payment],
        total_amount: Money,
        overpayment_tolerance: Money | None = None,
    ):
        self.payments = tuple(payments)
        self.total_amount = total_amount
        self.overpayment_tolerance = overpayment_tolerance or Money.zero(total_amount.currency)

    @property
    def currency(self) -> str:
        return self.total_amount.currency

    @property
    def completed(self) -> tuple[Payment, ...]:
        return tuple(p for p in self.payments if p.status == PaymentStatus.COMPLETED)

    @property
    def has_completed_payments(self) -> bool:
        return bool(self.completed)

    @property
    def paid_amount(self) -> Money:
        paid = Money.zero(self.currency)
        for payment in self.completed:
            paid = paid + Money(payment.net_amount_cents, self.currency)
        return paid

    @property
    def balance_due(self) -> Money:
        """max(0, total - paid)."""
        return (self.total_amount - self.paid_amount).clamp_non_negative()

    def check_can_record(self, amount: Money) -> None:
        """
        Validate that ``amount`` may be applied to this invoice.

        Raises:
            InvoiceValidationError: amount is not positive
            InvariantViolation: paid would exceed total beyond the tolerance
        """
        if not amount.is_positive:
            raise InvoiceValidationError(
                "Payment amount must be greater than zero", code="INVALID_AMOUNT"
            )

        ceiling = self.total_amount + self.overpayment_tolerance
        if self.paid_amount + amount > ceiling:
            raise InvariantViolation(
                f"Payment of {amount} {self.currency} exceeds balance due "
                f"of {self.balance_due} {self.currency}",
                code="OVERPAYMENT",
            )
