"""Payment domain models.

Amounts are stored in minor units (cents). Only COMPLETED payments count
toward an invoice's paid amount.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from utils.timezone import to_utc


class PaymentMethod(str, Enum):
    """How the payment was made."""

    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    PAYPAL = "PAYPAL"
    STRIPE = "STRIPE"
    CHECK = "CHECK"
    OTHER = "OTHER"


class PaymentStatus(str, Enum):
    """Payment processing status."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


# Statuses a payment may be recorded with. REFUNDED and CANCELLED are
# only reachable through a status transition on an existing payment.
RECORDABLE_STATUSES = frozenset({
    PaymentStatus.PENDING,
    PaymentStatus.PROCESSING,
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
})


class PaymentCreate(BaseModel):
    """Data required to record a payment against an invoice."""

    amount: Decimal = Field(..., gt=0)  # Major units
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.COMPLETED
    payment_date: datetime | None = None
    external_reference: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=2000)

    @field_validator("status")
    @classmethod
    def status_must_be_recordable(cls, value: PaymentStatus) -> PaymentStatus:
        if value not in RECORDABLE_STATUSES:
            raise ValueError(f"payments cannot be recorded as {value.value}")
        return value

    @field_validator("payment_date")
    @classmethod
    def payment_date_utc(cls, value: datetime | None) -> datetime | None:
        return to_utc(value) if value is not None else None


class Payment(BaseModel):
    """
    Payment as owned by its invoice.

    ``refunded_amount_cents`` grows with each partial refund; the payment
    stays COMPLETED until all of it has been refunded.
    """

    id: UUID
    payment_number: str
    amount_cents: int = Field(..., gt=0)
    refunded_amount_cents: int = Field(0, ge=0)
    method: PaymentMethod
    status: PaymentStatus
    payment_date: datetime
    external_reference: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"frozen": True}

    @property
    def net_amount_cents(self) -> int:
        """Amount still held after refunds."""
        return self.amount_cents - self.refunded_amount_cents


class PaymentStatistics(BaseModel):
    """Payment-level figures across all invoices, money sums per currency."""

    received_cents: dict[str, int] = Field(default_factory=dict)
    received_this_month_cents: dict[str, int] = Field(default_factory=dict)
    refunded_cents: dict[str, int] = Field(default_factory=dict)
    pending: int = 0
    failed: int = 0
