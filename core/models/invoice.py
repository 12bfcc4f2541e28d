"""Invoice domain models.

All amounts are stored in minor units (integer cents) to avoid floating point
issues. $10.00 = 1000 cents. Tax rate and percentage discounts use the
0-100 percent scale (8.25 = 8.25%).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from core.models.line_item import LineItem, LineItemCreate
from core.models.payment import Payment
from utils.timezone import to_utc


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status. OVERDUE is only ever a read-time projection."""

    DRAFT = "DRAFT"
    SENT = "SENT"
    VIEWED = "VIEWED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class DiscountType(str, Enum):
    """How a discount value is interpreted."""

    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class DiscountSpec(BaseModel):
    """
    Discount applied to the subtotal.

    FIXED values are major currency units. PERCENTAGE values are 0-100;
    anything above 100 is accepted and capped at the subtotal.
    """

    type: DiscountType = DiscountType.FIXED
    value: Decimal = Field(Decimal(0), ge=0)

    model_config = {"frozen": True}


def _aware(value: datetime | None) -> datetime | None:
    return to_utc(value) if value is not None else None


class InvoiceCreate(BaseModel):
    """Data required to create an invoice."""

    client_id: UUID
    items: list[LineItemCreate] = Field(default_factory=list)
    tax_rate: Decimal | None = Field(None, ge=0, le=100)  # None = configured default
    discount: DiscountSpec = Field(default_factory=DiscountSpec)
    currency: str | None = Field(None, min_length=3, max_length=3)
    invoice_date: datetime | None = None
    due_date: datetime | None = None
    invoice_number: str | None = Field(None, min_length=1, max_length=50)
    notes: str | None = Field(None, max_length=2000)
    terms: str | None = Field(None, max_length=2000)
    footer: str | None = Field(None, max_length=500)

    @field_validator("invoice_date", "due_date")
    @classmethod
    def dates_utc(cls, value: datetime | None) -> datetime | None:
        return _aware(value)

    @model_validator(mode="after")
    def due_not_before_invoice_date(self) -> "InvoiceCreate":
        if self.invoice_date and self.due_date and self.due_date < self.invoice_date:
            raise ValueError("due_date cannot be before invoice_date")
        return self


class InvoiceUpdate(BaseModel):
    """
    Editable invoice fields. All optional.

    ``items`` replaces the full line item list when given.
    """

    items: list[LineItemCreate] | None = None
    tax_rate: Decimal | None = Field(None, ge=0, le=100)
    discount: DiscountSpec | None = None
    invoice_date: datetime | None = None
    due_date: datetime | None = None
    notes: str | None = Field(None, max_length=2000)
    terms: str | None = Field(None, max_length=2000)
    footer: str | None = Field(None, max_length=500)

    @field_validator("invoice_date", "due_date")
    @classmethod
    def dates_utc(cls, value: datetime | None) -> datetime | None:
        return _aware(value)


class Invoice(BaseModel):
    """
    Read snapshot of an invoice: stored inputs plus every derived figure.

    ``status`` already has the OVERDUE projection applied for the moment the
    snapshot was taken.
    """

    id: UUID
    invoice_number: str
    client_id: UUID
    currency: str
    status: InvoiceStatus
    invoice_date: datetime
    due_date: datetime
    line_items: list[LineItem]
    tax_rate: Decimal
    discount: DiscountSpec
    payments: list[Payment]
    subtotal_cents: int
    tax_amount_cents: int
    discount_amount_cents: int
    total_amount_cents: int
    paid_amount_cents: int
    balance_due_cents: int
    notes: str | None
    terms: str | None
    footer: str | None
    sent_at: datetime | None
    viewed_at: datetime | None
    paid_at: datetime | None
    cancelled_at: datetime | None
    share_id: UUID | None
    share_enabled: bool
    created_at: datetime
    updated_at: datetime
    version: int

    model_config = {"from_attributes": True}


class InvoiceStatistics(BaseModel):
    """Counts per status and money sums per currency (never consolidated)."""

    total: int = 0
    draft: int = 0
    open: int = 0
    overdue: int = 0
    paid: int = 0
    cancelled: int = 0
    collected_cents: dict[str, int] = Field(default_factory=dict)
    outstanding_cents: dict[str, int] = Field(default_factory=dict)


class BulkItemStatus(str, Enum):
    """Outcome for one invoice in a bulk operation."""

    SUCCEEDED = "SUCCEEDED"
    SKIPPED = "SKIPPED"
    NOT_FOUND = "NOT_FOUND"


class BulkItemResult(BaseModel):
    id: UUID
    status: BulkItemStatus
    code: str | None = None
    message: str | None = None


class BulkResult(BaseModel):
    """
    Summary of a bulk operation.

    Invoices are processed one at a time; one refusal does not stop the rest.
    """

    requested: int
    succeeded: int = 0
    skipped: int = 0
    not_found: int = 0
    results: list[BulkItemResult] = Field(default_factory=list)
