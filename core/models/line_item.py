"""Line item domain models.

Rates are stored in minor units (cents) to avoid floating point issues.
$10.00 = 1000 cents. Quantities are decimals (1.5 hours is fine).
"""

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, computed_field, field_validator

from core.money import Money

# Digit limits keep quantity x rate well inside the supported money range.
QUANTITY_MAX_DIGITS = 12
QUANTITY_DECIMAL_PLACES = 4
RATE_MAX_DIGITS = 13


def _clean_description(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("description must not be empty")
    return value


class LineItemCreate(BaseModel):
    """Data required to add a line item to an invoice."""

    description: str = Field(..., max_length=500)
    quantity: Decimal = Field(
        Decimal(1), gt=0, max_digits=QUANTITY_MAX_DIGITS, decimal_places=QUANTITY_DECIMAL_PLACES
    )
    rate: Decimal = Field(..., ge=0, max_digits=RATE_MAX_DIGITS)  # Major units, e.g. 50.00

    @field_validator("description")
    @classmethod
    def strip_description(cls, value: str | None) -> str | None:
        return _clean_description(value)


class LineItemUpdate(BaseModel):
    """Data that can be updated on a line item. All fields optional."""

    description: str | None = Field(None, max_length=500)
    quantity: Decimal | None = Field(
        None, gt=0, max_digits=QUANTITY_MAX_DIGITS, decimal_places=QUANTITY_DECIMAL_PLACES
    )
    rate: Decimal | None = Field(None, ge=0, max_digits=RATE_MAX_DIGITS)

    @field_validator("description")
    @classmethod
    def strip_description(cls, value: str | None) -> str | None:
        return _clean_description(value)


class LineItem(BaseModel):
    """Line item as owned by its invoice."""

    id: UUID
    description: str
    quantity: Decimal
    rate_cents: int = Field(..., ge=0)

    model_config = {"frozen": True}

    @computed_field
    @property
    def amount_cents(self) -> int:
        """quantity x rate, rounded once to the minor unit."""
        return Money(self.rate_cents).times(self.quantity).cents
