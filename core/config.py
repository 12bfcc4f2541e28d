"""Invoicing configuration."""

from decimal import Decimal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.money import normalize_currency

ENV_PREFIX = "INVOICING_"


class BillingConfig(BaseSettings):
    """
    Invoicing defaults.

    Loaded once at startup and injected into InvoiceService. Values only
    apply to invoices created afterwards; existing invoices keep the currency
    and tax rate they were created with.

    Every field can be set through an ``INVOICING_<FIELD>`` environment
    variable or the same key in a ``.env`` file. Variables already set in
    the environment win over the file; empty values are ignored.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    default_currency: str = Field(
        default="USD",
        description="ISO 4217 currency for invoices created without one",
        min_length=3,
        max_length=3,
    )
    default_tax_rate: Decimal = Field(
        default=Decimal(0),
        description="Tax rate percent (0-100) for invoices created without one",
        ge=0,
        le=100,
    )
    default_payment_terms_days: int = Field(
        default=30,
        description="Days between invoice date and due date when no due date is given",
        ge=0,
        le=365,
    )
    invoice_prefix: str = Field(
        default="INV",
        description="Prefix for generated invoice numbers (INV-00001)",
        min_length=1,
        max_length=10,
    )
    overpayment_tolerance_cents: int = Field(
        default=0,
        description="How many minor units payments may exceed the total by",
        ge=0,
    )
    conflict_retries: int = Field(
        default=3,
        description="Retries of a mutation after a version conflict",
        ge=0,
        le=10,
    )

    @field_validator("default_currency")
    @classmethod
    def currency_code(cls, value: str) -> str:
        return normalize_currency(value)

    @classmethod
    def from_env(cls, env_file: str | None = ".env") -> "BillingConfig":
        """Build config from INVOICING_* variables and ``env_file``."""
        return cls(_env_file=env_file)
