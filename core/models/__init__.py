"""Core domain models."""

from core.models.client import Client, ClientCreate
from core.models.line_item import LineItem, LineItemCreate, LineItemUpdate
from core.models.payment import (
    Payment,
    PaymentCreate,
    PaymentMethod,
    PaymentStatistics,
    PaymentStatus,
)
from core.models.invoice import (
    BulkItemResult,
    BulkItemStatus,
    BulkResult,
    DiscountSpec,
    DiscountType,
    Invoice,
    InvoiceCreate,
    InvoiceStatistics,
    InvoiceStatus,
    InvoiceUpdate,
)

__all__ = [
    # Client
    "Client", "ClientCreate",
    # LineItem
    "LineItem", "LineItemCreate", "LineItemUpdate",
    # Payment
    "Payment", "PaymentCreate", "PaymentMethod", "PaymentStatistics", "PaymentStatus",
    # Invoice
    "BulkItemResult", "BulkItemStatus", "BulkResult",
    "DiscountSpec", "DiscountType", "Invoice", "InvoiceCreate",
    "InvoiceStatistics", "InvoiceStatus", "InvoiceUpdate",
]
