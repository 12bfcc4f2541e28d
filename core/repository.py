"""
In-process invoice store.

Holds aggregates keyed by id and hands out independent copies, so a caller
can only change stored state through ``save``. ``save`` is compare-and-swap
on ``version``: a write based on a stale read raises ConcurrencyConflict.
"""

import logging
import threading
from uuid import UUID

from core.exceptions import ConcurrencyConflict, InvariantViolation
from core.invoice import InvoiceAggregate

logger = logging.getLogger(__name__)


class InvoiceRepository:
    """Thread-safe in-memory store for invoice aggregates."""

    def __init__(self):
        self._invoices: dict[UUID, InvoiceAggregate] = {}
        self._sequences: dict[str, int] = {}
        self._payment_sequence = 0
        self._lock = threading.RLock()

    def get(self, invoice_id: UUID) -> InvoiceAggregate | None:
        """Copy of the stored invoice, or None."""
        with self._lock:
            invoice = self._invoices.get(invoice_id)
            return invoice.copy() if invoice is not None else None

    def add(self, invoice: InvoiceAggregate) -> None:
        """
        Store a new invoice.

        Raises:
            InvariantViolation: id or invoice number already taken
        """
        with self._lock:
            if invoice.id in self._invoices:
                raise InvariantViolation(
                    f"Invoice {invoice.id} already exists", code="DUPLICATE_INVOICE"
                )
            if self._find_number(invoice.invoice_number) is not None:
                raise InvariantViolation(
                    f"Invoice number {invoice.invoice_number} already exists",
                    code="DUPLICATE_INVOICE_NUMBER",
                )
            self._invoices[invoice.id] = invoice.copy()

    def save(self, invoice: InvoiceAggregate, expected_version: int) -> None:
        """
        Replace the stored invoice if nobody else wrote since ``expected_version``.

        Args:
            invoice: Mutated copy
            expected_version: Version the copy was read at

        Raises:
            ConcurrencyConflict: Stored version differs from expected_version
        """
        with self._lock:
            current = self._invoices.get(invoice.id)
            actual = current.version if current is not None else 0
            if actual != expected_version:
                raise ConcurrencyConflict(
                    f"Invoice {invoice.id} was modified concurrently "
                    f"(expected version {expected_version}, found {actual})",
                    expected_version=expected_version,
                    actual_version=actual,
                )
            self._invoices[invoice.id] = invoice.copy()

    def delete(self, invoice_id: UUID, expected_version: int | None = None) -> bool:
        """Remove an invoice. Returns False if it did not exist."""
        with self._lock:
            current = self._invoices.get(invoice_id)
            if current is None:
                return False
            if expected_version is not None and current.version != expected_version:
                raise ConcurrencyConflict(
                    f"Invoice {invoice_id} was modified concurrently",
                    expected_version=expected_version,
                    actual_version=current.version,
                )
            del self._invoices[invoice_id]
            return True

    def list_all(self) -> list[InvoiceAggregate]:
        """Copies of every stored invoice, oldest first."""
        with self._lock:
            invoices = sorted(self._invoices.values(), key=lambda i: i.created_at)
            return [i.copy() for i in invoices]

    def _find_number(self, invoice_number: str) -> InvoiceAggregate | None:
        for invoice in self._invoices.values():
            if invoice.invoice_number == invoice_number:
                return invoice
        return None

    def find_by_number(self, invoice_number: str) -> InvoiceAggregate | None:
        with self._lock:
            invoice = self._find_number(invoice_number)
            return invoice.copy() if invoice is not None else None

    def find_by_share_id(self, share_id: UUID) -> InvoiceAggregate | None:
        """Invoice whose share link is ``share_id`` and currently enabled."""
        with self._lock:
            for invoice in self._invoices.values():
                if invoice.share_id == share_id and invoice.share_enabled:
                    return invoice.copy()
            return None

    def next_invoice_number(self, prefix: str) -> str:
        """
        Next free number for ``prefix``.

        Format: PREFIX-00001. Numbers taken manually are skipped.
        """
        with self._lock:
            while True:
                sequence = self._sequences.get(prefix, 0) + 1
                self._sequences[prefix] = sequence
                number = f"{prefix}-{sequence:05d}"
                if self._find_number(number) is None:
                    return number

    def next_payment_number(self) -> str:
        """Format: PMT-000001."""
        with self._lock:
            self._payment_sequence += 1
            return f"PMT-{self._payment_sequence:06d}"
