"""
Invoice history.

Every committed change to an invoice is recorded here. The history is:
- Append-only (entries never modified or deleted, even when the invoice is)
- User-attributed (the acting user from the request context, or None for
  scheduled work)
- Detailed (captures old and new values of changed fields)
"""

import threading
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from utils.user_context import get_current_user_id_or_none
from utils.timezone import now_utc


class HistoryAction(str, Enum):
    """Kind of change recorded against an invoice."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    SENT = "SENT"
    VIEWED = "VIEWED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED"
    STATUS_CHANGED = "STATUS_CHANGED"
    CANCELLED = "CANCELLED"
    DELETED = "DELETED"
    REMINDER_SENT = "REMINDER_SENT"
    SHARE_UPDATED = "SHARE_UPDATED"


class HistoryEntry(BaseModel):
    """One recorded change."""

    id: UUID
    invoice_id: UUID
    action: HistoryAction
    description: str
    changes: dict[str, Any] = Field(default_factory=dict)
    user_id: UUID | None = None
    created_at: datetime

    model_config = {"frozen": True}


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two invoice states.

    Args:
        old: Previous state
        new: New state
        exclude_fields: Fields to ignore (defaults to {"updated_at", "version"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at", "version"}
    changes = {}

    for key in sorted(set(old.keys()) | set(new.keys())):
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Append-only invoice history.

    Pass JSON-ready values (``model_dump(mode="json")``) in ``changes`` so
    entries serialize cleanly over the API.

    Usage:
        audit = AuditLogger()

        changes = compute_changes(
            old.model_dump(mode="json"),
            new.model_dump(mode="json")
        )
        audit.log_change(invoice.id, HistoryAction.UPDATED, "Invoice updated", changes)

        history = audit.get_invoice_history(invoice.id)
    """

    def __init__(self):
        self._entries: list[HistoryEntry] = []
        self._lock = threading.Lock()

    def log_change(
        self,
        invoice_id: UUID,
        action: HistoryAction,
        description: str,
        changes: dict[str, Any] | None = None,
        user_id: UUID | None = None
    ) -> HistoryEntry:
        """
        Record a change.

        Args:
            invoice_id: Invoice the change applies to
            action: What happened
            description: Human-readable summary
            changes: Field diffs or event details
            user_id: Acting user (defaults to current context, may be None)
        """
        entry = HistoryEntry(
            id=uuid4(),
            invoice_id=invoice_id,
            action=action,
            description=description,
            changes=changes or {},
            user_id=user_id if user_id is not None else get_current_user_id_or_none(),
            created_at=now_utc(),
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def get_invoice_history(self, invoice_id: UUID) -> list[HistoryEntry]:
        """Full history of one invoice, newest first."""
        with self._lock:
            entries = [e for e in self._entries if e.invoice_id == invoice_id]
        return list(reversed(entries))

    def get_user_activity(self, user_id: UUID, limit: int = 100) -> list[HistoryEntry]:
        """Recent changes made by a user, newest first."""
        with self._lock:
            entries = [e for e in self._entries if e.user_id == user_id]
        return list(reversed(entries))[:limit]
