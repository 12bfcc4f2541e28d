"""Typed exceptions for invoice billing failures.

Every error carries a machine-readable ``code`` so the API layer can surface
the reason verbatim. None of these are swallowed inside the domain.
"""


class BillingError(Exception):
    """Base class for invoice billing errors."""

    code = "BILLING_ERROR"

    def __init__(self, message: str, code: str | None = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(message)


class InvoiceValidationError(BillingError, ValueError):
    """
    Malformed input (negative quantity, empty description, bad precision).

    Raised before any state is touched.
    """

    code = "VALIDATION_ERROR"


class InvariantViolation(BillingError):
    """
    Operation would break a required relationship.

    Examples: overpayment, editing a viewed invoice, deleting an invoice
    that holds completed payments. State is left unchanged.
    """

    code = "INVARIANT_VIOLATION"


class TransitionRefused(BillingError):
    """A status guard was not met. The message names the unmet guard."""

    code = "TRANSITION_REFUSED"


class ConcurrencyConflict(BillingError):
    """Write was based on a stale version. Re-read and retry."""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, message: str, expected_version: int, actual_version: int):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(message)


class NotFound(BillingError):
    """Invoice, payment or client does not exist."""

    code = "NOT_FOUND"
