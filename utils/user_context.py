"""Propagate the acting user's identity through the call stack using contextvars."""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def get_current_user_id() -> UUID:
    """
    Get current user ID from context.

    Raises RuntimeError if no user context is set. Use this in code paths
    that must be attributed to someone.
    """
    user_id = _current_user_id.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set. This usually means you're calling "
            "user-scoped code outside of a request."
        )
    return user_id


def get_current_user_id_or_none() -> UUID | None:
    """
    Current user ID, or None for system actions.

    The overdue sweep and other scheduled work run without a user; their
    history entries are recorded unattributed.
    """
    return _current_user_id.get()


def set_current_user_id(user_id: UUID) -> None:
    """
    Set current user ID in context.

    Called by UserContextMiddleware from the X-User-ID header.
    """
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """
    Clear user context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Context manager for temporarily setting user context.

    Example:
        with user_context(clerk_id):
            service.send(invoice_id)   # history entry attributed to clerk_id
    """
    previous = _current_user_id.get()
    set_current_user_id(user_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_user_id()
        else:
            set_current_user_id(previous)
